"""
Layer variants.

Importing this package registers every variant with LayerRegistry under
its default type name.
"""

import layer_orchestrator.constants as CONSTANTS
from layer_orchestrator.core.registry import LayerRegistry

from .toolkit import LayerToolkit
from .near_base import NearBaseLayer
from .near_services import NearServicesLayer
from .chain_signatures import ChainSignaturesLayer
from .intents_protocol import IntentsProtocolLayer
from .ethereum_localnet import EthereumLocalnetLayer


def register_builtin_layers() -> None:
    """Register the built-in variants (idempotent)."""
    LayerRegistry.register(CONSTANTS.LAYER_NEAR_BASE, NearBaseLayer)
    LayerRegistry.register(CONSTANTS.LAYER_NEAR_SERVICES, NearServicesLayer)
    LayerRegistry.register(CONSTANTS.LAYER_CHAIN_SIGNATURES, ChainSignaturesLayer)
    LayerRegistry.register(CONSTANTS.LAYER_INTENTS_PROTOCOL, IntentsProtocolLayer)
    LayerRegistry.register(CONSTANTS.LAYER_ETHEREUM_LOCALNET, EthereumLocalnetLayer)


register_builtin_layers()

__all__ = [
    "LayerToolkit",
    "NearBaseLayer",
    "NearServicesLayer",
    "ChainSignaturesLayer",
    "IntentsProtocolLayer",
    "EthereumLocalnetLayer",
    "register_builtin_layers",
]
