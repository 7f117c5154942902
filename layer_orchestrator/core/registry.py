"""
Layer type registry.

Layer variants register their class under a type name when the
``layer_orchestrator.layers`` package is imported:

    # In layers/__init__.py
    from layer_orchestrator.core.registry import LayerRegistry
    from .near_base import NearBaseLayer
    LayerRegistry.register("near_base", NearBaseLayer)

The orchestrator then builds each configured layer by looking up
``spec.layer_type`` (the layer name unless ``config.type`` overrides it).
"""

from typing import Dict, Type, TYPE_CHECKING

from .exceptions import LayerTypeNotFoundError

if TYPE_CHECKING:
    from .context import LayerContext
    from .protocols import Layer
    from layer_orchestrator.layers.toolkit import LayerToolkit


class LayerRegistry:
    """
    Central registry for layer variant classes.

    Class-level state, because variants register at import time before
    any orchestrator exists.

    Example Usage:
        LayerRegistry.register("near_base", NearBaseLayer)
        layer = LayerRegistry.create("near_base", context, toolkit)
        LayerRegistry.list_types()  # ["chain_signatures", "near_base", ...]
    """

    # Key: layer type name, Value: variant class (not instance)
    _layers: Dict[str, Type['Layer']] = {}

    @classmethod
    def register(cls, name: str, layer_class: Type['Layer']) -> None:
        """
        Register a variant class under a type name.

        Registering the same class twice is allowed; a different class
        under an existing name is not.

        Raises:
            ValueError: If name is already registered with a different class
        """
        if name in cls._layers:
            existing_class = cls._layers[name]
            if existing_class is not layer_class:
                raise ValueError(
                    f"Layer type '{name}' is already registered with {existing_class.__name__}. "
                    f"Cannot re-register with {layer_class.__name__}."
                )
            return

        cls._layers[name] = layer_class

    @classmethod
    def get(cls, name: str) -> Type['Layer']:
        """
        Get the variant class registered under a type name.

        Raises:
            LayerTypeNotFoundError: If no variant is registered with that name.
        """
        if name not in cls._layers:
            raise LayerTypeNotFoundError(name, cls.list_types())
        return cls._layers[name]

    @classmethod
    def create(
        cls,
        name: str,
        context: 'LayerContext',
        toolkit: 'LayerToolkit'
    ) -> 'Layer':
        """Build a fresh variant instance for one run."""
        return cls.get(name)(context, toolkit)

    @classmethod
    def list_types(cls) -> list[str]:
        return sorted(cls._layers.keys())

    @classmethod
    def is_registered(cls, name: str) -> bool:
        return name in cls._layers

    @classmethod
    def clear(cls) -> None:
        """
        Clear all registered variants.

        Used by tests to reset state between cases.
        """
        cls._layers.clear()
