"""
Core orchestration engine: data model, contracts, resolution, config, state.
"""

from .exceptions import (
    OrchestratorError,
    ConfigurationError,
    CyclicDependencyError,
    UnknownDependencyError,
    LayerTypeNotFoundError,
    MissingDependencyOutputError,
    MissingFieldError,
    RemoteOperationFailed,
    RemoteOperationTimeout,
    PartialDestroyFailure,
)
from .models import (
    LayerSource,
    LayerSpec,
    GlobalRunConfig,
    LayerOutput,
    DeploymentState,
    VerifyOutcome,
    DeployOutcome,
    DestroyOutcome,
    CommandOutcome,
    HealthOutcome,
    LayerState,
    LayerRunRecord,
    RunResult,
)
from .contracts import OutputContract
from .context import LayerContext
from .protocols import Layer
from .registry import LayerRegistry
from .resolver import resolve_order, dependency_closure, select_layers
from .state import StateStore

__all__ = [
    "OrchestratorError",
    "ConfigurationError",
    "CyclicDependencyError",
    "UnknownDependencyError",
    "LayerTypeNotFoundError",
    "MissingDependencyOutputError",
    "MissingFieldError",
    "RemoteOperationFailed",
    "RemoteOperationTimeout",
    "PartialDestroyFailure",
    "LayerSource",
    "LayerSpec",
    "GlobalRunConfig",
    "LayerOutput",
    "DeploymentState",
    "VerifyOutcome",
    "DeployOutcome",
    "DestroyOutcome",
    "CommandOutcome",
    "HealthOutcome",
    "LayerState",
    "LayerRunRecord",
    "RunResult",
    "OutputContract",
    "LayerContext",
    "Layer",
    "LayerRegistry",
    "resolve_order",
    "dependency_closure",
    "select_layers",
    "StateStore",
]
