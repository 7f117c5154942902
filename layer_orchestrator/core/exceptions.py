"""
Custom exceptions for the layer orchestrator.

This module defines a hierarchy of exceptions used throughout the
orchestration engine to provide clear, actionable error messages.

Exception Hierarchy:
    OrchestratorError (base)
    ├── ConfigurationError - Invalid or missing configuration
    │   ├── CyclicDependencyError - No valid deployment order exists
    │   └── UnknownDependencyError - depends_on names an absent or disabled layer
    ├── LayerTypeNotFoundError - Unknown layer type requested from the registry
    ├── MissingDependencyOutputError - A required dependency output is absent
    ├── MissingFieldError - A required output contract field is absent or empty
    ├── RemoteOperationFailed - Non-zero exit, rolled-back stack, failed remote command
    ├── RemoteOperationTimeout - Stopped waiting; remote final state unknown
    └── PartialDestroyFailure - One or more cleanup steps failed
"""

from typing import Dict, Optional, Sequence


class OrchestratorError(Exception):
    """
    Base exception for all orchestration errors.

    Attributes:
        message: Human-readable error description
        layer: Optional layer name where the error occurred
    """

    def __init__(self, message: str, layer: Optional[str] = None):
        self.message = message
        self.layer = layer

        if layer:
            full_message = f"{message} [layer={layer}]"
        else:
            full_message = message

        super().__init__(full_message)


class ConfigurationError(OrchestratorError):
    """
    Raised when configuration is invalid or missing required fields.

    This typically occurs when:
    - The config file is missing or is not valid JSON
    - A field fails schema validation
    - A targeted layer name does not exist

    Configuration errors are fatal before any layer runs.

    Example:
        >>> load_config("nonexistent.json")
        ConfigurationError: Config file not found (file: nonexistent.json)
    """

    def __init__(self, message: str, config_file: Optional[str] = None):
        self.config_file = config_file
        if config_file:
            message = f"{message} (file: {config_file})"
        super().__init__(message)


class CyclicDependencyError(ConfigurationError):
    """
    Raised when the enabled layers' depends_on edges form a cycle.

    Attributes:
        cycle: Layer names on the detected cycle, in walk order
    """

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        path = " -> ".join(self.cycle + self.cycle[:1])
        super().__init__(f"Cyclic dependency detected: {path}")


class UnknownDependencyError(ConfigurationError):
    """
    Raised when a layer depends on a layer that is not part of the run.

    A disabled dependency is treated as absent, never as satisfied.

    Attributes:
        layer_name: The layer declaring the dependency
        dependency: The missing dependency name
        disabled: True if the dependency is configured but disabled
    """

    def __init__(self, layer: str, dependency: str, disabled: bool = False):
        self.layer_name = layer
        self.dependency = dependency
        self.disabled = disabled
        reason = "is disabled" if disabled else "is not defined"
        super().__init__(
            f"Layer '{layer}' depends on '{dependency}', which {reason}"
        )


class LayerTypeNotFoundError(OrchestratorError):
    """
    Raised when an unknown layer type is requested from the registry.

    Example:
        >>> LayerRegistry.get("unknown")
        LayerTypeNotFoundError: Layer type 'unknown' not found. Available: ['near_base', ...]
    """

    def __init__(self, type_name: str, available_types: list[str]):
        self.type_name = type_name
        self.available_types = available_types
        super().__init__(
            f"Layer type '{type_name}' not found. Available: {available_types}"
        )


class MissingDependencyOutputError(OrchestratorError):
    """Raised when a layer needs outputs from a dependency that has none."""

    def __init__(self, layer: str, dependency: str):
        self.dependency = dependency
        super().__init__(
            f"Required outputs from dependency '{dependency}' are not available",
            layer=layer,
        )


class MissingFieldError(OrchestratorError):
    """
    Raised when a required output field is absent or empty.

    Attributes:
        field: The output key that could not be read
    """

    def __init__(self, layer: str, field: str):
        self.field = field
        super().__init__(f"Required output field '{field}' is missing", layer=layer)


class RemoteOperationFailed(OrchestratorError):
    """
    Raised when a remote operation reports failure.

    Covers non-zero exit codes of local tooling (cdk, git, scripts),
    stacks that reached a FAILED/ROLLBACK status, and remote commands
    that finished in a non-success state.

    Attributes:
        operation: Short description of what was attempted
        detail: Captured diagnostic text
        exit_code: Process exit code, if a local process was involved
    """

    def __init__(
        self,
        operation: str,
        detail: str,
        exit_code: Optional[int] = None,
        layer: Optional[str] = None
    ):
        self.operation = operation
        self.detail = detail
        self.exit_code = exit_code
        message = f"{operation} failed"
        if exit_code is not None:
            message += f" (exit code {exit_code})"
        if detail:
            message += f": {detail}"
        super().__init__(message, layer=layer)


class RemoteOperationTimeout(OrchestratorError):
    """
    Raised when waiting for a remote operation exceeded its deadline.

    The remote side may still complete. This is never a success.
    """

    def __init__(
        self,
        operation: str,
        timeout_seconds: float,
        layer: Optional[str] = None
    ):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"{operation} timed out after {timeout_seconds:g}s; remote state unknown",
            layer=layer,
        )


class PartialDestroyFailure(OrchestratorError):
    """
    Raised when one or more cleanup steps failed during destroy.

    Attributes:
        failures: Mapping of cleanup step name to its error text
    """

    def __init__(self, layer: str, failures: Dict[str, str]):
        self.failures = dict(failures)
        steps = "; ".join(f"{step}: {error}" for step, error in self.failures.items())
        super().__init__(
            f"{len(self.failures)} cleanup step(s) failed: {steps}",
            layer=layer,
        )
