"""
Protocol definitions for the layer orchestrator.

Layer variants implement the Layer protocol structurally; there is no
base class to inherit from. Shared helper behaviour lives in an injected
LayerToolkit instead.

The @runtime_checkable decorator lets the registry and tests check
conformance with isinstance().
"""

from typing import Protocol, runtime_checkable, TYPE_CHECKING

if TYPE_CHECKING:
    from .contracts import OutputContract
    from .models import DeployOutcome, DestroyOutcome, LayerOutput, VerifyOutcome


@runtime_checkable
class Layer(Protocol):
    """
    Lifecycle contract every layer variant implements.

    Contracts:
        verify: Read-only. Returns skip=True only when existing remote
            state is confirmed healthy, with a reconstructed LayerOutput.
            Uncertainty resolves to skip=False.
        deploy: Provisions the layer. Fails fast with
            MissingDependencyOutputError when a dependency output is absent.
        get_outputs: Derives the published LayerOutput from observable
            remote state; optional signals are omitted, never fatal.
        destroy: Best-effort teardown; every cleanup step is attempted.

    Example Implementation:
        class MyLayer:
            contract = OutputContract(required=("endpoint",))

            def __init__(self, context, toolkit):
                self.context = context
                self.toolkit = toolkit

            @property
            def name(self):
                return self.context.layer_name

            def verify(self): ...
            def deploy(self): ...
            def get_outputs(self): ...
            def destroy(self): ...
    """

    contract: 'OutputContract'

    @property
    def name(self) -> str:
        """Return the configured layer name."""
        ...

    def verify(self) -> 'VerifyOutcome':
        ...

    def deploy(self) -> 'DeployOutcome':
        ...

    def get_outputs(self) -> 'LayerOutput':
        ...

    def destroy(self) -> 'DestroyOutcome':
        ...
