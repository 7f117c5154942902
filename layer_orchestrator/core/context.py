"""
Layer context bundle.

Every layer variant receives a LayerContext at construction instead of
reaching for module-level state. The context carries the run's global
settings, the layer's own spec, handles to the leaf collaborators, and
a read-only accessor for dependency outputs.

Lifecycle:
    1. Created by the Orchestrator once per layer per run
    2. Wrapped by a LayerToolkit that adds shared helper operations
    3. Handed to the layer variant constructor
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, TYPE_CHECKING

from layer_orchestrator.core.models import GlobalRunConfig, LayerOutput, LayerSpec

if TYPE_CHECKING:
    from layer_orchestrator.aws.cdk_manager import CdkManager
    from layer_orchestrator.aws.ssm_poller import SsmCommandPoller
    from layer_orchestrator.aws.stack_reader import StackOutputReader
    from layer_orchestrator.command_runner import CommandRunner
    from layer_orchestrator.git_manager import GitManager
    from layer_orchestrator.health_checker import HealthChecker


OutputsAccessor = Callable[[str], Optional[LayerOutput]]


@dataclass
class LayerContext:
    """
    Everything one layer needs to run.

    Attributes:
        global_config: Process-wide settings (profile, region, workspace)
        spec: This layer's immutable spec
        runner: Local command runner
        stack_reader: CloudFormation output reader and status waiter
        health_checker: Single-attempt health probes
        git: Repository materializer
        cdk: CDK deploy/destroy wrapper
        ssm: Remote command submit-and-poll helper
        outputs_of: Accessor returning a dependency's captured outputs, or None
        previous_output: This layer's output from the loaded state file (verify hint only)
    """

    global_config: GlobalRunConfig
    spec: LayerSpec
    runner: 'CommandRunner'
    stack_reader: 'StackOutputReader'
    health_checker: 'HealthChecker'
    git: 'GitManager'
    cdk: 'CdkManager'
    ssm: 'SsmCommandPoller'
    outputs_of: OutputsAccessor = field(default=lambda name: None)
    previous_output: Optional[LayerOutput] = None

    @property
    def layer_name(self) -> str:
        return self.spec.name

    @property
    def workspace_root(self) -> Path:
        return Path(self.global_config.workspace_root).resolve()

    def config_value(self, key: str, default: Any = None) -> Any:
        """
        Read a layer-specific config entry.

        Example:
            >>> context.config_value("existing_rpc_url")
            "http://10.0.0.5:3030"
        """
        return self.spec.config.get(key, default)
