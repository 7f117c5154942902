"""
Shared helper operations for layer variants.

Variants do not inherit from a base class. Each one holds a LayerToolkit
built around its LayerContext and calls the helpers it needs. The
toolkit owns no mutable state of its own beyond the context it wraps,
so variants stay independently testable with a mocked toolkit. The
only thing it remembers is where the source repository was checked out.

Helpers that perform remote work raise RemoteOperationFailed or
RemoteOperationTimeout; ``deploy_step`` and ``run_cleanup_steps``
translate those into DeployOutcome/DestroyOutcome at the variant's
boundary.
"""

import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

import layer_orchestrator.constants as CONSTANTS
from layer_orchestrator.aws.cdk_manager import CdkResult
from layer_orchestrator.core.context import LayerContext
from layer_orchestrator.core.exceptions import (
    MissingDependencyOutputError,
    OrchestratorError,
    PartialDestroyFailure,
    RemoteOperationFailed,
    RemoteOperationTimeout,
)
from layer_orchestrator.core.models import (
    CommandOutcome,
    DeployOutcome,
    DestroyOutcome,
    HealthOutcome,
    LayerOutput,
)
from layer_orchestrator.logger import print_stack_trace

logger = logging.getLogger(__name__)

CleanupStep = Tuple[str, Callable[[], None]]


def _to_output_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


class LayerToolkit:
    """
    Helper operations over one layer's context.

    Args:
        context: The layer's LayerContext
        sleep: Sleep function for wait_for_healthy (defaults to time.sleep)
    """

    def __init__(self, context: LayerContext, sleep: Optional[Callable[[float], None]] = None):
        self.context = context
        self._sleep = sleep
        self._repo_path: Optional[Path] = None

    @property
    def layer_name(self) -> str:
        return self.context.layer_name

    # ==========================================
    # Dependencies and outputs
    # ==========================================

    def dependency_output(self, dependency: str) -> Optional[LayerOutput]:
        return self.context.outputs_of(dependency)

    def require_dependency(self, dependency: str) -> LayerOutput:
        """
        Get a dependency's captured outputs.

        Raises:
            MissingDependencyOutputError: If the dependency has no captured outputs
        """
        output = self.context.outputs_of(dependency)
        if output is None:
            raise MissingDependencyOutputError(self.layer_name, dependency)
        return output

    def create_layer_output(self, outputs: Mapping[str, Any], deployed: bool = True) -> LayerOutput:
        """
        Build this layer's LayerOutput.

        None and empty values are omitted, everything else is stringified.
        """
        values = {
            key: _to_output_value(value)
            for key, value in outputs.items()
            if value is not None and value != ""
        }
        return LayerOutput(layer_name=self.layer_name, deployed=deployed, outputs=values)

    # ==========================================
    # Health
    # ==========================================

    def run_health_check(self, url: str, kind: str = "http", **options) -> HealthOutcome:
        """
        Run one probe of the given kind ("http", "rpc" or "mpc").

        Never raises; an unexpected probe error is reported as unhealthy.
        """
        checker = self.context.health_checker
        try:
            if kind == "rpc":
                return checker.check_rpc(url, **options)
            if kind == "mpc":
                return checker.check_mpc_node(url, **options)
            return checker.check_http(url, **options)
        except Exception as e:
            logger.debug(f"Health check of {url} raised: {e}")
            return HealthOutcome(healthy=False, error=str(e))

    def wait_for_healthy(
        self,
        probe: Callable[[], HealthOutcome],
        attempts: int = CONSTANTS.HEALTH_WAIT_ATTEMPTS,
        interval: float = CONSTANTS.HEALTH_WAIT_INTERVAL,
        description: str = "service"
    ) -> HealthOutcome:
        """
        Retry a probe on a fixed interval until it is healthy.

        Returns:
            The first healthy outcome, or the last unhealthy one after
            ``attempts`` tries.
        """
        sleep = self._sleep or time.sleep
        outcome = HealthOutcome(healthy=False, error="not checked")
        for attempt in range(1, attempts + 1):
            outcome = probe()
            if outcome.healthy:
                logger.info(f"✓ {description} healthy after {attempt} attempt(s)")
                return outcome
            logger.debug(f"{description} not healthy yet ({attempt}/{attempts}): {outcome.error}")
            if attempt < attempts:
                sleep(interval)
        logger.warning(f"{description} still unhealthy after {attempts} attempts")
        return outcome

    # ==========================================
    # CloudFormation / SSM
    # ==========================================

    def read_stack_outputs(self, stack_name: str) -> Dict[str, str]:
        """
        Raises:
            RemoteOperationFailed: If the outputs cannot be read
        """
        result = self.context.stack_reader.read_stack_outputs(stack_name)
        if not result.success:
            raise RemoteOperationFailed(
                f"Read outputs of stack {stack_name}", result.error or "", layer=self.layer_name
            )
        return result.outputs

    def try_read_stack_outputs(self, stack_name: str) -> Dict[str, str]:
        """Read stack outputs, returning an empty dict on any failure."""
        result = self.context.stack_reader.read_stack_outputs(stack_name)
        if not result.success:
            logger.debug(f"Stack {stack_name} outputs unavailable: {result.error}")
            return {}
        return result.outputs

    def run_remote_command(
        self,
        instance_id: str,
        commands: Sequence[str],
        operation: str,
        max_attempts: Optional[int] = None,
        poll_interval: Optional[float] = None
    ) -> str:
        """
        Run a shell script on an instance via SSM and return its stdout.

        Raises:
            RemoteOperationFailed: If the command fails or is cancelled
            RemoteOperationTimeout: If the command or the polling times out
        """
        result = self.context.ssm.run(
            instance_id, commands,
            comment=f"{self.layer_name}: {operation}",
            max_attempts=max_attempts,
            poll_interval=poll_interval,
        )
        result.raise_for_status(operation, layer=self.layer_name)
        return result.stdout

    # ==========================================
    # Repository, CDK, scripts
    # ==========================================

    def ensure_repository(self) -> Path:
        """
        Materialize this layer's source repository.

        Also installs the CDK app's npm dependencies when the source
        names a cdk_path with a package.json.
        The checkout happens once per toolkit; later calls reuse the path.

        Raises:
            RemoteOperationFailed: If the layer has no source or git fails
        """
        if self._repo_path is not None:
            return self._repo_path

        source = self.context.spec.source
        if source is None:
            raise RemoteOperationFailed(
                "Ensure repository", "layer has no source configured", layer=self.layer_name
            )
        repo_path = self.context.git.ensure_repository(source.repo_url, source.branch)

        if source.cdk_path:
            cdk_dir = repo_path / source.cdk_path
            if (cdk_dir / "package.json").exists() and cdk_dir != repo_path:
                self.context.git.install_node_dependencies(cdk_dir)

        self._repo_path = repo_path
        return repo_path

    def repository_path(self) -> Optional[Path]:
        """Expected local path of the source repository, without cloning (read-only)."""
        source = self.context.spec.source
        if source is None:
            return None
        return self.context.git.local_path(source.repo_url)

    def cdk_path(self, repo_path: Path) -> Path:
        source = self.context.spec.source
        if source is None or not source.cdk_path:
            raise RemoteOperationFailed(
                "Locate CDK app", "layer source has no cdk_path", layer=self.layer_name
            )
        return repo_path / source.cdk_path

    def deploy_cdk_stacks(
        self,
        repo_path: Path,
        stacks: Sequence[str] = (),
        cdk_context: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> CdkResult:
        """
        Raises:
            RemoteOperationFailed: If cdk deploy exits non-zero
            RemoteOperationTimeout: If cdk deploy hits its hard timeout
        """
        result = self.context.cdk.deploy(
            self.cdk_path(repo_path), stacks=stacks, context=cdk_context, timeout=timeout
        )
        self._check_cdk(result, f"CDK deploy {', '.join(stacks) or 'all'}",
                        timeout or self.context.cdk.default_timeout)
        return result

    def destroy_cdk_stacks(
        self,
        repo_path: Path,
        stacks: Sequence[str] = (),
        timeout: Optional[float] = None
    ) -> CdkResult:
        result = self.context.cdk.destroy(self.cdk_path(repo_path), stacks=stacks, timeout=timeout)
        self._check_cdk(result, f"CDK destroy {', '.join(stacks) or 'all'}",
                        timeout or self.context.cdk.default_timeout)
        return result

    def _check_cdk(self, result: CdkResult, operation: str, timeout: float):
        if result.timed_out:
            raise RemoteOperationTimeout(operation, timeout, layer=self.layer_name)
        if not result.success:
            raise RemoteOperationFailed(operation, result.error or "", layer=self.layer_name)

    def execute_script(
        self,
        repo_path: Path,
        script_path: str,
        args: Sequence[str] = (),
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[Path] = None,
        timeout: float = CONSTANTS.SCRIPT_TIMEOUT
    ) -> CommandOutcome:
        """
        Run a script from the repository, picking the interpreter by extension.

        .sh runs with bash, .js with node, .py with the current Python
        interpreter. .ts (and anything else) runs with node and ts-node.
        The environment is the process environment overlaid with ``env``.
        """
        full_path = repo_path / script_path
        suffix = full_path.suffix
        if suffix == ".sh":
            program, program_args = "bash", [str(full_path)]
        elif suffix == ".js":
            program, program_args = "node", [str(full_path)]
        elif suffix == ".py":
            program, program_args = sys.executable, [str(full_path)]
        else:
            program, program_args = "node", ["-r", "ts-node/register", str(full_path)]

        logger.info(f"Executing script: {full_path}")
        return self.context.runner.run(
            program,
            [*program_args, *args],
            cwd=cwd or repo_path,
            env=dict(env or {}),
            timeout=timeout,
            stream_output=True,
        )

    def run_script_checked(self, repo_path: Path, script_path: str, **kwargs) -> CommandOutcome:
        """
        execute_script, raising on failure.

        Raises:
            RemoteOperationFailed: On non-zero exit
            RemoteOperationTimeout: If the script hit its hard timeout
        """
        outcome = self.execute_script(repo_path, script_path, **kwargs)
        if outcome.timed_out:
            raise RemoteOperationTimeout(
                f"Script {script_path}", kwargs.get("timeout", CONSTANTS.SCRIPT_TIMEOUT),
                layer=self.layer_name
            )
        if not outcome.success:
            raise RemoteOperationFailed(
                f"Script {script_path}", outcome.error_text[-500:],
                exit_code=outcome.exit_code, layer=self.layer_name
            )
        return outcome

    # ==========================================
    # Local files
    # ==========================================

    def write_config_file(self, file_path: Path, data: Any) -> Path:
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        logger.debug(f"Wrote config file: {file_path}")
        return file_path

    @staticmethod
    def remove_file(file_path: Path):
        """Delete a generated file; a missing file is not an error."""
        try:
            os.remove(file_path)
            logger.debug(f"Removed {file_path}")
        except FileNotFoundError:
            pass

    # ==========================================
    # Boundaries
    # ==========================================

    def deploy_step(self, body: Callable[[], None]) -> DeployOutcome:
        """
        Run a variant's deploy body and report it as a DeployOutcome.

        Orchestrator errors (missing dependency outputs, failed or timed
        out remote operations) become failed outcomes; timeouts are
        flagged separately.
        """
        start = time.monotonic()
        try:
            body()
        except RemoteOperationTimeout as e:
            logger.error(f"✗ {self.layer_name} deploy timed out: {e}")
            return DeployOutcome(success=False, duration=time.monotonic() - start,
                                 error=str(e), timed_out=True)
        except OrchestratorError as e:
            logger.error(f"✗ {self.layer_name} deploy failed: {e}")
            print_stack_trace()
            return DeployOutcome(success=False, duration=time.monotonic() - start, error=str(e))

        duration = time.monotonic() - start
        logger.info(f"✓ {self.layer_name} deployed in {duration:.0f}s")
        return DeployOutcome(success=True, duration=duration)

    def run_cleanup_steps(self, steps: Sequence[CleanupStep]) -> DestroyOutcome:
        """
        Attempt every cleanup step, even after failures.

        Returns:
            DestroyOutcome; success only if no step failed. On failure,
            ``failures`` maps each failed step to its error and ``error``
            is the PartialDestroyFailure message.
        """
        start = time.monotonic()
        failures: Dict[str, str] = {}
        for step_name, step in steps:
            try:
                step()
                logger.info(f"✓ {self.layer_name}: {step_name}")
            except Exception as e:
                logger.error(f"✗ {self.layer_name}: {step_name} failed: {e}")
                failures[step_name] = str(e)

        duration = time.monotonic() - start
        if failures:
            error = PartialDestroyFailure(self.layer_name, failures)
            return DestroyOutcome(success=False, duration=duration, error=str(error), failures=failures)
        return DestroyOutcome(success=True, duration=duration)
