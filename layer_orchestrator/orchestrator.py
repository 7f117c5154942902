"""
The orchestration driver.

Walks the resolved layer order one layer at a time:

    1. Disabled layers are marked SkippedDisabled.
    2. A layer whose dependencies did not all reach OutputsCaptured in
       this run is marked DependencyFailed without being called.
    3. verify(); a confirmed skip adopts the returned outputs.
    4. Otherwise deploy(); a failure (or timeout) either aborts the run,
       leaving untouched layers Pending, or, with continue_on_error,
       moves on.
    5. After a successful deploy, get_outputs() is validated against the
       layer's output contract and captured.
    6. The DeploymentState document is persisted after every layer.

Layers never deploy concurrently. No layer exception escapes run();
configuration errors are raised before any layer is touched.

Usage:
    from layer_orchestrator.core.config_loader import load_config
    from layer_orchestrator.orchestrator import Orchestrator

    orchestrator = Orchestrator(load_config("config/orchestrator.config.json"))
    result = orchestrator.run()
    print(result.success)
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from layer_orchestrator.aws.cdk_manager import CdkManager
from layer_orchestrator.aws.clients import create_aws_clients
from layer_orchestrator.aws.ssm_poller import SsmCommandPoller
from layer_orchestrator.aws.stack_reader import StackOutputReader
from layer_orchestrator.command_runner import CommandRunner
from layer_orchestrator.core.config_loader import OrchestratorConfig
from layer_orchestrator.core.context import LayerContext
from layer_orchestrator.core.exceptions import ConfigurationError, LayerTypeNotFoundError
from layer_orchestrator.core.models import (
    DeployOutcome,
    DeploymentState,
    LayerOutput,
    LayerRunRecord,
    LayerSpec,
    LayerState,
    RunResult,
    VerifyOutcome,
)
from layer_orchestrator.core.protocols import Layer
from layer_orchestrator.core.registry import LayerRegistry
from layer_orchestrator.core.resolver import resolve_order, select_layers
from layer_orchestrator.core.state import StateStore
from layer_orchestrator.git_manager import GitManager
from layer_orchestrator.health_checker import HealthChecker
from layer_orchestrator.layers import LayerToolkit
from layer_orchestrator.logger import print_stack_trace

logger = logging.getLogger(__name__)

LayerFactory = Callable[[LayerSpec, LayerContext, LayerToolkit], Layer]


@dataclass
class Collaborators:
    """Leaf collaborators shared by every layer in a run."""
    runner: CommandRunner
    stack_reader: StackOutputReader
    health_checker: HealthChecker
    git: GitManager
    cdk: CdkManager
    ssm: SsmCommandPoller


def build_collaborators(config: OrchestratorConfig) -> Collaborators:
    """Create the real collaborators for the configured AWS profile and region."""
    settings = config.global_config
    clients = create_aws_clients(profile=settings.aws_profile, region=settings.aws_region)
    runner = CommandRunner()
    return Collaborators(
        runner=runner,
        stack_reader=StackOutputReader(clients["cloudformation"]),
        health_checker=HealthChecker(),
        git=GitManager(settings.workspace_root, runner),
        cdk=CdkManager(runner, profile=settings.aws_profile, region=settings.aws_region),
        ssm=SsmCommandPoller(clients["ssm"]),
    )


def registry_factory(spec: LayerSpec, context: LayerContext, toolkit: LayerToolkit) -> Layer:
    return LayerRegistry.create(spec.layer_type, context, toolkit)


class Orchestrator:
    """
    Runs, verifies and destroys the configured layers.

    Args:
        config: Validated configuration
        state_store: Where DeploymentState is persisted
            (default: ``global.state_file``)
        collaborators: Leaf collaborators (default: built lazily from config)
        layer_factory: Builds a layer from its spec and context
            (default: LayerRegistry lookup by ``spec.layer_type``)
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        state_store: Optional[StateStore] = None,
        collaborators: Optional[Collaborators] = None,
        layer_factory: Optional[LayerFactory] = None
    ):
        self.config = config
        self.state_store = state_store or StateStore(config.global_config.state_file)
        self._collaborators = collaborators
        self.layer_factory = layer_factory or registry_factory

    @property
    def collaborators(self) -> Collaborators:
        if self._collaborators is None:
            self._collaborators = build_collaborators(self.config)
        return self._collaborators

    # ==========================================
    # Planning
    # ==========================================

    def plan(self, targets: Optional[Iterable[str]] = None) -> List[LayerSpec]:
        """
        Resolve the enabled layers to run, in order.

        Raises:
            ConfigurationError: Unknown targets or layer types, cyclic or
                unknown dependencies
        """
        order = resolve_order(select_layers(self.config.layers, targets))
        if self.layer_factory is registry_factory:
            for spec in order:
                try:
                    LayerRegistry.get(spec.layer_type)
                except LayerTypeNotFoundError as e:
                    raise ConfigurationError(
                        f"Layer '{spec.name}': {e}", config_file=self.config.config_file
                    ) from e
        return order

    def _build_layer(
        self,
        spec: LayerSpec,
        outputs_of: Callable[[str], Optional[LayerOutput]],
        previous_output: Optional[LayerOutput] = None
    ) -> Layer:
        parts = self.collaborators
        context = LayerContext(
            global_config=self.config.global_config,
            spec=spec,
            runner=parts.runner,
            stack_reader=parts.stack_reader,
            health_checker=parts.health_checker,
            git=parts.git,
            cdk=parts.cdk,
            ssm=parts.ssm,
            outputs_of=outputs_of,
            previous_output=previous_output,
        )
        return self.layer_factory(spec, context, LayerToolkit(context))

    @staticmethod
    def _new_records(selected: List[LayerSpec]) -> Dict[str, LayerRunRecord]:
        records = {spec.name: LayerRunRecord(name=spec.name) for spec in selected}
        for spec in selected:
            if not spec.enabled:
                records[spec.name].transition(LayerState.SKIPPED_DISABLED, reason="Layer is disabled")
                logger.info(f"- {spec.name}: disabled, skipping")
        return records

    # ==========================================
    # Deploy
    # ==========================================

    def run(self, targets: Optional[Iterable[str]] = None) -> RunResult:
        """
        Deploy the targeted layers (default: all) and their dependencies.

        Args:
            targets: Layer names to deploy; their dependencies are included

        Returns:
            RunResult with one record per selected layer and the final state

        Raises:
            ConfigurationError: Before any layer runs, if the plan is invalid
        """
        targets = list(targets or [])
        order = self.plan(targets)
        selected = select_layers(self.config.layers, targets)
        continue_on_error = self.config.global_config.continue_on_error

        previous = self.state_store.load()
        state = DeploymentState(layers=dict(previous.layers), version=previous.version)
        captured: Dict[str, LayerOutput] = {}

        records = self._new_records(selected)
        result = RunResult(operation="deploy", records=records, state=state)

        logger.info(f"Deployment order: {' -> '.join(spec.name for spec in order)}")

        for index, spec in enumerate(order, start=1):
            record = records[spec.name]
            logger.info(f"[{index}/{len(order)}] Layer {spec.name}")
            start = time.monotonic()

            self._run_layer(spec, record, captured, state, previous.get(spec.name))

            record.duration = time.monotonic() - start
            self._persist(state)

            if record.state in (LayerState.FAILED, LayerState.TIMEOUT) and not continue_on_error:
                logger.error(f"✗ Aborting run after {spec.name} failed (continue_on_error is off)")
                result.aborted = True
                break

        return result

    def _run_layer(
        self,
        spec: LayerSpec,
        record: LayerRunRecord,
        captured: Dict[str, LayerOutput],
        state: DeploymentState,
        previous_output: Optional[LayerOutput]
    ):
        missing = [d for d in spec.depends_on if d not in captured]
        if missing:
            record.transition(LayerState.DEPENDENCY_FAILED,
                              reason=f"Dependencies not available: {', '.join(missing)}")
            record.error = record.reason
            logger.error(f"✗ {spec.name}: {record.reason}")
            return

        try:
            layer = self._build_layer(spec, captured.get, previous_output)
        except Exception as e:
            self._fail(record, f"Could not create layer: {e}")
            return

        record.transition(LayerState.VERIFYING)
        verify = self._verify_layer(layer)
        if verify.skip:
            record.transition(LayerState.SKIPPED, reason=verify.reason)
            logger.info(f"✓ {spec.name}: skipping deploy ({verify.reason})")
            self._capture(spec, verify.existing_output, record, captured, state)
            return

        logger.info(f"{spec.name}: deploying ({verify.reason})")
        record.transition(LayerState.DEPLOYING, reason=verify.reason)
        try:
            outcome = layer.deploy()
        except Exception as e:
            print_stack_trace()
            outcome = DeployOutcome(success=False, error=f"{type(e).__name__}: {e}")

        if not outcome.success:
            error = outcome.error or "deploy reported failure"
            if outcome.timed_out:
                record.transition(LayerState.TIMEOUT, reason="Deploy timed out; remote state unknown")
                record.error = error
                logger.error(f"✗ {spec.name}: deploy timed out: {error}")
            else:
                self._fail(record, error)
            return

        record.transition(LayerState.DEPLOYED)
        logger.info(f"✓ {spec.name} deployed in {outcome.duration:.0f}s")
        try:
            output = layer.contract.validate(layer.get_outputs())
        except Exception as e:
            print_stack_trace()
            self._fail(record, f"Could not capture outputs: {e}")
            return
        self._capture(spec, output, record, captured, state)

    def _verify_layer(self, layer: Layer) -> VerifyOutcome:
        """
        Call verify(); anything uncertain falls back to skip=False.

        A raising verify, a skip without outputs, and a skip whose outputs
        break the layer's contract all mean "deploy".
        """
        try:
            outcome = layer.verify()
        except Exception as e:
            print_stack_trace()
            logger.warning(f"{layer.name}: verify raised, will deploy: {e}")
            return VerifyOutcome(skip=False, reason=f"Verify failed: {e}")

        if not outcome.skip:
            return outcome
        if outcome.existing_output is None:
            return VerifyOutcome(skip=False, reason="Verify reported skip without outputs")

        missing = layer.contract.missing(outcome.existing_output)
        if missing:
            return VerifyOutcome(
                skip=False,
                reason=f"Existing deployment lacks required outputs: {', '.join(missing)}",
            )
        return outcome

    @staticmethod
    def _capture(
        spec: LayerSpec,
        output: LayerOutput,
        record: LayerRunRecord,
        captured: Dict[str, LayerOutput],
        state: Optional[DeploymentState] = None
    ):
        output.layer_name = spec.name
        captured[spec.name] = output
        if state is not None:
            state.record(output)
        record.transition(LayerState.OUTPUTS_CAPTURED)

    @staticmethod
    def _fail(record: LayerRunRecord, error: str):
        record.transition(LayerState.FAILED, reason=error)
        record.error = error
        logger.error(f"✗ {record.name}: {error}")

    def _persist(self, state: DeploymentState):
        try:
            self.state_store.save(state)
        except OSError as e:
            logger.error(f"✗ Could not persist deployment state to {self.state_store.path}: {e}")

    # ==========================================
    # Verify only
    # ==========================================

    def verify(self, targets: Optional[Iterable[str]] = None) -> RunResult:
        """
        Call verify() for every targeted layer in order, without deploying.

        Outputs of layers confirmed healthy are visible to later layers'
        verify, as in a real run. Nothing is persisted. Layers that would
        be deployed end up Pending with the verify reason.
        """
        targets = list(targets or [])
        order = self.plan(targets)
        selected = select_layers(self.config.layers, targets)
        previous = self.state_store.load()
        captured: Dict[str, LayerOutput] = {}
        records = self._new_records(selected)

        for spec in order:
            record = records[spec.name]
            try:
                layer = self._build_layer(spec, captured.get, previous.get(spec.name))
            except Exception as e:
                self._fail(record, f"Could not create layer: {e}")
                continue

            record.transition(LayerState.VERIFYING)
            outcome = self._verify_layer(layer)
            if outcome.skip:
                record.transition(LayerState.SKIPPED, reason=outcome.reason)
                self._capture(spec, outcome.existing_output, record, captured)
                logger.info(f"✓ {spec.name}: healthy ({outcome.reason})")
            else:
                record.transition(LayerState.PENDING, reason=outcome.reason)
                logger.info(f"- {spec.name}: needs deployment ({outcome.reason})")

        return RunResult(operation="verify", records=records,
                         state=DeploymentState(layers=dict(captured)))

    # ==========================================
    # Destroy
    # ==========================================

    def destroy(self, targets: Optional[Iterable[str]] = None) -> RunResult:
        """
        Destroy layers in reverse dependency order.

        Only the named targets are destroyed (all enabled layers if none);
        dependencies of a target are left alone. Every layer is attempted
        even if an earlier one fails. The stored DeploymentState is not
        modified.
        """
        targets = list(targets or [])
        known = {spec.name for spec in self.config.layers}
        unknown = [t for t in targets if t not in known]
        if unknown:
            raise ConfigurationError(
                f"Unknown layer(s): {', '.join(unknown)}", config_file=self.config.config_file
            )

        order = [spec for spec in reversed(self.plan())
                 if not targets or spec.name in targets]
        previous = self.state_store.load()
        records = {spec.name: LayerRunRecord(name=spec.name) for spec in order}

        logger.info(f"Destroy order: {' -> '.join(spec.name for spec in order)}")
        for spec in order:
            record = records[spec.name]
            start = time.monotonic()
            try:
                layer = self._build_layer(spec, previous.get, previous.get(spec.name))
                outcome = layer.destroy()
            except Exception as e:
                print_stack_trace()
                self._fail(record, f"Destroy raised: {e}")
                continue
            finally:
                record.duration = time.monotonic() - start

            if outcome.success:
                record.transition(LayerState.DESTROYED)
                logger.info(f"✓ {spec.name} destroyed")
            else:
                self._fail(record, outcome.error or "destroy reported failure")

        return RunResult(operation="destroy", records=records, state=previous)

    def status(self) -> DeploymentState:
        """Return the persisted DeploymentState."""
        return self.state_store.load()


def format_summary(result: RunResult) -> List[str]:
    """Human-readable per-layer summary lines."""
    lines = [f"{result.operation.capitalize()} summary:"]
    for record in result.records.values():
        line = f"  {record.name:<20} {record.state.value}"
        if record.duration:
            line += f" ({record.duration:.0f}s)"
        lines.append(line)
        if record.error:
            lines.append(f"      {record.error}")
        elif result.operation == "verify" and record.state is LayerState.PENDING and record.reason:
            lines.append(f"      {record.reason}")
    if result.aborted:
        lines.append("  Run aborted; remaining layers were not attempted.")
    lines.append("Result: " + ("SUCCESS" if result.success else "FAILURE"))
    return lines
