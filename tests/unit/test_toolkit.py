"""
Unit tests for LayerToolkit helpers.
"""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from layer_orchestrator.aws.cdk_manager import CdkResult
from layer_orchestrator.aws.ssm_poller import CommandStatus, RemoteCommandResult
from layer_orchestrator.core.context import LayerContext
from layer_orchestrator.core.exceptions import (
    MissingDependencyOutputError,
    RemoteOperationFailed,
    RemoteOperationTimeout,
)
from layer_orchestrator.core.models import (
    CommandOutcome,
    GlobalRunConfig,
    HealthOutcome,
    LayerOutput,
    LayerSource,
    LayerSpec,
)
from layer_orchestrator.layers.toolkit import LayerToolkit


def make_context(source=None, outputs=None, **config):
    outputs = outputs or {}
    return LayerContext(
        global_config=GlobalRunConfig(),
        spec=LayerSpec(name="near_services", source=source, config=config),
        runner=MagicMock(),
        stack_reader=MagicMock(),
        health_checker=MagicMock(),
        git=MagicMock(),
        cdk=MagicMock(default_timeout=1800),
        ssm=MagicMock(),
        outputs_of=outputs.get,
    )


class TestOutputs:
    def test_create_layer_output_drops_empty_and_stringifies(self):
        toolkit = LayerToolkit(make_context())

        output = toolkit.create_layer_output({
            "faucet_endpoint": "http://faucet",
            "count": 3,
            "enabled": True,
            "chains": ["ethereum", "bitcoin"],
            "missing": None,
            "blank": "",
        })

        assert output.layer_name == "near_services"
        assert output.outputs == {
            "faucet_endpoint": "http://faucet",
            "count": "3",
            "enabled": "true",
            "chains": '["ethereum", "bitcoin"]',
        }

    def test_require_dependency(self):
        near = LayerOutput(layer_name="near_base", deployed=True, outputs={"rpc_url": "http://x"})
        toolkit = LayerToolkit(make_context(outputs={"near_base": near}))

        assert toolkit.require_dependency("near_base") is near
        with pytest.raises(MissingDependencyOutputError):
            toolkit.require_dependency("chain_signatures")


class TestHealth:
    def test_probe_exceptions_become_unhealthy(self):
        context = make_context()
        context.health_checker.check_rpc.side_effect = RuntimeError("boom")

        outcome = LayerToolkit(context).run_health_check("http://x", kind="rpc")

        assert not outcome.healthy
        assert "boom" in outcome.error

    def test_wait_for_healthy_retries_on_fixed_interval(self):
        sleeps = []
        results = iter([
            HealthOutcome(healthy=False, error="starting"),
            HealthOutcome(healthy=False, error="starting"),
            HealthOutcome(healthy=True),
        ])
        toolkit = LayerToolkit(make_context(), sleep=sleeps.append)

        outcome = toolkit.wait_for_healthy(lambda: next(results), attempts=5, interval=3)

        assert outcome.healthy
        assert sleeps == [3, 3]

    def test_wait_for_healthy_gives_up(self):
        sleeps = []
        toolkit = LayerToolkit(make_context(), sleep=sleeps.append)

        outcome = toolkit.wait_for_healthy(
            lambda: HealthOutcome(healthy=False, error="down"), attempts=3, interval=1
        )

        assert not outcome.healthy
        assert len(sleeps) == 2


class TestRemoteWork:
    def test_remote_command_returns_stdout(self):
        context = make_context()
        context.ssm.run.return_value = RemoteCommandResult(
            status=CommandStatus.SUCCESS, command_id="c", stdout="deployed"
        )

        assert LayerToolkit(context).run_remote_command("i-1", ["true"], "deploy contracts") == "deployed"

    def test_remote_command_timeout_raises(self):
        context = make_context()
        context.ssm.run.return_value = RemoteCommandResult(
            status=CommandStatus.TIMED_OUT, command_id="c", local_timeout=True, timeout_hint=60
        )

        with pytest.raises(RemoteOperationTimeout):
            LayerToolkit(context).run_remote_command("i-1", ["true"], "deploy contracts")

    def test_read_stack_outputs_raises_on_failure(self):
        context = make_context()
        context.stack_reader.read_stack_outputs.return_value = MagicMock(
            success=False, error="Stack x does not exist", outputs={}
        )
        toolkit = LayerToolkit(context)

        with pytest.raises(RemoteOperationFailed):
            toolkit.read_stack_outputs("x")
        assert toolkit.try_read_stack_outputs("x") == {}

    def test_cdk_timeout_raises_timeout(self, tmp_path):
        source = LayerSource(repo_url="https://example.com/faucet.git", cdk_path="cdk")
        context = make_context(source=source)
        context.cdk.deploy.return_value = CdkResult(success=False, timed_out=True, error="killed")

        with pytest.raises(RemoteOperationTimeout):
            LayerToolkit(context).deploy_cdk_stacks(tmp_path, stacks=["FaucetStack"])

        assert context.cdk.deploy.call_args.args[0] == tmp_path / "cdk"

    def test_ensure_repository_checks_out_once(self, tmp_path):
        source = LayerSource(repo_url="https://example.com/faucet.git", branch="dev", cdk_path="cdk")
        context = make_context(source=source)
        context.git.ensure_repository.return_value = tmp_path
        toolkit = LayerToolkit(context)

        assert toolkit.ensure_repository() == tmp_path
        assert toolkit.ensure_repository() == tmp_path
        context.git.ensure_repository.assert_called_once_with("https://example.com/faucet.git", "dev")

    def test_ensure_repository_without_source_fails(self):
        with pytest.raises(RemoteOperationFailed):
            LayerToolkit(make_context()).ensure_repository()


class TestScripts:
    @pytest.mark.parametrize("script,program", [
        ("scripts/deploy.sh", "bash"),
        ("scripts/deploy.js", "node"),
        ("scripts/deploy.ts", "node"),
    ])
    def test_interpreter_is_picked_by_extension(self, script, program):
        context = make_context()
        context.runner.run.return_value = CommandOutcome(success=True)

        LayerToolkit(context).execute_script(Path("/repo"), script, env={"A": "1"})

        call = context.runner.run.call_args
        assert call.args[0] == program
        assert call.args[1][-1] == f"/repo/{script}"
        assert call.kwargs["cwd"] == Path("/repo")
        assert call.kwargs["env"] == {"A": "1"}

    def test_checked_script_failure_raises(self):
        context = make_context()
        context.runner.run.return_value = CommandOutcome(success=False, stderr="bad", exit_code=2)

        with pytest.raises(RemoteOperationFailed) as exc_info:
            LayerToolkit(context).run_script_checked(Path("/repo"), "setup.sh")

        assert exc_info.value.exit_code == 2


class TestBoundaries:
    def test_deploy_step_success(self):
        outcome = LayerToolkit(make_context()).deploy_step(lambda: None)

        assert outcome.success

    def test_deploy_step_marks_timeouts(self):
        def body():
            raise RemoteOperationTimeout("cdk deploy", 1800)

        outcome = LayerToolkit(make_context()).deploy_step(body)

        assert not outcome.success
        assert outcome.timed_out

    def test_deploy_step_reports_failures(self):
        def body():
            raise RemoteOperationFailed("npm run build", "tsc error")

        outcome = LayerToolkit(make_context()).deploy_step(body)

        assert not outcome.success
        assert not outcome.timed_out
        assert "tsc error" in outcome.error

    def test_cleanup_attempts_every_step(self):
        ran = []

        def failing():
            ran.append("stack")
            raise RemoteOperationFailed("cdk destroy", "stack busy")

        steps = [
            ("destroy stack", failing),
            ("remove config", lambda: ran.append("config")),
        ]

        outcome = LayerToolkit(make_context()).run_cleanup_steps(steps)

        assert ran == ["stack", "config"]
        assert not outcome.success
        assert list(outcome.failures) == ["destroy stack"]
        assert "1 cleanup step(s) failed" in outcome.error

    def test_remove_missing_file_is_fine(self, tmp_path):
        LayerToolkit.remove_file(tmp_path / "never-written.json")

    def test_write_config_file_creates_directories(self, tmp_path):
        path = LayerToolkit(make_context()).write_config_file(tmp_path / "a" / "b.json", {"k": 1})

        assert path.read_text().startswith("{")
