"""
Tests for the command line entry point.

Only commands that never reach a real layer (list, status, --dry-run with
a stubbed verify, cancelled destroy, configuration errors) are exercised here.
"""

import json

import pytest

from layer_orchestrator.core.models import LayerRunRecord, LayerState, RunResult
from layer_orchestrator.main import EXIT_CONFIG_ERROR, EXIT_FAILURE, EXIT_OK, main

CONFIG = {
    "global": {"aws_region": "us-east-1"},
    "layers": {
        "near_base": {
            "source": {"repo_url": "https://example.com/node-runner.git", "cdk_path": "cdk"},
        },
        "near_services": {
            "depends_on": ["near_base"],
            "source": {"repo_url": "https://example.com/faucet.git", "cdk_path": "cdk"},
        },
        "ethereum_localnet": {
            "enabled": False,
            "source": {"repo_url": "https://example.com/eth.git", "cdk_path": "cdk"},
        },
    },
}


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "orchestrator.config.json"
    path.write_text(json.dumps(CONFIG))
    return path


def run_cli(config_file, tmp_path, *argv):
    return main(["-c", str(config_file), "--state-file", str(tmp_path / "state.json"), *argv])


class TestCli:
    def test_list_shows_layers_and_types(self, config_file, tmp_path, capsys):
        assert run_cli(config_file, tmp_path, "list") == EXIT_OK

        out = capsys.readouterr().out
        assert "near_services" in out
        assert "disabled" in out
        assert "chain_signatures" in out  # registered type

    def test_dry_run_prints_plan_then_verifies_only(self, config_file, tmp_path, capsys, monkeypatch):
        calls = []

        def fake_verify(orchestrator, targets=None):
            calls.append("verify")
            return RunResult("verify", records={
                "near_base": LayerRunRecord("near_base", state=LayerState.OUTPUTS_CAPTURED),
            })

        monkeypatch.setattr("layer_orchestrator.main.Orchestrator.verify", fake_verify)
        monkeypatch.setattr("layer_orchestrator.main.Orchestrator.run",
                            lambda *a, **k: pytest.fail("dry-run must not deploy"))

        assert run_cli(config_file, tmp_path, "--dry-run", "deploy") == EXIT_OK

        out = capsys.readouterr().out
        assert out.index("1. near_base") < out.index("2. near_services")
        assert "ethereum_localnet" not in out
        assert calls == ["verify"]

    def test_dry_run_destroy_is_reversed(self, config_file, tmp_path, capsys):
        assert run_cli(config_file, tmp_path, "--dry-run", "destroy") == EXIT_OK

        out = capsys.readouterr().out
        assert out.index("1. near_services") < out.index("2. near_base")

    def test_status_without_state(self, config_file, tmp_path, capsys):
        assert run_cli(config_file, tmp_path, "status") == EXIT_OK

        assert "No deployment state" in capsys.readouterr().out

    def test_status_prints_stored_state(self, config_file, tmp_path, capsys):
        (tmp_path / "state.json").write_text(json.dumps({
            "layers": {"near_base": {"deployed": True, "outputs": {"rpc_url": "http://10.0.0.5:3030"}}},
        }))

        assert run_cli(config_file, tmp_path, "status") == EXIT_OK

        assert "http://10.0.0.5:3030" in capsys.readouterr().out

    def test_status_json_prints_full_document(self, config_file, tmp_path, capsys):
        outputs = {f"key_{i}": str(i) for i in range(6)}
        (tmp_path / "state.json").write_text(json.dumps({
            "layers": {"near_base": {"deployed": True, "outputs": outputs}},
        }))

        assert run_cli(config_file, tmp_path, "status") == EXIT_OK
        assert "2 more" in capsys.readouterr().out

        assert run_cli(config_file, tmp_path, "--json", "status") == EXIT_OK
        out = capsys.readouterr().out
        document = json.loads(out[out.index("{"):])
        assert document["layers"]["near_base"]["outputs"] == outputs

    def test_destroy_requires_confirmation(self, config_file, tmp_path, monkeypatch, capsys):
        monkeypatch.setattr("builtins.input", lambda prompt: "no")

        assert run_cli(config_file, tmp_path, "destroy") == EXIT_FAILURE

        assert "cancelled" in capsys.readouterr().out

    def test_missing_config_is_a_config_error(self, tmp_path):
        assert main(["-c", str(tmp_path / "missing.json"), "list"]) == EXIT_CONFIG_ERROR

    def test_unknown_target_is_a_config_error(self, config_file, tmp_path):
        assert run_cli(config_file, tmp_path, "--dry-run", "deploy", "nope") == EXIT_CONFIG_ERROR

    def test_invalid_command_exits(self, config_file):
        with pytest.raises(SystemExit):
            main(["-c", str(config_file), "explode"])
