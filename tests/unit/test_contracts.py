"""
Unit tests for output contracts and run bookkeeping models.
"""

import pytest

from layer_orchestrator.core.contracts import OutputContract
from layer_orchestrator.core.exceptions import MissingFieldError
from layer_orchestrator.core.models import (
    LayerOutput,
    LayerRunRecord,
    LayerState,
    RunResult,
)


CONTRACT = OutputContract(
    required=("v1_signer_contract_id", "mpc_node_count"),
    optional=("near_rpc_url",),
    optional_prefixes=("mpc_node_",),
)


def output(**values):
    return LayerOutput(layer_name="chain_signatures", deployed=True, outputs=values)


class TestOutputContract:
    def test_complete_output_validates(self):
        out = output(v1_signer_contract_id="v1.signer.localnet", mpc_node_count="3")

        assert CONTRACT.validate(out) is out

    def test_missing_required_field_raises(self):
        with pytest.raises(MissingFieldError) as exc_info:
            CONTRACT.validate(output(v1_signer_contract_id="v1.signer.localnet"))

        assert exc_info.value.field == "mpc_node_count"
        assert "chain_signatures" in str(exc_info.value)

    def test_empty_string_counts_as_missing(self):
        out = output(v1_signer_contract_id="", mpc_node_count="3")

        assert CONTRACT.missing(out) == ["v1_signer_contract_id"]

    def test_prefixes_declare_dynamic_keys(self):
        assert CONTRACT.declares("mpc_node_0_url")
        assert CONTRACT.declares("near_rpc_url")
        assert not CONTRACT.declares("random_key")

    def test_undeclared_keys_do_not_fail_validation(self):
        out = output(v1_signer_contract_id="x", mpc_node_count="1", extra="y")

        CONTRACT.validate(out)


class TestRunResult:
    def records(self, **states):
        records = {}
        for name, state in states.items():
            record = LayerRunRecord(name=name)
            record.transition(state)
            records[name] = record
        return records

    def test_deploy_success_ignores_skipped_and_disabled(self):
        result = RunResult("deploy", self.records(
            a=LayerState.OUTPUTS_CAPTURED, b=LayerState.SKIPPED_DISABLED,
        ))

        assert result.success

    def test_deploy_fails_on_dependency_failure(self):
        result = RunResult("deploy", self.records(
            a=LayerState.OUTPUTS_CAPTURED, b=LayerState.DEPENDENCY_FAILED,
        ))

        assert not result.success
        assert [r.name for r in result.failed_records()] == ["b"]

    def test_verify_requires_every_layer_verified(self):
        result = RunResult("verify", self.records(
            a=LayerState.OUTPUTS_CAPTURED, b=LayerState.PENDING,
        ))

        assert not result.success

    def test_aborted_run_is_never_successful(self):
        result = RunResult("deploy", self.records(a=LayerState.OUTPUTS_CAPTURED), aborted=True)

        assert not result.success

    def test_transition_keeps_history_and_reason(self):
        record = LayerRunRecord(name="a")

        record.transition(LayerState.VERIFYING)
        record.transition(LayerState.SKIPPED, reason="healthy")

        assert record.history == [LayerState.PENDING, LayerState.VERIFYING, LayerState.SKIPPED]
        assert record.reason == "healthy"
