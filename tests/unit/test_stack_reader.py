"""
Unit tests for StackOutputReader retry and wait behavior.

The CloudFormation client is a MagicMock; time is a fake clock advanced
by the injected sleep function.
"""

from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from layer_orchestrator.aws.stack_reader import StackOutputReader, is_terminal_status


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def client_error(message, code="ValidationError"):
    return ClientError({"Error": {"Code": code, "Message": message}}, "DescribeStacks")


def stack(status, outputs=None):
    entry = {"StackName": "s", "StackStatus": status}
    if outputs is not None:
        entry["Outputs"] = [{"OutputKey": k, "OutputValue": v} for k, v in outputs.items()]
    return {"Stacks": [entry]}


def reader_with(client, clock=None, **kwargs):
    clock = clock or FakeClock()
    return StackOutputReader(client, sleep=clock.sleep, clock=clock, **kwargs)


class TestReadStackOutputs:
    def test_outputs_are_returned_as_strings(self):
        client = MagicMock()
        client.describe_stacks.return_value = stack("CREATE_COMPLETE", {"RpcUrl": "http://x:3030"})

        result = reader_with(client).read_stack_outputs("near-localnet-sync")

        assert result.success
        assert result.outputs == {"RpcUrl": "http://x:3030"}

    def test_stack_without_outputs_is_empty_success(self):
        client = MagicMock()
        client.describe_stacks.return_value = stack("CREATE_COMPLETE")

        result = reader_with(client).read_stack_outputs("s")

        assert result.success
        assert result.outputs == {}

    def test_missing_stack_fails_without_retry(self):
        client = MagicMock()
        client.describe_stacks.side_effect = client_error("Stack with id s does not exist")

        result = reader_with(client).read_stack_outputs("s")

        assert not result.success
        assert client.describe_stacks.call_count == 1

    def test_transient_errors_are_retried_with_fixed_delay(self):
        clock = FakeClock()
        client = MagicMock()
        client.describe_stacks.side_effect = [
            client_error("Rate exceeded", code="Throttling"),
            stack("CREATE_COMPLETE", {"A": "1"}),
        ]

        result = reader_with(client, clock, retry_delay=2).read_stack_outputs("s")

        assert result.success
        assert clock.sleeps == [2]

    def test_retries_are_bounded(self):
        client = MagicMock()
        client.describe_stacks.side_effect = client_error("Rate exceeded", code="Throttling")

        result = reader_with(client, max_retries=3).read_stack_outputs("s")

        assert not result.success
        assert "Rate exceeded" in result.error
        assert client.describe_stacks.call_count == 3

    def test_multiple_stacks_are_keyed_by_name(self):
        client = MagicMock()
        client.describe_stacks.side_effect = lambda StackName: stack(
            "CREATE_COMPLETE", {"Name": StackName}
        )

        results = reader_with(client).read_multiple_stack_outputs(["one", "two"])

        assert results["one"].outputs == {"Name": "one"}
        assert results["two"].outputs == {"Name": "two"}


class TestWaitForStatus:
    def test_reaches_target(self):
        client = MagicMock()
        client.describe_stacks.side_effect = [
            stack("CREATE_IN_PROGRESS"),
            stack("CREATE_IN_PROGRESS"),
            stack("CREATE_COMPLETE"),
        ]

        result = reader_with(client).wait_for_status("s", "CREATE_COMPLETE", timeout=100, poll_interval=10)

        assert result.success
        assert result.status == "CREATE_COMPLETE"
        assert not result.timed_out

    def test_other_terminal_status_fails_immediately(self):
        client = MagicMock()
        client.describe_stacks.side_effect = [
            stack("CREATE_IN_PROGRESS"),
            stack("ROLLBACK_COMPLETE"),
        ]

        result = reader_with(client).wait_for_status("s", "CREATE_COMPLETE", timeout=100, poll_interval=10)

        assert not result.success
        assert not result.timed_out
        assert result.status == "ROLLBACK_COMPLETE"

    def test_deadline_yields_timeout(self):
        clock = FakeClock()
        client = MagicMock()
        client.describe_stacks.return_value = stack("UPDATE_IN_PROGRESS")

        result = reader_with(client, clock).wait_for_status(
            "s", "UPDATE_COMPLETE", timeout=30, poll_interval=10
        )

        assert not result.success
        assert result.timed_out
        assert result.status == "UPDATE_IN_PROGRESS"
        assert clock.now == 30

    def test_vanished_stack_satisfies_delete_complete(self):
        client = MagicMock()
        client.describe_stacks.side_effect = [
            stack("DELETE_IN_PROGRESS"),
            client_error("Stack with id s does not exist"),
        ]

        result = reader_with(client).wait_for_status("s", "DELETE_COMPLETE", timeout=100, poll_interval=5)

        assert result.success

    def test_api_errors_keep_polling(self):
        client = MagicMock()
        client.describe_stacks.side_effect = [
            client_error("Rate exceeded", code="Throttling"),
            stack("CREATE_COMPLETE"),
        ]

        result = reader_with(client).wait_for_status("s", "CREATE_COMPLETE", timeout=100, poll_interval=5)

        assert result.success


def test_terminal_status_classification():
    assert is_terminal_status("CREATE_COMPLETE")
    assert is_terminal_status("UPDATE_ROLLBACK_FAILED")
    assert not is_terminal_status("UPDATE_COMPLETE_CLEANUP_IN_PROGRESS")
