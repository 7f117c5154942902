"""
Unit tests for SsmCommandPoller.
"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from layer_orchestrator.aws.ssm_poller import CommandStatus, SsmCommandPoller, classify_status
from layer_orchestrator.core.exceptions import RemoteOperationFailed, RemoteOperationTimeout


def invocation(status, stdout="", stderr=""):
    return {
        "Status": status,
        "StandardOutputContent": stdout,
        "StandardErrorContent": stderr,
    }


def poller_with(client, **kwargs):
    sleeps = []
    poller = SsmCommandPoller(client, sleep=sleeps.append, **kwargs)
    return poller, sleeps


class TestPoll:
    def test_pending_then_success_polls_until_done(self):
        client = MagicMock()
        client.get_command_invocation.side_effect = [
            invocation("Pending"),
            invocation("InProgress"),
            invocation("Success", stdout="ok\n"),
        ]
        poller, sleeps = poller_with(client, poll_interval=2, max_attempts=10)

        result = poller.poll("cmd-1", "i-123")

        assert result.success
        assert result.stdout == "ok\n"
        assert result.attempts == 3
        assert client.get_command_invocation.call_count == 3
        assert sleeps == [2, 2, 2]

    def test_never_terminal_is_local_timeout(self):
        client = MagicMock()
        client.get_command_invocation.return_value = invocation("InProgress")
        poller, _ = poller_with(client, poll_interval=1, max_attempts=5)

        result = poller.poll("cmd-1", "i-123")

        assert result.status is CommandStatus.TIMED_OUT
        assert result.local_timeout
        assert client.get_command_invocation.call_count == 5
        with pytest.raises(RemoteOperationTimeout):
            result.raise_for_status("contract deployment")

    def test_failure_fetches_stderr(self):
        client = MagicMock()
        client.get_command_invocation.side_effect = [
            invocation("Pending"),
            invocation("Failed"),
            invocation("Failed", stderr="near: command not found\n"),
        ]
        poller, _ = poller_with(client, poll_interval=1, max_attempts=10)

        result = poller.poll("cmd-1", "i-123")

        assert result.status is CommandStatus.FAILED
        assert result.error == "near: command not found"
        with pytest.raises(RemoteOperationFailed) as exc_info:
            result.raise_for_status("contract deployment", layer="near_services")
        assert "near: command not found" in str(exc_info.value)
        assert "[layer=near_services]" in str(exc_info.value)

    def test_invocation_not_registered_yet_counts_as_pending(self):
        client = MagicMock()
        client.get_command_invocation.side_effect = [
            ClientError({"Error": {"Code": "InvocationDoesNotExist", "Message": "nope"}},
                        "GetCommandInvocation"),
            invocation("Success", stdout="done"),
        ]
        poller, _ = poller_with(client, poll_interval=1, max_attempts=3)

        result = poller.poll("cmd-1", "i-123")

        assert result.success
        assert result.attempts == 2

    def test_per_call_overrides(self):
        client = MagicMock()
        client.get_command_invocation.return_value = invocation("Pending")
        poller, sleeps = poller_with(client, poll_interval=2, max_attempts=30)

        poller.poll("cmd-1", "i-123", poll_interval=10, max_attempts=2)

        assert sleeps == [10, 10]


class TestSubmit:
    def test_submit_sends_shell_script(self):
        client = MagicMock()
        client.send_command.return_value = {"Command": {"CommandId": "cmd-42"}}
        poller, _ = poller_with(client)

        command_id = poller.submit("i-123", ["echo hi"], comment="say hi")

        assert command_id == "cmd-42"
        kwargs = client.send_command.call_args.kwargs
        assert kwargs["DocumentName"] == "AWS-RunShellScript"
        assert kwargs["Parameters"]["commands"] == ["echo hi"]
        assert kwargs["InstanceIds"] == ["i-123"]

    def test_rejected_submit_raises(self):
        client = MagicMock()
        client.send_command.side_effect = ClientError(
            {"Error": {"Code": "InvalidInstanceId", "Message": "bad instance"}}, "SendCommand"
        )
        poller, _ = poller_with(client)

        with pytest.raises(RemoteOperationFailed):
            poller.submit("i-bad", ["true"])


def test_invalid_arguments_are_rejected():
    with pytest.raises(ValueError):
        SsmCommandPoller(MagicMock(), poll_interval=0)
    with pytest.raises(ValueError):
        SsmCommandPoller(MagicMock(), max_attempts=0)


def test_unknown_status_is_pending():
    assert classify_status("Delayed") is CommandStatus.PENDING
    assert classify_status("Cancelled") is CommandStatus.CANCELLED
