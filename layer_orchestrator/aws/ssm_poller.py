"""
Remote command execution via SSM (submit + poll).

A command is submitted with AWS-RunShellScript and its invocation is
polled on a fixed interval up to a maximum number of attempts. Each
poll is preceded by a mandatory delay. Any non-success terminal status
triggers a follow-up fetch of the command's stderr, used as the failure
reason. Running out of attempts only stops the waiting; the command may
still be running on the instance and the result is TIMED_OUT.

Usage:
    poller = SsmCommandPoller(clients["ssm"])
    result = poller.run(instance_id, ["near --version"])
    result.raise_for_status("near version check")
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError

import layer_orchestrator.constants as CONSTANTS
from layer_orchestrator.core.exceptions import RemoteOperationFailed, RemoteOperationTimeout
from layer_orchestrator.logger import truncate

logger = logging.getLogger(__name__)


class CommandStatus(str, Enum):
    PENDING = "Pending"
    SUCCESS = "Success"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    TIMED_OUT = "TimedOut"

    @property
    def is_terminal(self) -> bool:
        return self is not CommandStatus.PENDING


_STATUS_MAP = {
    "Success": CommandStatus.SUCCESS,
    "Failed": CommandStatus.FAILED,
    "Cancelled": CommandStatus.CANCELLED,
    "TimedOut": CommandStatus.TIMED_OUT,
}


@dataclass
class RemoteCommandResult:
    """
    Final state of one submitted command.

    Attributes:
        status: Classified terminal status
        command_id: SSM command id
        stdout: Standard output (success only)
        error: Diagnostic text for non-success results
        attempts: Number of status polls performed
        local_timeout: True if polling gave up; the remote side may still finish
        timeout_hint: Seconds spent waiting, reported on timeouts
    """
    status: CommandStatus
    command_id: str
    stdout: str = ""
    error: Optional[str] = None
    attempts: int = 0
    local_timeout: bool = False
    timeout_hint: float = 0.0

    @property
    def success(self) -> bool:
        return self.status is CommandStatus.SUCCESS

    def raise_for_status(self, operation: str, layer: Optional[str] = None):
        """
        Raises:
            RemoteOperationTimeout: If the command or the polling timed out
            RemoteOperationFailed: If the command failed or was cancelled
        """
        if self.success:
            return
        if self.status is CommandStatus.TIMED_OUT:
            raise RemoteOperationTimeout(operation, self.timeout_hint, layer=layer)
        raise RemoteOperationFailed(operation, self.error or self.status.value, layer=layer)


def classify_status(raw_status: str) -> CommandStatus:
    """Map an SSM invocation status to a CommandStatus; unknown values are pending."""
    return _STATUS_MAP.get(raw_status, CommandStatus.PENDING)


class SsmCommandPoller:
    """
    Submits shell commands to EC2 instances and polls them to completion.

    Args:
        ssm_client: boto3 SSM client
        poll_interval: Fixed delay before each poll (seconds)
        max_attempts: Poll ceiling; total wait is bounded by attempts x interval
        sleep: Sleep function (defaults to time.sleep, looked up per call)
    """

    def __init__(
        self,
        ssm_client: Any,
        poll_interval: float = CONSTANTS.SSM_POLL_INTERVAL,
        max_attempts: int = CONSTANTS.SSM_MAX_ATTEMPTS,
        sleep: Optional[Callable[[float], None]] = None
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.client = ssm_client
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    def submit(
        self,
        instance_id: str,
        commands: Sequence[str],
        comment: Optional[str] = None,
        execution_timeout: Optional[int] = None
    ) -> str:
        """
        Submit a shell script to an instance.

        Returns:
            The SSM command id

        Raises:
            RemoteOperationFailed: If SSM rejects the command
        """
        parameters = {"commands": list(commands)}
        if execution_timeout:
            parameters["executionTimeout"] = [str(execution_timeout)]

        kwargs = {
            "InstanceIds": [instance_id],
            "DocumentName": "AWS-RunShellScript",
            "Parameters": parameters,
        }
        if comment:
            kwargs["Comment"] = comment[:100]

        try:
            response = self.client.send_command(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise RemoteOperationFailed(f"SSM send-command to {instance_id}", str(e))

        command_id = response["Command"]["CommandId"]
        logger.info(f"Submitted SSM command {command_id} to {instance_id}")
        return command_id

    def poll(
        self,
        command_id: str,
        instance_id: str,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None
    ) -> RemoteCommandResult:
        """
        Poll a submitted command until it reaches a terminal status.

        Args:
            command_id: Id returned by submit()
            instance_id: Target instance
            poll_interval: Override the fixed delay for this command
            max_attempts: Override the poll ceiling for this command

        Returns:
            RemoteCommandResult; never raises for remote failures or timeouts
        """
        interval = poll_interval or self.poll_interval
        attempts = max_attempts or self.max_attempts
        sleep = self._sleep or time.sleep

        for attempt in range(1, attempts + 1):
            sleep(interval)
            try:
                invocation = self.client.get_command_invocation(
                    CommandId=command_id, InstanceId=instance_id
                )
            except ClientError as e:
                # The invocation may not be registered yet right after submit
                code = e.response.get("Error", {}).get("Code", "")
                if code != "InvocationDoesNotExist":
                    logger.debug(f"Polling {command_id} failed, will retry: {e}")
                continue
            except BotoCoreError as e:
                logger.debug(f"Polling {command_id} failed, will retry: {e}")
                continue

            status = classify_status(invocation.get("Status", ""))
            logger.debug(f"SSM command {command_id} poll {attempt}/{attempts}: {invocation.get('Status')}")

            if status is CommandStatus.SUCCESS:
                logger.info(f"✓ SSM command {command_id} succeeded")
                return RemoteCommandResult(
                    status=status,
                    command_id=command_id,
                    stdout=invocation.get("StandardOutputContent", ""),
                    attempts=attempt,
                )
            if status.is_terminal:
                error = self.fetch_error_output(command_id, instance_id) or status.value
                logger.error(f"✗ SSM command {command_id} ended {status.value}: {truncate(error)}")
                return RemoteCommandResult(
                    status=status,
                    command_id=command_id,
                    error=error,
                    attempts=attempt,
                    timeout_hint=attempt * interval,
                )

        logger.error(
            f"✗ Gave up waiting for SSM command {command_id} after {attempts} polls; "
            "it may still be running"
        )
        return RemoteCommandResult(
            status=CommandStatus.TIMED_OUT,
            command_id=command_id,
            error=f"No terminal status after {attempts} polls ({attempts * interval:g}s)",
            attempts=attempts,
            local_timeout=True,
            timeout_hint=attempts * interval,
        )

    def fetch_error_output(self, command_id: str, instance_id: str) -> str:
        """Fetch a finished command's stderr; empty string if unavailable."""
        try:
            invocation = self.client.get_command_invocation(
                CommandId=command_id, InstanceId=instance_id
            )
        except (ClientError, BotoCoreError) as e:
            logger.debug(f"Could not fetch error output of {command_id}: {e}")
            return ""
        return (invocation.get("StandardErrorContent") or "").strip()

    def run(
        self,
        instance_id: str,
        commands: Sequence[str],
        comment: Optional[str] = None,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None
    ) -> RemoteCommandResult:
        """Submit a command and poll it to completion."""
        command_id = self.submit(instance_id, commands, comment=comment)
        return self.poll(
            command_id, instance_id,
            poll_interval=poll_interval, max_attempts=max_attempts
        )
