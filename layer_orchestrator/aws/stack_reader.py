"""
CloudFormation stack output reader and status waiter.

Stack outputs can lag behind the stack reaching CREATE_COMPLETE, so
reads are retried a bounded number of times with a fixed delay. Status
waits poll on a fixed interval until the target status, a different
terminal status, or the deadline. A timeout is reported as such and is
never a success.

Usage:
    reader = StackOutputReader(clients["cloudformation"])
    result = reader.read_stack_outputs("near-localnet-sync")
    if result.success:
        rpc_url = result.outputs.get("RpcUrl")
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError

import layer_orchestrator.constants as CONSTANTS

logger = logging.getLogger(__name__)


@dataclass
class StackOutputs:
    success: bool
    outputs: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class WaitResult:
    """
    Outcome of waiting for a stack status.

    Attributes:
        success: True only if the target status was observed
        status: Last observed status (None if the stack was never seen)
        timed_out: True if the deadline passed first
        error: Diagnostic text for non-success results
    """
    success: bool
    status: Optional[str] = None
    timed_out: bool = False
    error: Optional[str] = None


def _is_missing_stack(error: ClientError) -> bool:
    message = error.response.get("Error", {}).get("Message", "")
    return "does not exist" in message


def is_terminal_status(status: str) -> bool:
    return not status.endswith(CONSTANTS.STACK_IN_PROGRESS_SUFFIX)


def is_failed_status(status: str) -> bool:
    return "FAILED" in status or "ROLLBACK" in status


class StackOutputReader:
    """
    Reads CloudFormation stack outputs and statuses.

    Args:
        cloudformation_client: boto3 CloudFormation client
        max_retries: Attempts per output read
        retry_delay: Fixed delay between output read attempts (seconds)
        sleep: Sleep function (defaults to time.sleep, looked up per call)
        clock: Monotonic clock (defaults to time.monotonic, looked up per call)
    """

    def __init__(
        self,
        cloudformation_client: Any,
        max_retries: int = CONSTANTS.STACK_OUTPUT_RETRIES,
        retry_delay: float = CONSTANTS.STACK_OUTPUT_RETRY_DELAY,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        self.client = cloudformation_client
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._clock = clock

    def _pause(self, seconds: float):
        (self._sleep or time.sleep)(seconds)

    def _now(self) -> float:
        return (self._clock or time.monotonic)()

    def read_stack_outputs(self, stack_name: str) -> StackOutputs:
        """
        Read a stack's outputs as a string map.

        A stack without outputs yields an empty, successful result. A
        stack that does not exist fails immediately; other API errors
        are retried up to max_retries times.
        """
        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.client.describe_stacks(StackName=stack_name)
                stacks = response.get("Stacks", [])
                if not stacks:
                    return StackOutputs(success=False, error=f"Stack {stack_name} not found")

                outputs = {
                    o["OutputKey"]: str(o.get("OutputValue", ""))
                    for o in stacks[0].get("Outputs", [])
                }
                logger.debug(f"Read {len(outputs)} outputs from stack {stack_name}")
                return StackOutputs(success=True, outputs=outputs)

            except ClientError as e:
                if _is_missing_stack(e):
                    return StackOutputs(success=False, error=f"Stack {stack_name} does not exist")
                last_error = str(e)
            except BotoCoreError as e:
                last_error = str(e)

            logger.debug(
                f"Reading outputs of {stack_name} failed "
                f"(attempt {attempt}/{self.max_retries}): {last_error}"
            )
            if attempt < self.max_retries:
                self._pause(self.retry_delay)

        return StackOutputs(success=False, error=last_error)

    def read_multiple_stack_outputs(
        self,
        stack_names: Sequence[str],
        max_workers: int = 4
    ) -> Dict[str, StackOutputs]:
        """Read several stacks' outputs concurrently (read-only)."""
        if not stack_names:
            return {}
        with ThreadPoolExecutor(max_workers=min(max_workers, len(stack_names))) as pool:
            results = pool.map(self.read_stack_outputs, stack_names)
            return dict(zip(stack_names, results))

    def get_stack_status(self, stack_name: str) -> Optional[str]:
        """
        Return the stack's current status, or None if it does not exist.

        Raises:
            ClientError, BotoCoreError: For API failures other than a missing stack
        """
        try:
            response = self.client.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if _is_missing_stack(e):
                return None
            raise
        stacks = response.get("Stacks", [])
        return stacks[0]["StackStatus"] if stacks else None

    def stack_exists(self, stack_name: str) -> bool:
        """True if the stack is present and not DELETE_COMPLETE. API errors count as absent."""
        try:
            status = self.get_stack_status(stack_name)
        except (ClientError, BotoCoreError) as e:
            logger.debug(f"Could not check stack {stack_name}: {e}")
            return False
        return status is not None and status != CONSTANTS.STACK_DELETE_COMPLETE

    def wait_for_status(
        self,
        stack_name: str,
        target_status: str,
        timeout: float = CONSTANTS.STACK_WAIT_TIMEOUT,
        poll_interval: float = CONSTANTS.STACK_WAIT_INTERVAL
    ) -> WaitResult:
        """
        Poll a stack until it reaches ``target_status``.

        Args:
            stack_name: CloudFormation stack name
            target_status: Status to wait for (e.g., "CREATE_COMPLETE")
            timeout: Deadline in seconds
            poll_interval: Fixed delay between polls in seconds

        Returns:
            WaitResult. success only when target_status was observed before
            the deadline. A different terminal status is returned as a
            failure carrying that status. Passing the deadline yields
            timed_out=True.

        Example:
            >>> reader.wait_for_status("ethereum-localnet", "CREATE_COMPLETE", timeout=600)
            WaitResult(success=True, status='CREATE_COMPLETE', timed_out=False, error=None)
        """
        deadline = self._now() + timeout
        status = None
        last_error = None

        logger.info(f"Waiting for stack {stack_name} to reach {target_status}...")
        while True:
            if self._now() >= deadline:
                logger.error(f"✗ Timed out waiting for {stack_name} (last status: {status})")
                return WaitResult(
                    success=False,
                    status=status,
                    timed_out=True,
                    error=last_error or f"Timed out after {timeout:g}s waiting for {target_status}",
                )

            try:
                status = self.get_stack_status(stack_name)
                last_error = None
            except (ClientError, BotoCoreError) as e:
                last_error = str(e)
                logger.debug(f"Status check for {stack_name} failed, will retry: {e}")
            else:
                if status == target_status or (
                    status is None and target_status == CONSTANTS.STACK_DELETE_COMPLETE
                ):
                    logger.info(f"✓ Stack {stack_name} reached {target_status}")
                    return WaitResult(success=True, status=target_status)

                if status is not None and is_terminal_status(status):
                    kind = "failed" if is_failed_status(status) else "unexpected"
                    logger.error(f"✗ Stack {stack_name} reached {kind} status {status}")
                    return WaitResult(
                        success=False,
                        status=status,
                        error=f"Stack {stack_name} reached {status} instead of {target_status}",
                    )

            self._pause(poll_interval)
