"""
Local command execution.

Every invocation names its working directory explicitly; the runner
never changes the process's own current directory, so concurrent
read-only probes cannot see each other's state.

Usage:
    from layer_orchestrator.command_runner import CommandRunner

    runner = CommandRunner()
    outcome = runner.run("git", ["status"], cwd="/work/repo", timeout=60)
    if not outcome.success:
        print(outcome.error_text)
"""

import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import Mapping, Optional, Sequence

import layer_orchestrator.constants as CONSTANTS
from layer_orchestrator.core.models import CommandOutcome
from layer_orchestrator.logger import truncate

logger = logging.getLogger(__name__)

# Conventional shell exit code for "command not found"
EXIT_NOT_FOUND = 127
# Reported when the hard timeout killed the process
EXIT_TIMEOUT = -9


def _to_text(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def _kill_process_group(process: subprocess.Popen):
    """Kill the child and everything it spawned (npx -> node -> cdk)."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        process.kill()


class CommandRunner:
    """
    Runs external programs with a hard wall-clock timeout.

    Ordinary failures (non-zero exit, missing program, timeout) are
    reported through CommandOutcome; this class does not raise for them.
    """

    def __init__(self, default_timeout: float = CONSTANTS.COMMAND_TIMEOUT):
        self.default_timeout = default_timeout

    def run(
        self,
        program: str,
        args: Sequence[str] = (),
        cwd: Optional[str | Path] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        stream_output: bool = False
    ) -> CommandOutcome:
        """
        Run a program and capture its result.

        Args:
            program: Executable name or path
            args: Arguments passed to the program
            cwd: Working directory for the child process
            env: Variables overlaid on the current process environment
            timeout: Hard timeout in seconds; the process is killed on expiry
            stream_output: Echo output line by line while it runs (long commands)

        Returns:
            CommandOutcome with stdout, stderr, exit code and duration
        """
        cmd = [program, *args]
        timeout = self.default_timeout if timeout is None else timeout
        child_env = {**os.environ, **(env or {})}
        logger.info(f"Running: {' '.join(cmd)}" + (f" (in {cwd})" if cwd else ""))

        start = time.monotonic()
        try:
            if stream_output:
                outcome = self._run_streaming(cmd, cwd, child_env, timeout)
            else:
                outcome = self._run_captured(cmd, cwd, child_env, timeout)
        except FileNotFoundError as e:
            outcome = CommandOutcome(
                success=False,
                stderr=f"Command not found: {program} ({e})",
                exit_code=EXIT_NOT_FOUND,
            )
        except OSError as e:
            outcome = CommandOutcome(
                success=False,
                stderr=f"Failed to start {program}: {e}",
                exit_code=EXIT_NOT_FOUND,
            )
        outcome.duration = time.monotonic() - start

        if outcome.success:
            logger.debug(f"✓ {program} finished in {outcome.duration:.1f}s")
            if outcome.stdout:
                logger.debug(truncate(outcome.stdout))
        elif outcome.timed_out:
            logger.error(f"✗ {program} timed out after {timeout:g}s")
        else:
            logger.error(f"✗ {program} failed (exit {outcome.exit_code})")
            if outcome.stderr:
                logger.error(truncate(outcome.stderr))

        return outcome

    def _run_captured(self, cmd, cwd, env, timeout) -> CommandOutcome:
        process = subprocess.Popen(
            cmd,
            cwd=cwd,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            start_new_session=True
        )
        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_process_group(process)
            stdout, stderr = process.communicate()
            return CommandOutcome(
                success=False,
                stdout=_to_text(stdout),
                stderr=_to_text(stderr),
                exit_code=EXIT_TIMEOUT,
                timed_out=True,
            )

        return CommandOutcome(
            success=process.returncode == 0,
            stdout=stdout or "",
            stderr=stderr or "",
            exit_code=process.returncode,
        )

    def _run_streaming(self, cmd, cwd, env, timeout) -> CommandOutcome:
        process = subprocess.Popen(
            cmd,
            cwd=cwd,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
            start_new_session=True
        )

        # Stream output line by line and collect it
        output_lines = []

        def _pump():
            for line in process.stdout:
                print(line, end='', flush=True)
                output_lines.append(line)

        reader = threading.Thread(target=_pump, daemon=True)
        reader.start()

        timed_out = False
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            _kill_process_group(process)
            process.wait()
        reader.join(timeout=5)

        captured_output = ''.join(output_lines)
        if timed_out:
            return CommandOutcome(
                success=False,
                stdout=captured_output,
                exit_code=EXIT_TIMEOUT,
                timed_out=True,
            )
        return CommandOutcome(
            success=process.returncode == 0,
            stdout=captured_output,
            # stderr is merged into stdout while streaming
            stderr="" if process.returncode == 0 else captured_output[-2000:],
            exit_code=process.returncode,
        )

    def run_shell(
        self,
        command: str,
        cwd: Optional[str | Path] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        stream_output: bool = False
    ) -> CommandOutcome:
        """Run a command line through ``sh -c``."""
        return self.run("sh", ["-c", command], cwd=cwd, env=env,
                        timeout=timeout, stream_output=stream_output)

    @staticmethod
    def command_exists(program: str) -> bool:
        return shutil.which(program) is not None
