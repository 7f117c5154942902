"""
Unit tests for CommandRunner.

These run real (tiny) POSIX processes.
"""

import threading

from layer_orchestrator.command_runner import EXIT_NOT_FOUND, EXIT_TIMEOUT, CommandRunner


class TestCommandRunner:
    def test_success_captures_stdout(self, tmp_path):
        outcome = CommandRunner().run("echo", ["hello"], cwd=tmp_path)

        assert outcome.success
        assert outcome.exit_code == 0
        assert outcome.stdout.strip() == "hello"
        assert outcome.duration >= 0

    def test_non_zero_exit_is_reported_not_raised(self):
        outcome = CommandRunner().run_shell("echo broken >&2; exit 3")

        assert not outcome.success
        assert outcome.exit_code == 3
        assert "broken" in outcome.error_text

    def test_timeout_kills_the_process(self):
        outcome = CommandRunner().run("sleep", ["5"], timeout=0.5)

        assert not outcome.success
        assert outcome.timed_out
        assert outcome.exit_code == EXIT_TIMEOUT
        assert outcome.duration < 5

    def test_streaming_timeout_kills_the_process(self):
        outcome = CommandRunner().run("sleep", ["5"], timeout=0.5, stream_output=True)

        assert outcome.timed_out
        assert outcome.duration < 5

    def test_timeout_kills_spawned_children_too(self, tmp_path):
        # sh forks sleep; the marker is only written if the chain survives the kill
        outcome = CommandRunner().run_shell("sleep 1; touch marker", cwd=tmp_path, timeout=0.3)

        assert outcome.timed_out
        threading.Event().wait(1.5)
        assert not (tmp_path / "marker").exists()

    def test_streaming_timeout_does_not_wait_for_grandchildren(self):
        # Without a group kill the orphaned sleep keeps the pipe open
        outcome = CommandRunner().run_shell("sleep 10; echo done", timeout=0.5, stream_output=True)

        assert outcome.timed_out
        assert outcome.duration < 3
        assert "done" not in outcome.stdout

    def test_missing_program_is_exit_127(self):
        outcome = CommandRunner().run("definitely-not-a-real-program-xyz")

        assert not outcome.success
        assert outcome.exit_code == EXIT_NOT_FOUND
        assert "not found" in outcome.stderr

    def test_working_directory_is_explicit(self, tmp_path):
        outcome = CommandRunner().run("pwd", cwd=tmp_path)

        assert outcome.stdout.strip() == str(tmp_path.resolve())

    def test_env_is_overlaid(self):
        outcome = CommandRunner().run_shell("echo $LAYER_TEST_VALUE", env={"LAYER_TEST_VALUE": "42"})

        assert outcome.stdout.strip() == "42"

    def test_streaming_collects_output(self):
        outcome = CommandRunner().run_shell("echo one; echo two", stream_output=True)

        assert outcome.success
        assert outcome.stdout.splitlines() == ["one", "two"]

    def test_command_exists(self):
        assert CommandRunner.command_exists("sh")
        assert not CommandRunner.command_exists("definitely-not-a-real-program-xyz")
