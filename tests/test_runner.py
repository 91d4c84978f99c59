"""
Tests for the subprocess runner.
"""

import threading
import time

from provisioner.adapters.shell.runner import (
    ProcessTracker,
    build_argv,
    run_command,
    terminate_all,
    tracked_by,
)


class TestBuildArgv:
    def test_string_uses_shell(self):
        assert build_argv("echo hi") == ["sh", "-c", "echo hi"]

    def test_list_passthrough(self):
        assert build_argv(["ls", 1]) == ["ls", "1"]


class TestRunCommand:
    def test_captures_output(self):
        result = run_command("echo out; echo err >&2; exit 3")
        assert result.returncode == 3
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"
        assert not result.ok
        assert not result.timed_out

    def test_missing_binary(self):
        result = run_command(["definitely-not-a-real-binary-xyz"])
        assert result.returncode == 127
        assert not result.ok

    def test_env_and_stdin(self):
        result = run_command("printf '%s-' \"$GREETING\"; cat", env_overrides={"GREETING": "hi"},
                             input_text="there")
        assert result.stdout == "hi-there"

    def test_timeout_terminates(self):
        start = time.monotonic()
        result = run_command(["sleep", "10"], timeout=0.2, kill_grace=1.0)
        assert result.timed_out
        assert not result.ok
        assert time.monotonic() - start < 5

    def test_timeout_kills_shell_children(self):
        start = time.monotonic()
        result = run_command("sleep 5; echo x", timeout=0.3, kill_grace=0.5)
        assert result.timed_out
        assert "x" not in result.stdout
        assert time.monotonic() - start < 3

    def test_output_truncated_to_tail(self):
        result = run_command("yes x | head -n 5000")
        assert len(result.stdout) == 4000


class TestTerminateAll:
    def test_terminates_running(self):
        results = []
        thread = threading.Thread(target=lambda: results.append(run_command(["sleep", "10"], timeout=30)))
        thread.start()
        deadline = time.monotonic() + 5
        signalled = 0
        while time.monotonic() < deadline and not signalled:
            signalled = terminate_all()
            time.sleep(0.05)
        thread.join(timeout=5)
        assert signalled == 1
        assert results and results[0].returncode != 0

    def test_terminates_shell_children(self):
        results = []
        thread = threading.Thread(target=lambda: results.append(run_command("sleep 10; echo x", timeout=30)))
        thread.start()
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline and not terminate_all():
            time.sleep(0.05)
        thread.join(timeout=5)
        assert not thread.is_alive()
        assert results[0].returncode != 0
        assert "x" not in results[0].stdout


class TestProcessTracker:
    def test_scoped_to_owner(self):
        tracker = ProcessTracker()
        results = []

        def target():
            with tracked_by(tracker):
                results.append(run_command(["sleep", "10"], timeout=30))

        thread = threading.Thread(target=target)
        thread.start()
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline and not len(tracker):
            time.sleep(0.01)

        assert terminate_all() == 0
        assert tracker.terminate_all() == 1
        thread.join(timeout=5)
        assert not thread.is_alive()
        assert results[0].returncode != 0
        assert len(tracker) == 0
