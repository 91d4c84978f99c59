"""
Subprocess runner — the one place commands are executed.

``run_command`` is the SINGLE PLACE where subprocesses are spawned for
probes and applies. Timeouts, sudo, output capture and termination on
cancellation are all handled here. It never raises for process
failures; callers inspect the returned CommandResult.

Every command runs in its own session, so a timeout or a hard cancel
signals the whole process group (``sh -c "a && b"`` included), not just
the direct child.
"""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import subprocess
import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Keep only the tail of captured output; apt can be very chatty.
_OUTPUT_LIMIT = 4000


@dataclass
class CommandResult:
    """Captured outcome of one subprocess."""

    command: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class ProcessTracker:
    """Live child processes started on behalf of one owner (usually a run)."""

    def __init__(self) -> None:
        self._procs: set[subprocess.Popen] = set()
        self._lock = threading.Lock()

    def add(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._procs.add(proc)

    def discard(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._procs.discard(proc)

    def __len__(self) -> int:
        with self._lock:
            return len(self._procs)

    def terminate_all(self, sig: int = signal.SIGTERM) -> int:
        """Signal every tracked process group. Returns how many were signalled."""
        with self._lock:
            procs = list(self._procs)
        for proc in procs:
            _signal_group(proc, sig)
        if procs:
            logger.info("Sent signal %d to %d running command(s)", sig, len(procs))
        return len(procs)


# Commands started outside any ``tracked_by`` block.
_default_tracker = ProcessTracker()
_current = threading.local()


@contextlib.contextmanager
def tracked_by(tracker: ProcessTracker) -> Iterator[ProcessTracker]:
    """Register commands run by this thread inside the block with ``tracker``."""
    previous = getattr(_current, "tracker", None)
    _current.tracker = tracker
    try:
        yield tracker
    finally:
        _current.tracker = previous


def _active_tracker() -> ProcessTracker:
    return getattr(_current, "tracker", None) or _default_tracker


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass
    except PermissionError:
        # sudo-owned group; sudo relays signals to its child.
        with contextlib.suppress(ProcessLookupError):
            proc.send_signal(sig)


def _tail(text: str | None) -> str:
    if not text:
        return ""
    return text[-_OUTPUT_LIMIT:]


def build_argv(command: str | list[str], *, sudo: bool = False) -> list[str]:
    """Normalize a command spec to an argv list.

    Strings run through ``sh -c``; lists are executed directly.
    ``sudo`` uses non-interactive mode (``-n``) and is a no-op as root.
    """
    if isinstance(command, str):
        argv = ["sh", "-c", command]
    else:
        argv = [str(part) for part in command]
    if sudo and os.geteuid() != 0:
        argv = ["sudo", "-n"] + argv
    return argv


def run_command(
    command: str | list[str],
    *,
    timeout: float = 120.0,
    sudo: bool = False,
    env_overrides: dict[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
    kill_grace: float = 5.0,
) -> CommandResult:
    """Run a command, capturing output, with a hard time budget.

    On timeout the process group receives SIGTERM, then SIGKILL if it is
    still alive after ``kill_grace`` seconds.

    Args:
        command: ``sh -c`` string or argv list.
        timeout: Seconds before the process is terminated.
        sudo: Prefix with ``sudo -n`` unless already root.
        env_overrides: Extra environment variables.
        cwd: Working directory.
        input_text: Text written to stdin.
        kill_grace: Seconds between SIGTERM and SIGKILL.

    Returns:
        CommandResult. ``returncode`` is 127 when the binary is missing.
    """
    argv = build_argv(command, sudo=sudo)

    env = os.environ.copy()
    if env_overrides:
        env.update({k: os.path.expandvars(str(v)) for k, v in env_overrides.items()})

    logger.debug("Executing: %s (timeout=%ss)", argv, timeout)
    start = time.monotonic()

    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
            cwd=cwd,
            start_new_session=True,
        )
    except (FileNotFoundError, PermissionError) as e:
        return CommandResult(command=argv, returncode=127, stderr=str(e))
    except OSError as e:
        logger.warning("Cannot spawn %s: %s", argv, e)
        return CommandResult(command=argv, returncode=126, stderr=str(e))

    tracker = _active_tracker()
    tracker.add(proc)
    try:
        try:
            stdout, stderr = proc.communicate(input=input_text, timeout=timeout)
            timed_out = False
        except subprocess.TimeoutExpired:
            logger.warning("Command timed out after %ss, terminating: %s", timeout, argv)
            timed_out = True
            stdout, stderr = _stop(proc, kill_grace)
    finally:
        tracker.discard(proc)

    elapsed_ms = int((time.monotonic() - start) * 1000)
    result = CommandResult(
        command=argv,
        returncode=proc.returncode,
        stdout=_tail(stdout),
        stderr=_tail(stderr),
        elapsed_ms=elapsed_ms,
        timed_out=timed_out,
    )
    logger.debug("Exit %s in %dms: %s", result.returncode, elapsed_ms, argv)
    return result


def _stop(proc: subprocess.Popen, kill_grace: float) -> tuple[str, str]:
    """SIGTERM the group, then SIGKILL; never waits more than 2 × ``kill_grace``."""
    _signal_group(proc, signal.SIGTERM)
    try:
        return proc.communicate(timeout=kill_grace)
    except subprocess.TimeoutExpired:
        pass

    _signal_group(proc, signal.SIGKILL)
    try:
        return proc.communicate(timeout=kill_grace)
    except subprocess.TimeoutExpired:
        # A process that left the group still holds the pipes.
        logger.warning("Output pipes still open after SIGKILL, abandoning: %s", proc.args)
        for stream in (proc.stdout, proc.stderr):
            if stream is not None:
                stream.close()
        proc.wait()
        return "", ""


def terminate_all(sig: int = signal.SIGTERM) -> int:
    """Signal every command started outside a ``tracked_by`` block."""
    return _default_tracker.terminate_all(sig)
