"""
Cooperative cancellation for a run.

    first request   → soft: start no new steps, let in-flight ones finish
    second request  → hard: terminate running commands, record every
                      unfinished step as cancelled
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class CancelToken:
    """Shared between the reconciliation loop, its workers and the signal handler."""

    def __init__(self) -> None:
        self._requests = 0
        self._lock = threading.Lock()
        self._soft = threading.Event()
        self._hard = threading.Event()
        self._on_hard: list[Callable[[], object]] = []

    @property
    def soft(self) -> bool:
        """Any cancellation was requested."""
        return self._soft.is_set()

    @property
    def hard(self) -> bool:
        """Cancellation was requested twice."""
        return self._hard.is_set()

    def on_hard(self, callback: Callable[[], object]) -> None:
        """Run ``callback`` when a hard cancel is requested."""
        with self._lock:
            self._on_hard.append(callback)

    def remove_on_hard(self, callback: Callable[[], object]) -> None:
        with self._lock:
            if callback in self._on_hard:
                self._on_hard.remove(callback)

    def request(self) -> None:
        with self._lock:
            self._requests += 1
            count = self._requests
        if count == 1:
            logger.warning("Cancellation requested: finishing in-flight steps (repeat to abort)")
            self._soft.set()
        elif count == 2:
            logger.warning("Hard cancellation: aborting running steps")
            self._soft.set()
            self._hard.set()
            with self._lock:
                callbacks = list(self._on_hard)
            for callback in callbacks:
                try:
                    callback()
                except Exception as e:
                    logger.error("Cancel callback failed: %s", e)

    def wait_hard(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True early if hard-cancelled."""
        return self._hard.wait(seconds)
