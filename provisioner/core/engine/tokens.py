"""
Resource tokens — named mutual exclusion for shared external resources.

Graph concurrency says which steps *may* run together; tokens say which
must not. Every package step holds ``package-db`` for its whole
probe/apply attempt, since dpkg, rpm and friends allow one writer.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)


class ResourceTokens:
    """A set of named locks, created on first use."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, name: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    @contextlib.contextmanager
    def hold(self, names: str | Iterable[str] | None) -> Iterator[None]:
        """Hold every named token for the duration of the block.

        Tokens are acquired in sorted order, so two steps sharing several
        tokens cannot deadlock. ``None`` or an empty iterable is a no-op.
        """
        if names is None:
            names = ()
        elif isinstance(names, str):
            names = (names,)
        with contextlib.ExitStack() as held:
            for name in sorted(set(names)):
                lock = self._lock_for(name)
                if not lock.acquire(blocking=False):
                    logger.debug("Waiting for token '%s'", name)
                    lock.acquire()
                held.callback(lock.release)
            yield

    def is_held(self, name: str) -> bool:
        with self._guard:
            lock = self._locks.get(name)
        return lock is not None and lock.locked()
