"""Concurrency primitives shared by the services."""

from __future__ import annotations

import threading
from collections.abc import Generator, Hashable, Iterable
from contextlib import ExitStack, contextmanager


class CancellationToken:
    """Cooperative cancellation flag checked between units of work."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class KeyedLock:
    """Striped re-entrant locks partitioned by key.

    Two operations on the same key always serialize; operations on
    different keys usually proceed in parallel.
    """

    def __init__(self, stripes: int = 64) -> None:
        self._locks = [threading.RLock() for _ in range(stripes)]

    def lock_for(self, key: Hashable) -> threading.RLock:
        return self._locks[hash(key) % len(self._locks)]

    @contextmanager
    def hold(self, key: Hashable) -> Generator[None, None, None]:
        """Hold the lock for `key` for the duration of the block."""
        lock = self.lock_for(key)
        with lock:
            yield

    @contextmanager
    def hold_all(self, keys: Iterable[Hashable]) -> Generator[None, None, None]:
        """Hold the locks for several keys, acquired in stripe order."""
        stripes = sorted({hash(key) % len(self._locks) for key in keys})
        with ExitStack() as stack:
            for stripe in stripes:
                stack.enter_context(self._locks[stripe])
            yield
