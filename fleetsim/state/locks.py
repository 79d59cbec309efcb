"""Per-key reentrant locks shared by the scheduler, the dispatcher and the failover monitor.

Every multi-field update to one drone (simulation state, status plus assignment) happens while
holding that drone's lock. Every read-modify-write of an order record happens while holding
that order's lock, and the order is re-read inside it.

Lock order:
    drone locks, sorted by drone id
    order locks, sorted by order id

A thread holding an order lock never asks for a drone lock it does not already hold, so two
commits touching overlapping drones or orders cannot deadlock.
"""

from collections.abc import Iterator
from contextlib import contextmanager
import threading


def order_key(order_id: str) -> str:
    return f"order:{order_id}"


class KeyedLocks:
    """Lazily created ``threading.RLock`` per key."""

    def __init__(self):
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: str | None) -> Iterator[None]:
        """Hold the locks for all non-None ``keys`` for the duration of the block."""
        ordered = sorted({key for key in keys if key is not None})
        acquired: list[threading.RLock] = []
        try:
            for key in ordered:
                lock = self.get(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def hold_orders(self, *order_ids: str | None) -> Iterator[None]:
        """Hold the order locks for all non-None ``order_ids``.

        Take these after any drone locks the caller needs, never before.
        """
        return self.hold(*(order_key(order_id) for order_id in order_ids if order_id is not None))

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
