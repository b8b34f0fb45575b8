"""
Per-case in-process locks.

Negotiation operations on one case serialize here before touching the
database; operations on different cases proceed in parallel. The database
constraints remain the authority across processes.
"""

import threading
from contextlib import contextmanager
from typing import Iterator


class CaseLockRegistry:
    """Hands out one ``threading.Lock`` per case ID."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, case_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(case_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[case_id] = lock
            return lock

    @contextmanager
    def hold(self, case_id: str) -> Iterator[None]:
        """Hold the lock for ``case_id`` for the duration of the block."""
        lock = self._lock_for(case_id)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
