"""Serialization of per-learner state changes.

Two guards are provided:
- ``SessionLocks``: one re-entrant lock per key, so that mutations of the
  same (user, scenario) record, or submissions of the same user, never
  interleave.
- ``InFlightGuard``: a non-blocking marker per (user, task) that rejects a
  second submission for a task while the first is still being processed.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, Set, Tuple

LOGGER = logging.getLogger(__name__)


class SessionLocks:
    """Registry of named locks, created on first use.

    Entries are kept for the life of the registry; the key space is one per
    learner and one per (learner, scenario).
    """

    def __init__(self):
        self._locks: Dict[Hashable, threading.RLock] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> threading.RLock:
        with self._lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self.get(key)
        with lock:
            yield


class InFlightGuard:
    """Tracks submissions currently being processed."""

    def __init__(self):
        self._active: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    def try_acquire(self, user_id: str, task_id: str) -> bool:
        """Mark (user, task) in flight.

        Returns:
            False if a submission for the same task is already in flight
        """
        key = (user_id, task_id)
        with self._lock:
            if key in self._active:
                LOGGER.warning(
                    "Submission for task %s by %s already in flight", task_id, user_id
                )
                return False
            self._active.add(key)
            return True

    def release(self, user_id: str, task_id: str) -> None:
        with self._lock:
            self._active.discard((user_id, task_id))
