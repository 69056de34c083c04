"""Small process-wide caches with a time-to-live and explicit invalidation."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Generic, Optional, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class TTLCache(Generic[T]):
    """Holds one computed value for ``ttl`` seconds.

    ``ttl=None`` keeps the value until ``invalidate()`` is called.
    """

    def __init__(
        self,
        name: str,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.ttl = ttl
        self._clock = clock
        self._value: Optional[T] = None
        self._stored_at: Optional[float] = None
        self._lock = threading.Lock()

    def _fresh(self) -> bool:
        if self._stored_at is None:
            return False
        if self.ttl is None:
            return True
        return self._clock() - self._stored_at < self.ttl

    def get_or_load(self, loader: Callable[[], T]) -> T:
        """Return the cached value, calling ``loader`` on a miss."""
        with self._lock:
            if self._fresh():
                return self._value  # type: ignore[return-value]
            LOGGER.debug("Cache %s miss, reloading", self.name)
            value = loader()
            self._value = value
            self._stored_at = self._clock()
            return value

    def invalidate(self) -> None:
        with self._lock:
            self._value = None
            self._stored_at = None
        LOGGER.debug("Cache %s invalidated", self.name)
