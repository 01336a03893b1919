"""Per-key locks for serialising writes to one session or habit."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from ..errors import ConflictError


class KeyedLocks:
    """Registry of exclusive locks keyed by entity id.

    Entries are created on demand and dropped once nobody holds or waits
    on them, so the registry does not grow with the number of sessions
    ever touched.
    """

    def __init__(self, timeout_seconds: float = 5.0):
        self._locks: dict[str, list] = {}
        self._guard = threading.Lock()
        self._timeout = timeout_seconds

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        acquired = entry[0].acquire(timeout=self._timeout if timeout is None else timeout)
        try:
            if not acquired:
                raise ConflictError(f"{key.split(':')[0]} is busy, try again")
            yield
        finally:
            if acquired:
                entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
