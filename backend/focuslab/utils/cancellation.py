"""Cancellation tokens for report computations."""

from __future__ import annotations

import threading
import time
from typing import Optional

from ..errors import OperationCancelled


class CancelToken:
    """Cooperative cancel flag with an optional deadline.

    Long-running report code calls ``raise_if_cancelled`` between units
    of work; state transitions never take a token.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = None if timeout_seconds is None else time.monotonic() + timeout_seconds

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self._expired()

    def _expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self, what: str = "operation") -> None:
        if self._event.is_set():
            raise OperationCancelled(f"{what} was cancelled")
        if self._expired():
            raise OperationCancelled(f"{what} exceeded its deadline")


def check(token: Optional[CancelToken], what: str = "operation") -> None:
    if token is not None:
        token.raise_if_cancelled(what)
