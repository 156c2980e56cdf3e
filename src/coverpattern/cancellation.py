"""Cooperative cancellation for iterative stages."""

from __future__ import annotations

import threading

from .errors import OperationCancelledError

__all__ = ["CancellationToken", "check_cancelled"]


class CancellationToken:
    """Thread-safe flag polled by clustering and solver loops."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str = "operation") -> None:
        if self._event.is_set():
            raise OperationCancelledError(f"{stage} was cancelled")


def check_cancelled(token: CancellationToken | None, stage: str) -> None:
    """Raise :class:`OperationCancelledError` when ``token`` has been cancelled."""

    if token is not None:
        token.raise_if_cancelled(stage)
