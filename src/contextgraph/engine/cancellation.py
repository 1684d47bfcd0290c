"""Cancellation tokens for superseded renders."""

from __future__ import annotations

import threading

from contextgraph.contracts import RenderCancelledError


class CancellationToken:
    """Thread-safe, one-way cancellation flag.

    A token is created per render request. Cancelling it never interrupts a
    running call; work checks the token at its boundaries and stops there.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "superseded") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def raise_if_cancelled(self) -> None:
        """Raise RenderCancelledError if the token has been cancelled."""
        if self._event.is_set():
            raise RenderCancelledError(f"render cancelled: {self._reason}")
