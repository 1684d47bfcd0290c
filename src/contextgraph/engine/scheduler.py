# src/contextgraph/engine/scheduler.py
"""RenderScheduler: debounced, last-request-wins re-rendering.

Editing sessions produce bursts of render requests. The scheduler waits for
a quiet window before rendering and never queues: a newer request replaces
the pending one and cancels the one in flight. Only the latest request's
result is delivered.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from contextgraph.contracts import RenderCancelledError, RenderRequest, TraceRun
from contextgraph.core.logging import get_logger
from contextgraph.engine.cancellation import CancellationToken
from contextgraph.engine.evaluator import ContextEvaluator

if TYPE_CHECKING:
    from contextgraph.core.config import ContextGraphSettings

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScheduleTicket:
    """Handle returned by schedule(); ``generation`` orders requests."""

    generation: int
    token: CancellationToken


class RenderScheduler:
    """Debounces render requests and delivers the newest result.

    Args:
        evaluator: Evaluator used for every render
        on_result: Called with the TraceRun of the latest request
        quiet_window_seconds: Debounce window before a render starts
        on_error: Called with any non-cancellation exception a render raises

    Example:
        scheduler = RenderScheduler(evaluator, on_result=show)
        scheduler.schedule(request)   # superseded below
        scheduler.schedule(request2)  # only this one is rendered
        scheduler.wait_idle(5.0)
    """

    def __init__(
        self,
        evaluator: ContextEvaluator,
        on_result: Callable[[TraceRun], None],
        *,
        quiet_window_seconds: float = 0.3,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        self._evaluator = evaluator
        self._on_result = on_result
        self._on_error = on_error
        self._quiet_window = quiet_window_seconds

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._generation = 0
        self._timer: threading.Timer | None = None
        self._pending: tuple[ScheduleTicket, RenderRequest] | None = None
        self._current: ScheduleTicket | None = None
        self._active = 0
        self._closed = False
        self._latest: TraceRun | None = None

    @classmethod
    def from_settings(
        cls,
        evaluator: ContextEvaluator,
        settings: ContextGraphSettings,
        *,
        on_result: Callable[[TraceRun], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> RenderScheduler:
        """Build a scheduler using the ``scheduler`` settings section."""
        return cls(
            evaluator,
            on_result,
            quiet_window_seconds=settings.scheduler.quiet_window_seconds,
            on_error=on_error,
        )

    @property
    def latest_result(self) -> TraceRun | None:
        """Most recently delivered trace, if any."""
        with self._lock:
            return self._latest

    def schedule(self, request: RenderRequest) -> ScheduleTicket:
        """Schedule a render after the quiet window.

        Cancels the pending timer and the token of the request in flight.

        Raises:
            RuntimeError: If the scheduler has been closed
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("RenderScheduler is closed")
            self._generation += 1
            ticket = ScheduleTicket(generation=self._generation, token=CancellationToken())
            self._supersede_locked()
            self._pending = (ticket, request)
            self._current = ticket
            self._active += 1
            timer = threading.Timer(self._quiet_window, self._fire, args=(ticket, request))
            timer.daemon = True
            self._timer = timer
            timer.start()

        logger.debug("scheduler.scheduled", generation=ticket.generation)
        return ticket

    def flush(self) -> TraceRun | None:
        """Render the pending request now, on the calling thread.

        Returns:
            The trace if it was delivered, None when nothing was pending
            or the render was superseded meanwhile
        """
        with self._lock:
            if self._pending is None or self._timer is None:
                return None
            self._timer.cancel()
            self._timer = None
            ticket, request = self._pending
        return self._fire(ticket, request)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no render is pending or running.

        Returns:
            True when idle, False if the timeout expired first
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._active == 0, timeout=timeout)

    def close(self) -> None:
        """Cancel pending and in-flight work; further schedule() calls fail."""
        with self._lock:
            self._closed = True
            self._supersede_locked()
            self._current = None
        logger.debug("scheduler.closed")

    # ------------------------------------------------------------------

    def _supersede_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._pending is not None:
            # The timer never fired; its render will not run.
            self._pending = None
            self._finish_locked()
        if self._current is not None:
            self._current.token.cancel("superseded")

    def _finish_locked(self) -> None:
        self._active -= 1
        if self._active == 0:
            self._idle.notify_all()

    def _claim(self, ticket: ScheduleTicket) -> bool:
        """Take the pending slot for ``ticket``; False if it was superseded."""
        with self._lock:
            if self._pending is None or self._pending[0] is not ticket:
                return False
            self._pending = None
            self._timer = None
            return True

    def _fire(self, ticket: ScheduleTicket, request: RenderRequest) -> TraceRun | None:
        if not self._claim(ticket):
            return None
        try:
            return self._run(ticket, request)
        finally:
            with self._lock:
                self._finish_locked()

    def _run(self, ticket: ScheduleTicket, request: RenderRequest) -> TraceRun | None:
        try:
            trace = self._evaluator.render(request, token=ticket.token)
        except RenderCancelledError:
            logger.debug("scheduler.cancelled", generation=ticket.generation)
            return None
        except Exception as exc:
            # Timer threads have no caller to propagate to.
            logger.warning("scheduler.render_failed", generation=ticket.generation, error=str(exc))
            if self._on_error is not None and self._is_latest(ticket):
                self._on_error(exc)
            return None

        if not self._is_latest(ticket):
            logger.debug("scheduler.discarded", generation=ticket.generation)
            return None
        with self._lock:
            self._latest = trace
        self._on_result(trace)
        return trace

    def _is_latest(self, ticket: ScheduleTicket) -> bool:
        with self._lock:
            return self._current is ticket and not ticket.token.cancelled
