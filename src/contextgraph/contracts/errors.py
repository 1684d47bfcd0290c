"""Error taxonomy for the context graph evaluator.

Two families live here:

- Degrading errors (GraphError, ResolverError, TransportError, RenderError)
  are raised and caught INSIDE the pipeline. They never escape a render;
  each is converted into a trace Message at the narrowest scope.
- Rejecting errors (RequestValidationError and the *NotFoundError family,
  ResolutionUnavailableError) are raised to the caller before any node is
  rendered.
"""

from __future__ import annotations

from typing import Any

from contextgraph.contracts.enums import ResolverErrorCode


class ContextGraphError(Exception):
    """Base class for all contextgraph errors."""


# =============================================================================
# Degrading errors
# =============================================================================


class GraphError(ContextGraphError):
    """The node graph contains a cycle.

    Never propagated out of ordering: the orderer reports it as a flag.
    """


class ResolverError(ContextGraphError):
    """Resolution of one dynamic variable failed.

    Attributes:
        code: One of the fixed ResolverErrorCode values
        details: Optional structured context (kept in the trace message)
    """

    def __init__(
        self,
        code: ResolverErrorCode,
        message: str | None = None,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.details = details
        super().__init__(message or code.value)


class TransportError(ContextGraphError):
    """The resolution service itself is unreachable.

    Triggers the one-time offline downgrade for the whole request.
    """


class RenderError(ContextGraphError):
    """A template could not be rendered.

    Attributes:
        names: Placeholder names that could not be substituted
    """

    def __init__(self, message: str, *, names: list[str] | None = None) -> None:
        self.names = names or []
        super().__init__(message)


# =============================================================================
# Rejecting errors
# =============================================================================


class RequestValidationError(ContextGraphError):
    """The request payload is malformed. Raised before rendering begins."""


class ResolutionUnavailableError(ContextGraphError):
    """The resolution service is unreachable and the offline policy is FAIL."""


class DatasetNotFoundError(ContextGraphError):
    """No dataset with the requested id."""

    def __init__(self, dataset_id: str) -> None:
        self.dataset_id = dataset_id
        super().__init__(f"dataset not found: {dataset_id}")


class ProjectNotFoundError(ContextGraphError):
    """No project with the requested id."""

    def __init__(self, project_id: str) -> None:
        self.project_id = project_id
        super().__init__(f"project not found: {project_id}")


class RunNotFoundError(ContextGraphError):
    """No run record with the requested id."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"run not found: {run_id}")


# =============================================================================
# Control Flow Exceptions
# =============================================================================


class RenderCancelledError(ContextGraphError):
    """Raised when a render is superseded before it completes.

    This is NOT an error condition - it's a control flow signal telling
    the scheduler to drop the result of a stale request.
    """
