"""Shared contracts for cross-boundary data types.

All dataclasses, enums and exceptions that cross subsystem boundaries are
defined here. This package is a LEAF MODULE: it never imports from core or
engine.

Import patterns:
    from contextgraph.contracts import ContextNode, TraceRun, NodeKind
    from contextgraph.core.config import ContextGraphSettings
"""

from contextgraph.contracts.enums import (
    DiffKind,
    DriftStatus,
    DuplicateNamePolicy,
    NodeKind,
    OfflinePolicy,
    OutputStyle,
    RenderState,
    ResolverErrorCode,
    RunStatus,
    Severity,
    VariableType,
)
from contextgraph.contracts.errors import (
    ContextGraphError,
    DatasetNotFoundError,
    GraphError,
    ProjectNotFoundError,
    RenderCancelledError,
    RenderError,
    RequestValidationError,
    ResolutionUnavailableError,
    ResolverError,
    RunNotFoundError,
    TransportError,
)
from contextgraph.contracts.graph import (
    ContextEdge,
    ContextNode,
    Dataset,
    ProjectSnapshot,
    ResolverURI,
    Variable,
)
from contextgraph.contracts.requests import (
    RenderRequest,
    ReplayRequest,
    parse_render_request,
    parse_replay_request,
)
from contextgraph.contracts.runs import DiffLine, RunComparison, RunRecord, RunSummary
from contextgraph.contracts.trace import Message, Segment, TraceRun

__all__ = [
    "ContextEdge",
    "ContextGraphError",
    "ContextNode",
    "Dataset",
    "DatasetNotFoundError",
    "DiffKind",
    "DiffLine",
    "DriftStatus",
    "DuplicateNamePolicy",
    "GraphError",
    "Message",
    "NodeKind",
    "OfflinePolicy",
    "OutputStyle",
    "ProjectNotFoundError",
    "ProjectSnapshot",
    "RenderCancelledError",
    "RenderError",
    "RenderRequest",
    "RenderState",
    "ReplayRequest",
    "RequestValidationError",
    "ResolutionUnavailableError",
    "ResolverError",
    "ResolverErrorCode",
    "ResolverURI",
    "RunComparison",
    "RunNotFoundError",
    "RunRecord",
    "RunStatus",
    "RunSummary",
    "Segment",
    "Severity",
    "TraceRun",
    "TransportError",
    "Variable",
    "VariableType",
    "parse_render_request",
    "parse_replay_request",
]
