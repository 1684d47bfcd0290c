# src/contextgraph/engine/__init__.py
"""Render engine: from a context graph to a traced prompt.

This module provides:
- ContextEvaluator: the per-request render pipeline (preview and execute)
- VariableBindingResolver: static and dynamic variable binding
- ContextRenderer / TraceBuilder: template interpolation and trace assembly
- RenderScheduler: debounced, last-request-wins re-rendering
- ReplayOrchestrator: dataset replay into the run history
- RunComparator: drift classification between runs

Example:
    from contextgraph.contracts import parse_render_request
    from contextgraph.core.config import load_settings
    from contextgraph.engine import ContextEvaluator

    evaluator = ContextEvaluator.from_settings(load_settings())
    trace = evaluator.render(parse_render_request(payload))
    print(trace.text)
"""

from contextgraph.engine.cancellation import CancellationToken
from contextgraph.engine.compare import RunComparator, classify_drift, diff_lines
from contextgraph.engine.evaluator import ContextEvaluator, RenderScope
from contextgraph.engine.renderer import ContextRenderer, interpolate, placeholder_names
from contextgraph.engine.replay import ReplayOrchestrator, bind_row, row_bindings
from contextgraph.engine.resolution import (
    BindingResult,
    RemoteResolutionService,
    ResolvedValue,
    ResolverCapability,
    ResolverRegistry,
    VariableBindingResolver,
)
from contextgraph.engine.scheduler import RenderScheduler, ScheduleTicket
from contextgraph.engine.tracer import TraceBuilder, output_digest

__all__ = [
    "BindingResult",
    "CancellationToken",
    "ContextEvaluator",
    "ContextRenderer",
    "RemoteResolutionService",
    "RenderScheduler",
    "RenderScope",
    "ReplayOrchestrator",
    "ResolvedValue",
    "ResolverCapability",
    "ResolverRegistry",
    "RunComparator",
    "ScheduleTicket",
    "TraceBuilder",
    "VariableBindingResolver",
    "bind_row",
    "classify_drift",
    "diff_lines",
    "interpolate",
    "output_digest",
    "placeholder_names",
    "row_bindings",
]
