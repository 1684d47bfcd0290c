# src/contextgraph/engine/evaluator.py
"""ContextEvaluator: the per-request render pipeline.

State machine per request::

    PENDING -> ORDERING -> RENDERING -> TRACED
                  |                       ^
                  +-- cycle detected -----+  (still renders, original order)

Nothing is retried. Every failure inside ordering, resolution or rendering
becomes a diagnostic Message; only malformed requests (and the FAIL offline
policy) reject the call, and they do so before any node is rendered.
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

from contextgraph.contracts import (
    ContextNode,
    DuplicateNamePolicy,
    Message,
    RenderRequest,
    RenderState,
    RequestValidationError,
    Segment,
    TraceRun,
    Variable,
)
from contextgraph.core.canonical import text_digest
from contextgraph.core.dag import GraphOrderer
from contextgraph.core.logging import get_logger
from contextgraph.engine.cancellation import CancellationToken
from contextgraph.engine.renderer import ContextRenderer, placeholder_names
from contextgraph.engine.resolution import BindingResult, VariableBindingResolver
from contextgraph.engine.tracer import TraceBuilder

if TYPE_CHECKING:
    from contextgraph.core.config import ContextGraphSettings

logger = get_logger(__name__)


@dataclass
class RenderScope:
    """Resources owned by one render call.

    Created by ContextEvaluator.render_scope() and released when the call
    ends, whichever way it ends.
    """

    token: CancellationToken
    resolve_pool: ThreadPoolExecutor
    render_pool: ThreadPoolExecutor | None
    state: RenderState = RenderState.PENDING
    messages: list[Message] = field(default_factory=list)

    def advance(self, state: RenderState) -> None:
        self.token.raise_if_cancelled()
        logger.debug("render.state", state=state.value)
        self.state = state


def apply_duplicate_policy(
    variables: tuple[Variable, ...],
    policy: DuplicateNamePolicy,
) -> tuple[tuple[Variable, ...], list[Message]]:
    """Return the effective variable set and any warnings.

    Raises:
        RequestValidationError: Duplicates under DuplicateNamePolicy.REJECT
    """
    seen: set[str] = set()
    kept: list[Variable] = []
    duplicates: list[str] = []
    for variable in variables:
        if variable.name in seen:
            duplicates.append(variable.name)
            continue
        seen.add(variable.name)
        kept.append(variable)

    if not duplicates:
        return variables, []
    names = sorted(set(duplicates))
    if policy == DuplicateNamePolicy.REJECT:
        raise RequestValidationError(f"duplicate variable names: {', '.join(names)}")
    return tuple(kept), [
        Message.warn(
            "duplicate_variable",
            f"several variables share a name; the first one is used: {', '.join(names)}",
            variables=names,
        )
    ]


def referenced_variables(request: RenderRequest, variables: tuple[Variable, ...]) -> tuple[Variable, ...]:
    """Variables whose name appears in at least one node template."""
    names: set[str] = set()
    for node in request.nodes:
        names.update(placeholder_names(node.content))
    return tuple(v for v in variables if v.name in names)


class ContextEvaluator:
    """Evaluates render requests into traces.

    Example:
        evaluator = ContextEvaluator.from_settings(settings)
        trace = evaluator.render(parse_render_request(payload))
        print(trace.text)
    """

    def __init__(
        self,
        resolver: VariableBindingResolver,
        *,
        duplicate_policy: DuplicateNamePolicy = DuplicateNamePolicy.REJECT,
        parallel_nodes: bool = True,
        orderer: GraphOrderer | None = None,
        renderer: ContextRenderer | None = None,
        tracer: TraceBuilder | None = None,
    ) -> None:
        self.resolver = resolver
        self.duplicate_policy = duplicate_policy
        self.parallel_nodes = parallel_nodes
        self.orderer = orderer or GraphOrderer()
        self.renderer = renderer or ContextRenderer()
        self.tracer = tracer or TraceBuilder()

    @classmethod
    def from_settings(cls, settings: ContextGraphSettings, *, client: httpx.Client | None = None) -> ContextEvaluator:
        return cls(
            VariableBindingResolver.from_settings(settings.resolution, client=client),
            duplicate_policy=settings.rendering.duplicate_variables,
            parallel_nodes=settings.rendering.parallel_nodes,
        )

    def close(self) -> None:
        """Release the resolution service client, if this evaluator created one."""
        self.resolver.close()

    def __enter__(self) -> ContextEvaluator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def render(
        self,
        request: RenderRequest,
        *,
        token: CancellationToken | None = None,
        run_id: str | None = None,
        created_at: str | None = None,
    ) -> TraceRun:
        """Preview: render with dynamic variables resolved."""
        return self._evaluate(request, token=token, local_only=False, run_id=run_id, created_at=created_at)

    def execute(
        self,
        request: RenderRequest,
        *,
        token: CancellationToken | None = None,
        run_id: str | None = None,
        created_at: str | None = None,
    ) -> TraceRun:
        """Render locally: static values only, dynamic variables as ``[name]``."""
        return self._evaluate(request, token=token, local_only=True, run_id=run_id, created_at=created_at)

    @contextmanager
    def render_scope(self, token: CancellationToken | None = None) -> Iterator[RenderScope]:
        """Acquire the per-render worker pools; release them on exit.

        Pools are shut down without waiting: a resolver call stuck past its
        timeout must not hold the render open. Queued work is cancelled.
        """
        resolve_pool = ThreadPoolExecutor(max_workers=self.resolver.max_workers, thread_name_prefix="resolve")
        render_pool = ThreadPoolExecutor(thread_name_prefix="render") if self.parallel_nodes else None
        scope = RenderScope(token=token or CancellationToken(), resolve_pool=resolve_pool, render_pool=render_pool)
        try:
            yield scope
        finally:
            resolve_pool.shutdown(wait=False, cancel_futures=True)
            if render_pool is not None:
                render_pool.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def validate(self, request: RenderRequest) -> tuple[tuple[Variable, ...], list[Message]]:
        """Reject malformed requests; return the effective variables and warnings.

        Raises:
            RequestValidationError: Duplicate node ids, or duplicate variable
                names under DuplicateNamePolicy.REJECT
        """
        counts = Counter(n.id for n in request.nodes)
        duplicates = sorted(node_id for node_id, count in counts.items() if count > 1)
        if duplicates:
            raise RequestValidationError(f"duplicate node ids: {', '.join(duplicates)}")
        return apply_duplicate_policy(request.variables, self.duplicate_policy)

    def _evaluate(
        self,
        request: RenderRequest,
        *,
        token: CancellationToken | None,
        local_only: bool,
        run_id: str | None,
        created_at: str | None,
    ) -> TraceRun:
        started = time.monotonic()
        variables, messages = self.validate(request)
        logger.debug(
            "render.started",
            nodes=len(request.nodes),
            edges=len(request.edges),
            variables=len(variables),
            local_only=local_only,
        )

        with self.render_scope(token) as scope:
            scope.messages.extend(messages)

            scope.advance(RenderState.ORDERING)
            order = self.orderer.order(request.nodes, request.edges)
            if order.cycle_detected:
                scope.messages.append(
                    Message.warn(
                        "graph_cycle_detected",
                        "the node graph contains a cycle; nodes are rendered in their original order",
                        cycle=list(order.cycle),
                    )
                )
            if order.ignored_edges:
                scope.messages.append(
                    Message.info(
                        "edge_ignored",
                        f"{len(order.ignored_edges)} edge(s) reference unknown nodes and were ignored",
                        edges=[{"source": e.source, "target": e.target} for e in order.ignored_edges],
                    )
                )

            binding = self._bind(referenced_variables(request, variables), scope, local_only)
            scope.messages.extend(binding.messages)
            if local_only:
                scope.messages.append(
                    Message.info("local_render", "rendered locally; dynamic variables are shown as [name] placeholders")
                )

            scope.advance(RenderState.RENDERING)
            segments = self._render_nodes(order.nodes, binding, request, scope)
            if not segments:
                scope.messages.append(Message.info("empty_graph", "there are no context nodes to render"))

            scope.advance(RenderState.TRACED)
            trace = self.tracer.build(
                segments,
                request.output_style,
                scope.messages,
                run_id=run_id,
                created_at=created_at,
            )

        logger.info(
            "render.completed",
            run_id=trace.run_id,
            segments=len(trace.segments),
            missing_variables=trace.missing_variables_count,
            cycle_detected=order.cycle_detected,
            offline=binding.offline,
            digest=text_digest(trace.text),
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return trace

    def _bind(self, variables: tuple[Variable, ...], scope: RenderScope, local_only: bool) -> BindingResult:
        if local_only:
            return self.resolver.bind_local(variables)
        return self.resolver.resolve_all(variables, token=scope.token, executor=scope.resolve_pool)

    def _render_nodes(
        self,
        nodes: tuple[ContextNode, ...],
        binding: BindingResult,
        request: RenderRequest,
        scope: RenderScope,
    ) -> list[Segment]:
        """Render every node into its pre-allocated position.

        Completion order never affects output order: each result is written
        to the slot of its node's position in the ordered list.
        """
        slots: list[Segment | None] = [None] * len(nodes)
        if scope.render_pool is None or len(nodes) < 2:
            for i, node in enumerate(nodes):
                slots[i] = self.renderer.render(node, binding.values, request.output_style)
        else:
            futures = [
                scope.render_pool.submit(self.renderer.render, node, binding.values, request.output_style) for node in nodes
            ]
            for i, future in enumerate(futures):
                slots[i] = future.result()
        scope.token.raise_if_cancelled()
        return [s for s in slots if s is not None]
