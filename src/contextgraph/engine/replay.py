# src/contextgraph/engine/replay.py
"""ReplayOrchestrator: render a stored project against dataset rows.

Each row in the requested window is bound onto the project's variables,
rendered through the evaluator and appended to the run history. Rows are
processed in index order; the returned summaries follow the same order.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from contextgraph.contracts import (
    Message,
    OutputStyle,
    ProjectSnapshot,
    RenderRequest,
    ReplayRequest,
    RunRecord,
    RunStatus,
    RunSummary,
    TraceRun,
    Variable,
    VariableType,
)
from contextgraph.core.canonical import compute_graph_hash
from contextgraph.core.history import RunHistory
from contextgraph.core.logging import get_logger
from contextgraph.core.stores import DatasetStore, ProjectStore
from contextgraph.engine.evaluator import ContextEvaluator
from contextgraph.engine.tracer import generate_run_id, output_digest, utc_now_iso

logger = get_logger(__name__)

ROW_VARIABLES_KEY = "variables"


class InvalidRowError(ValueError):
    """A dataset row that cannot be bound onto variables."""


def stringify_row_value(value: Any) -> str:
    """Text form of a JSON row value.

    Strings pass through; booleans are ``true``/``false``; integral floats
    drop their fraction; null and containers are compact JSON.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def row_bindings(row: Any) -> dict[str, str]:
    """Extract name -> value bindings from one dataset row.

    The nested ``variables`` object is used when present, otherwise the
    row's own fields. Keys starting with ``_`` are ignored.

    Raises:
        InvalidRowError: The row (or its ``variables`` field) is not an object
    """
    if not isinstance(row, Mapping):
        raise InvalidRowError(f"row must be an object, got {type(row).__name__}")
    fields = row
    if ROW_VARIABLES_KEY in row:
        fields = row[ROW_VARIABLES_KEY]
        if not isinstance(fields, Mapping):
            raise InvalidRowError(f"row '{ROW_VARIABLES_KEY}' must be an object, got {type(fields).__name__}")
    return {str(k): stringify_row_value(v) for k, v in fields.items() if not str(k).startswith("_")}


def bind_row(variables: tuple[Variable, ...], bindings: Mapping[str, str]) -> tuple[Variable, ...]:
    """Apply row bindings to a project's variables.

    Matching variables become static with the row value and are never
    resolved; the rest keep their configuration. Row fields with no
    matching variable are appended as static variables.
    """
    bound = tuple(v.bound_to(bindings[v.name]) if v.name in bindings else v for v in variables)
    known = {v.name for v in variables}
    extras = tuple(
        Variable(id=f"row:{name}", name=name, type=VariableType.STATIC, value=value)
        for name, value in bindings.items()
        if name not in known
    )
    return bound + extras


class ReplayOrchestrator:
    """Replays dataset rows through a stored project graph.

    Example:
        orchestrator = ReplayOrchestrator(evaluator, projects, datasets, history)
        summaries = orchestrator.replay(ReplayRequest(dataset_id="ds", project_id="p"))
    """

    def __init__(
        self,
        evaluator: ContextEvaluator,
        projects: ProjectStore,
        datasets: DatasetStore,
        history: RunHistory,
        *,
        default_limit: int = 20,
        max_limit: int = 200,
        output_style: OutputStyle = OutputStyle.LABELED,
    ) -> None:
        self.evaluator = evaluator
        self.projects = projects
        self.datasets = datasets
        self.history = history
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.output_style = output_style

    def window(self, request: ReplayRequest, row_count: int) -> range:
        """Row indexes covered by ``request``, clamped to the dataset."""
        limit = self.default_limit if request.limit is None else request.limit
        limit = min(limit, self.max_limit)
        start = min(request.offset or 0, row_count)
        return range(start, min(start + limit, row_count))

    def replay(self, request: ReplayRequest) -> list[RunSummary]:
        """Render every row in the window and append a run record for each.

        Raises:
            DatasetNotFoundError: Unknown dataset
            ProjectNotFoundError: Unknown project
            RequestValidationError: The project graph itself is invalid
            ResolutionUnavailableError: Resolution service unreachable under
                OfflinePolicy.FAIL
        """
        dataset = self.datasets.get_dataset(request.dataset_id)
        project = self.projects.get_project(request.project_id)
        self.evaluator.validate(self._request_for(project, project.variables))

        rows = self.window(request, dataset.row_count)
        logger.info(
            "replay.started",
            dataset_id=dataset.id,
            project_id=project.id,
            offset=rows.start,
            rows=len(rows),
        )

        summaries: list[RunSummary] = []
        for row_index in rows:
            record = self._replay_row(project, dataset.id, row_index, dataset.rows[row_index])
            stored = self.history.append(record)
            summaries.append(stored.summary())

        failed = sum(1 for s in summaries if s.status == RunStatus.FAILED)
        logger.info("replay.completed", dataset_id=dataset.id, project_id=project.id, rows=len(summaries), failed=failed)
        return summaries

    def row_history(self, dataset_id: str, row_index: int, limit: int | None = None) -> list[RunSummary]:
        """Runs of one row, most recent first."""
        return self.history.list_row_runs(dataset_id, row_index, limit)

    # ------------------------------------------------------------------

    def _request_for(self, project: ProjectSnapshot, variables: tuple[Variable, ...]) -> RenderRequest:
        return RenderRequest(
            nodes=project.nodes,
            edges=project.edges,
            variables=variables,
            output_style=self.output_style,
        )

    def _replay_row(self, project: ProjectSnapshot, dataset_id: str, row_index: int, row: Any) -> RunRecord:
        run_id = generate_run_id()
        created_at = utc_now_iso()
        graph_hash = compute_graph_hash(project.nodes, project.edges, project.variables)

        try:
            bindings = row_bindings(row)
        except InvalidRowError as exc:
            logger.warning("replay.invalid_row", dataset_id=dataset_id, row_index=row_index, error=str(exc))
            # Rendered with nothing bound; the recorded digest is that of ""
            trace = self.evaluator.render(self._request_for(project, ()), run_id=run_id, created_at=created_at)
            trace = replace(
                trace,
                messages=(Message.error("invalid_row", str(exc), rowIndex=row_index), *trace.messages),
            )
            return self._record(
                project, dataset_id, row_index, trace, RunStatus.FAILED, graph_hash, digest=output_digest("")
            )

        request = self._request_for(project, bind_row(project.variables, bindings))
        trace = self.evaluator.render(request, run_id=run_id, created_at=created_at)
        return self._record(project, dataset_id, row_index, trace, RunStatus.SUCCEEDED, graph_hash)

    def _record(
        self,
        project: ProjectSnapshot,
        dataset_id: str,
        row_index: int,
        trace: TraceRun,
        status: RunStatus,
        graph_hash: str,
        *,
        digest: str | None = None,
    ) -> RunRecord:
        return RunRecord(
            run_id=trace.run_id,
            created_at=trace.created_at,
            project_id=project.id,
            dataset_id=dataset_id,
            row_index=row_index,
            status=status,
            output_digest=output_digest(trace.text) if digest is None else digest,
            missing_variables_count=trace.missing_variables_count,
            graph_hash=graph_hash,
            trace=trace,
        )
