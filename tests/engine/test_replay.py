# tests/engine/test_replay.py
"""Tests for dataset replay."""

import pytest

from contextgraph.contracts import (
    ContextEdge,
    ContextNode,
    Dataset,
    DatasetNotFoundError,
    NodeKind,
    ProjectNotFoundError,
    ProjectSnapshot,
    ReplayRequest,
    ResolverURI,
    RunStatus,
    Variable,
    VariableType,
)
from contextgraph.core.canonical import text_digest
from contextgraph.core.history import RunHistory
from contextgraph.core.stores import InMemoryDatasetStore, InMemoryProjectStore
from contextgraph.engine.cancellation import CancellationToken
from contextgraph.engine.evaluator import ContextEvaluator
from contextgraph.engine.replay import ReplayOrchestrator
from contextgraph.engine.resolution import ResolvedValue, ResolverRegistry, VariableBindingResolver

PROJECT = ProjectSnapshot(
    id="p1",
    name="Support",
    nodes=(
        ContextNode(id="q", label="Question", kind=NodeKind.USER, content="Q: {{question}}"),
        ContextNode(id="s", label="System", kind=NodeKind.SYSTEM, content="Customer {{customer}} ({{tier}})"),
    ),
    edges=(ContextEdge(source="s", target="q"),),
    variables=(
        Variable(id="v1", name="question", type=VariableType.STATIC, value="default question"),
        Variable(id="v2", name="customer", type=VariableType.DYNAMIC, value="select name", resolver="sql://crm"),
    ),
)


class _Recording:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def resolve(self, uri: ResolverURI, variable: Variable, token: CancellationToken) -> ResolvedValue:
        self.calls.append(variable.name)
        return ResolvedValue(value="resolved")


def _orchestrator(history: RunHistory, rows: tuple[object, ...], capability: _Recording | None = None) -> ReplayOrchestrator:
    registry = ResolverRegistry()
    registry.register("sql", capability or _Recording())
    evaluator = ContextEvaluator(VariableBindingResolver(registry))
    return ReplayOrchestrator(
        evaluator,
        InMemoryProjectStore([PROJECT]),
        InMemoryDatasetStore([Dataset(id="ds", name="Questions", rows=rows)]),
        history,
        default_limit=20,
        max_limit=200,
    )


class TestRowBindings:
    def test_top_level_fields(self) -> None:
        from contextgraph.engine.replay import row_bindings

        assert row_bindings({"a": "x", "_meta": "skip", "n": 3}) == {"a": "x", "n": "3"}

    def test_nested_variables_object_wins(self) -> None:
        from contextgraph.engine.replay import row_bindings

        assert row_bindings({"variables": {"a": "x", "_b": "y"}, "c": "ignored"}) == {"a": "x"}

    def test_values_stringified(self) -> None:
        from contextgraph.engine.replay import row_bindings

        bindings = row_bindings({"t": True, "f": 1.5, "i": 2.0, "none": None, "obj": {"k": [1, 2]}})

        assert bindings == {"t": "true", "f": "1.5", "i": "2", "none": "null", "obj": '{"k":[1,2]}'}

    @pytest.mark.parametrize("row", ["text", 3, ["a"], {"variables": "nope"}])
    def test_invalid_rows(self, row: object) -> None:
        from contextgraph.engine.replay import InvalidRowError, row_bindings

        with pytest.raises(InvalidRowError):
            row_bindings(row)


class TestBindRow:
    def test_matching_variables_become_static(self) -> None:
        from contextgraph.engine.replay import bind_row

        bound = bind_row(PROJECT.variables, {"customer": "Ann", "tier": "gold"})

        assert bound[1].type == VariableType.STATIC
        assert bound[1].value == "Ann"
        assert bound[0] == PROJECT.variables[0]
        assert bound[2].name == "tier"
        assert bound[2].type == VariableType.STATIC


class TestReplay:
    def test_rows_rendered_and_recorded(self, history: RunHistory) -> None:
        capability = _Recording()
        orchestrator = _orchestrator(
            history,
            ({"question": "Where is my order?", "customer": "Ann", "tier": "gold"}, {"question": "Refund?"}),
            capability,
        )

        summaries = orchestrator.replay(ReplayRequest(dataset_id="ds", project_id="p1"))

        assert [s.row_index for s in summaries] == [0, 1]
        assert all(s.status == RunStatus.SUCCEEDED for s in summaries)

        first = history.get_run(summaries[0].run_id)
        assert first.trace.text == "--- System ---\nCustomer Ann (gold)\n\n--- Question ---\nQ: Where is my order?"
        assert first.output_digest == text_digest(first.trace.text)
        assert first.project_id == "p1"
        assert len(first.graph_hash) == 64

        # Row 1 did not bind customer, so it was resolved; tier stays missing
        second = history.get_run(summaries[1].run_id)
        assert "Customer resolved ({{tier}})" in second.trace.text
        assert second.missing_variables_count == 1
        assert capability.calls == ["customer"]

    def test_invalid_row_recorded_as_failed(self, history: RunHistory) -> None:
        orchestrator = _orchestrator(history, ({"question": "ok"}, "not an object"))

        summaries = orchestrator.replay(ReplayRequest(dataset_id="ds", project_id="p1"))

        assert [s.status for s in summaries] == [RunStatus.SUCCEEDED, RunStatus.FAILED]
        failed = history.get_run(summaries[1].run_id)
        assert failed.output_digest == text_digest("")
        assert failed.trace.messages[0].code == "invalid_row"
        assert [s.node_id for s in failed.trace.segments] == ["s", "q"]
        assert "{{question}}" in failed.trace.text
        assert failed.missing_variables_count == 3
        assert summaries[1].missing_variables_count == 3

    def test_window(self, history: RunHistory) -> None:
        rows = tuple({"question": str(i)} for i in range(10))
        orchestrator = _orchestrator(history, rows)

        summaries = orchestrator.replay(ReplayRequest(dataset_id="ds", project_id="p1", limit=3, offset=4))

        assert [s.row_index for s in summaries] == [4, 5, 6]

    def test_limit_clamped_to_max(self, history: RunHistory) -> None:
        orchestrator = _orchestrator(history, ())
        orchestrator.max_limit = 5

        assert orchestrator.window(ReplayRequest(dataset_id="ds", project_id="p1", limit=500), 100) == range(0, 5)

    def test_default_limit(self, history: RunHistory) -> None:
        orchestrator = _orchestrator(history, ())

        assert orchestrator.window(ReplayRequest(dataset_id="ds", project_id="p1"), 100) == range(0, 20)
        assert orchestrator.window(ReplayRequest(dataset_id="ds", project_id="p1", offset=150), 100) == range(100, 100)

    def test_repeat_replay_is_stable(self, history: RunHistory) -> None:
        orchestrator = _orchestrator(history, ({"question": "q", "customer": "c", "tier": "t"},))

        first = orchestrator.replay(ReplayRequest(dataset_id="ds", project_id="p1"))[0]
        second = orchestrator.replay(ReplayRequest(dataset_id="ds", project_id="p1"))[0]

        assert first.output_digest == second.output_digest
        assert (first.sequence, second.sequence) == (1, 2)
        assert [s.run_id for s in orchestrator.row_history("ds", 0)] == [second.run_id, first.run_id]

    def test_unknown_dataset(self, history: RunHistory) -> None:
        with pytest.raises(DatasetNotFoundError):
            _orchestrator(history, ()).replay(ReplayRequest(dataset_id="missing", project_id="p1"))

    def test_unknown_project_rejected_before_rendering(self, history: RunHistory) -> None:
        with pytest.raises(ProjectNotFoundError):
            _orchestrator(history, ({"question": "q"},)).replay(ReplayRequest(dataset_id="ds", project_id="missing"))

        assert history.list_dataset_runs("ds") == []
