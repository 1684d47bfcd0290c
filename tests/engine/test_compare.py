# tests/engine/test_compare.py
"""Tests for run comparison and drift detection."""

import pytest

from contextgraph.contracts import (
    DiffKind,
    DriftStatus,
    OutputStyle,
    RequestValidationError,
    RunNotFoundError,
    RunRecord,
    RunStatus,
    TraceRun,
)
from contextgraph.core.canonical import text_digest
from contextgraph.core.history import RunHistory
from contextgraph.engine.compare import RunComparator


def _record(run_id: str, text: str, *, row_index: int = 0) -> RunRecord:
    trace = TraceRun(run_id=run_id, created_at="2026-03-01T00:00:00+00:00", output_style=OutputStyle.PLAIN, text=text)
    return RunRecord(
        run_id=run_id,
        created_at=trace.created_at,
        project_id="p",
        dataset_id="ds",
        row_index=row_index,
        status=RunStatus.SUCCEEDED,
        output_digest=text_digest(text),
        missing_variables_count=0,
        graph_hash="0" * 64,
        trace=trace,
    )


class TestDiffLines:
    def test_changed_line(self) -> None:
        from contextgraph.engine.compare import diff_lines

        diff = diff_lines("a\nb", "a\nc")

        assert [d.kind for d in diff] == [DiffKind.SAME, DiffKind.CHANGED]
        assert (diff[1].left, diff[1].right) == ("b", "c")

    def test_line_only_on_right(self) -> None:
        from contextgraph.engine.compare import diff_lines

        diff = diff_lines("a", "a\nb")

        assert diff[1].left == ""
        assert diff[1].right == "b"
        assert diff[1].kind == DiffKind.MISSING_LEFT

    def test_line_only_on_left(self) -> None:
        from contextgraph.engine.compare import diff_lines

        diff = diff_lines("a\nb\nc", "a")

        assert [d.kind for d in diff] == [DiffKind.SAME, DiffKind.MISSING_RIGHT, DiffKind.MISSING_RIGHT]
        assert diff[2].right == ""

    def test_identical_texts(self) -> None:
        from contextgraph.engine.compare import diff_lines

        assert all(d.kind == DiffKind.SAME for d in diff_lines("x\ny", "x\ny"))

    def test_empty_texts_are_one_same_line(self) -> None:
        from contextgraph.engine.compare import diff_lines

        diff = diff_lines("", "")

        assert len(diff) == 1
        assert diff[0].kind == DiffKind.SAME


class TestRunComparator:
    def test_equal_digests_are_stable(self, history: RunHistory) -> None:
        history.append(_record("r1", "Hello World"))
        history.append(_record("r2", "Hello World"))

        comparison = RunComparator(history).compare("r1", "r2")

        assert comparison.status == DriftStatus.STABLE
        assert comparison.same_row
        assert comparison.changed_lines == []

    def test_different_digests_drift(self, history: RunHistory) -> None:
        history.append(_record("r1", "Hello\nWorld"))
        history.append(_record("r2", "Hello\nThere"))

        comparison = RunComparator(history).compare("r1", "r2")

        assert comparison.status == DriftStatus.DRIFT
        assert comparison.changed_lines == [1]

    def test_different_rows_flagged(self, history: RunHistory) -> None:
        history.append(_record("r1", "same", row_index=0))
        history.append(_record("r2", "same", row_index=1))

        comparison = RunComparator(history).compare("r1", "r2")

        assert not comparison.same_row
        assert comparison.status == DriftStatus.STABLE

    def test_compare_latest_puts_newest_right(self, history: RunHistory) -> None:
        history.append(_record("r1", "v1"))
        history.append(_record("r2", "v2"))
        history.append(_record("r3", "v3"))

        comparison = RunComparator(history).compare_latest("ds", 0)

        assert comparison.left.run_id == "r2"
        assert comparison.right.run_id == "r3"
        assert comparison.status == DriftStatus.DRIFT

    def test_compare_latest_needs_two_runs(self, history: RunHistory) -> None:
        history.append(_record("r1", "only"))

        with pytest.raises(RequestValidationError, match="two are needed"):
            RunComparator(history).compare_latest("ds", 0)

    def test_unknown_run(self, history: RunHistory) -> None:
        history.append(_record("r1", "x"))

        with pytest.raises(RunNotFoundError):
            RunComparator(history).compare("r1", "missing")
