# src/contextgraph/engine/compare.py
"""RunComparator: drift classification between two stored runs."""

from __future__ import annotations

from contextgraph.contracts import (
    DiffKind,
    DiffLine,
    DriftStatus,
    RequestValidationError,
    RunComparison,
    RunRecord,
)
from contextgraph.core.history import RunHistory
from contextgraph.core.logging import get_logger

logger = get_logger(__name__)


def diff_lines(left: str, right: str) -> list[DiffLine]:
    """Index-aligned line diff.

    Lines are paired by position, not by content: an inserted line shifts
    every following pair to CHANGED. This is the diff users compare runs
    with, so it stays this simple.
    """
    left_lines = left.split("\n")
    right_lines = right.split("\n")
    out: list[DiffLine] = []
    for i in range(max(len(left_lines), len(right_lines))):
        if i >= len(left_lines):
            out.append(DiffLine(left="", right=right_lines[i], kind=DiffKind.MISSING_LEFT))
        elif i >= len(right_lines):
            out.append(DiffLine(left=left_lines[i], right="", kind=DiffKind.MISSING_RIGHT))
        elif left_lines[i] == right_lines[i]:
            out.append(DiffLine(left=left_lines[i], right=right_lines[i], kind=DiffKind.SAME))
        else:
            out.append(DiffLine(left=left_lines[i], right=right_lines[i], kind=DiffKind.CHANGED))
    return out


def classify_drift(left_digest: str, right_digest: str) -> DriftStatus:
    return DriftStatus.STABLE if left_digest == right_digest else DriftStatus.DRIFT


class RunComparator:
    """Compares stored runs by output digest and line diff.

    Example:
        comparison = RunComparator(history).compare_latest("ds", 0)
        if comparison.status == DriftStatus.DRIFT:
            ...
    """

    def __init__(self, history: RunHistory) -> None:
        self.history = history

    def compare(self, left_run_id: str, right_run_id: str) -> RunComparison:
        """Compare two runs; ``left`` is the baseline.

        Raises:
            RunNotFoundError: Either run does not exist
        """
        left = self.history.get_run(left_run_id)
        right = self.history.get_run(right_run_id)
        return self._compare(left, right)

    def compare_latest(self, dataset_id: str, row_index: int) -> RunComparison:
        """Compare the two most recent runs of a row, newest on the right.

        Raises:
            RequestValidationError: The row has fewer than two runs
        """
        recent = self.history.list_row_runs(dataset_id, row_index, limit=2)
        if len(recent) < 2:
            raise RequestValidationError(
                f"row {row_index} of dataset {dataset_id!r} has {len(recent)} run(s); two are needed to compare"
            )
        newest, previous = recent
        return self.compare(previous.run_id, newest.run_id)

    def _compare(self, left: RunRecord, right: RunRecord) -> RunComparison:
        same_row = (left.dataset_id, left.row_index) == (right.dataset_id, right.row_index)
        if not same_row:
            logger.warning(
                "compare.different_rows",
                left_run_id=left.run_id,
                right_run_id=right.run_id,
                left_row=[left.dataset_id, left.row_index],
                right_row=[right.dataset_id, right.row_index],
            )
        status = classify_drift(left.output_digest, right.output_digest)
        comparison = RunComparison(
            left=left.summary(),
            right=right.summary(),
            status=status,
            same_row=same_row,
            diff=tuple(diff_lines(left.trace.text, right.trace.text)),
        )
        logger.debug(
            "compare.completed",
            left_run_id=left.run_id,
            right_run_id=right.run_id,
            status=status.value,
            changed_lines=len(comparison.changed_lines),
        )
        return comparison
