"""Replay run contracts: run records, summaries and comparisons.

RunRecord is append-only history data. The repository layer converts
database strings to enums; these contracts reject anything else.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from contextgraph.contracts.enums import DiffKind, DriftStatus, RunStatus
from contextgraph.contracts.trace import TraceRun


@dataclass(frozen=True)
class RunSummary:
    """One replay execution without its trace."""

    run_id: str
    created_at: str
    dataset_id: str
    row_index: int
    sequence: int
    status: RunStatus
    output_digest: str
    missing_variables_count: int

    def __post_init__(self) -> None:
        if not isinstance(self.status, RunStatus):
            raise TypeError(f"status must be RunStatus, got {type(self.status).__name__}: {self.status!r}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "createdAt": self.created_at,
            "datasetId": self.dataset_id,
            "rowIndex": self.row_index,
            "sequence": self.sequence,
            "status": self.status.value,
            "outputDigest": self.output_digest,
            "missingVariablesCount": self.missing_variables_count,
        }


@dataclass(frozen=True)
class RunRecord:
    """One replay execution of a project graph against one dataset row.

    ``sequence`` is assigned by the run history on append (0 for a record
    that has not been stored yet) and totally orders the runs of one row.
    """

    run_id: str
    created_at: str
    project_id: str
    dataset_id: str
    row_index: int
    status: RunStatus
    output_digest: str
    missing_variables_count: int
    graph_hash: str
    trace: TraceRun
    sequence: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.status, RunStatus):
            raise TypeError(f"status must be RunStatus, got {type(self.status).__name__}: {self.status!r}")

    def summary(self) -> RunSummary:
        return RunSummary(
            run_id=self.run_id,
            created_at=self.created_at,
            dataset_id=self.dataset_id,
            row_index=self.row_index,
            sequence=self.sequence,
            status=self.status,
            output_digest=self.output_digest,
            missing_variables_count=self.missing_variables_count,
        )

    def to_dict(self) -> dict[str, Any]:
        out = self.summary().to_dict()
        out["projectId"] = self.project_id
        out["graphHash"] = self.graph_hash
        out["trace"] = self.trace.to_dict()
        return out


@dataclass(frozen=True)
class DiffLine:
    """One line pair of a line-oriented diff."""

    left: str
    right: str
    kind: DiffKind

    def to_dict(self) -> dict[str, str]:
        return {"left": self.left, "right": self.right, "kind": self.kind.value}


@dataclass(frozen=True)
class RunComparison:
    """Drift classification and line diff for two runs.

    Attributes:
        left: Baseline run
        right: Run compared against the baseline
        status: STABLE when digests are equal, DRIFT otherwise
        same_row: Whether both runs belong to the same (dataset, row)
        diff: Line diff of left.trace.text against right.trace.text
    """

    left: RunSummary
    right: RunSummary
    status: DriftStatus
    same_row: bool
    diff: tuple[DiffLine, ...]

    @property
    def changed_lines(self) -> list[int]:
        """Indexes of diff lines that are not SAME."""
        return [i for i, line in enumerate(self.diff) if line.kind != DiffKind.SAME]

    def to_dict(self) -> dict[str, Any]:
        return {
            "left": self.left.to_dict(),
            "right": self.right.to_dict(),
            "status": self.status.value,
            "sameRow": self.same_row,
            "diff": [line.to_dict() for line in self.diff],
        }
