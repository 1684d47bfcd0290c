"""Repository layer for run history records.

Handles the seam between SQLAlchemy rows (strings, JSON text) and domain
objects (strict enum types). This is NOT a trust boundary - the history is
our own data, so a bad row crashes instead of being coerced.
"""

import json
from typing import Any

from sqlalchemy.engine import Row as SARow

from contextgraph.contracts import RunRecord, RunStatus, RunSummary, TraceRun


class RunRepository:
    """Converts between run rows and RunRecord/RunSummary."""

    def load(self, row: SARow[Any]) -> RunRecord:
        """Load a full RunRecord (including its trace)."""
        return RunRecord(
            run_id=row.run_id,
            created_at=row.created_at,
            project_id=row.project_id,
            dataset_id=row.dataset_id,
            row_index=row.row_index,
            sequence=row.sequence,
            status=RunStatus(row.status),
            output_digest=row.output_digest,
            missing_variables_count=row.missing_variables_count,
            graph_hash=row.graph_hash,
            trace=TraceRun.from_dict(json.loads(row.trace_json)),
        )

    def load_summary(self, row: SARow[Any]) -> RunSummary:
        """Load a RunSummary without decoding the trace."""
        return RunSummary(
            run_id=row.run_id,
            created_at=row.created_at,
            dataset_id=row.dataset_id,
            row_index=row.row_index,
            sequence=row.sequence,
            status=RunStatus(row.status),
            output_digest=row.output_digest,
            missing_variables_count=row.missing_variables_count,
        )

    def dump(self, record: RunRecord, *, sequence: int, digest_version: str) -> dict[str, Any]:
        """Column values for inserting ``record`` with an assigned sequence."""
        return {
            "run_id": record.run_id,
            "dataset_id": record.dataset_id,
            "row_index": record.row_index,
            "sequence": sequence,
            "project_id": record.project_id,
            "created_at": record.created_at,
            "status": record.status.value,
            "output_digest": record.output_digest,
            "digest_version": digest_version,
            "missing_variables_count": record.missing_variables_count,
            "graph_hash": record.graph_hash,
            "trace_json": json.dumps(record.trace.to_dict(), ensure_ascii=False),
        }
