"""RunHistory: append-only storage and queries for replay runs."""

from __future__ import annotations

import dataclasses
import threading

from sqlalchemy import func, select

from contextgraph.contracts import RunNotFoundError, RunRecord, RunSummary
from contextgraph.core.canonical import DIGEST_VERSION
from contextgraph.core.history.database import RunHistoryDB
from contextgraph.core.history.repository import RunRepository
from contextgraph.core.history.schema import runs_table
from contextgraph.core.logging import get_logger

logger = get_logger(__name__)


class RunHistory:
    """Append-only run history keyed by (dataset_id, row_index).

    Records are inserted and never updated or deleted. Each append assigns
    the next per-row ``sequence`` inside the insert transaction, under a
    lock, so concurrent appends for the same row never collide and the
    history of a row is a total order.

    Example:
        history = RunHistory(RunHistoryDB.in_memory())
        stored = history.append(record)
        latest = history.list_row_runs(stored.dataset_id, stored.row_index, limit=1)
    """

    def __init__(self, db: RunHistoryDB) -> None:
        self._db = db
        self._repo = RunRepository()
        self._append_lock = threading.Lock()

    def append(self, record: RunRecord) -> RunRecord:
        """Store a new run record.

        Returns:
            The record as stored, carrying its assigned sequence
        """
        with self._append_lock, self._db.connection() as conn:
            current = conn.execute(
                select(func.max(runs_table.c.sequence)).where(
                    runs_table.c.dataset_id == record.dataset_id,
                    runs_table.c.row_index == record.row_index,
                )
            ).scalar_one()
            sequence = 1 if current is None else current + 1
            conn.execute(runs_table.insert().values(**self._repo.dump(record, sequence=sequence, digest_version=DIGEST_VERSION)))

        logger.debug(
            "history.appended",
            run_id=record.run_id,
            dataset_id=record.dataset_id,
            row_index=record.row_index,
            sequence=sequence,
        )
        return dataclasses.replace(record, sequence=sequence)

    def get_run(self, run_id: str) -> RunRecord:
        """Fetch one run including its full trace.

        Raises:
            RunNotFoundError: If no run has this id
        """
        with self._db.connection() as conn:
            row = conn.execute(select(runs_table).where(runs_table.c.run_id == run_id)).one_or_none()
        if row is None:
            raise RunNotFoundError(run_id)
        return self._repo.load(row)

    def list_row_runs(self, dataset_id: str, row_index: int, limit: int | None = None) -> list[RunSummary]:
        """Run history for one row, most recent first."""
        query = (
            select(runs_table)
            .where(runs_table.c.dataset_id == dataset_id, runs_table.c.row_index == row_index)
            .order_by(runs_table.c.sequence.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        with self._db.connection() as conn:
            rows = conn.execute(query).all()
        return [self._repo.load_summary(r) for r in rows]

    def list_dataset_runs(
        self,
        dataset_id: str,
        *,
        row_index: int | None = None,
        limit: int | None = None,
    ) -> list[RunSummary]:
        """All runs of a dataset (optionally one row), most recent first."""
        if row_index is not None:
            return self.list_row_runs(dataset_id, row_index, limit)
        query = (
            select(runs_table)
            .where(runs_table.c.dataset_id == dataset_id)
            .order_by(runs_table.c.created_at.desc(), runs_table.c.sequence.desc(), runs_table.c.row_index)
        )
        if limit is not None:
            query = query.limit(limit)
        with self._db.connection() as conn:
            rows = conn.execute(query).all()
        return [self._repo.load_summary(r) for r in rows]

    def count_runs(self, dataset_id: str, row_index: int) -> int:
        with self._db.connection() as conn:
            result: int = conn.execute(
                select(func.count())
                .select_from(runs_table)
                .where(runs_table.c.dataset_id == dataset_id, runs_table.c.row_index == row_index)
            ).scalar_one()
        return result
