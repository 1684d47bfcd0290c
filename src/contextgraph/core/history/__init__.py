"""Run history: the append-only record of every replay run.

Primary API:
    RunHistory - append and query run records
    RunHistoryDB - database connection management
"""

from contextgraph.core.history.database import RunHistoryDB
from contextgraph.core.history.recorder import RunHistory
from contextgraph.core.history.repository import RunRepository
from contextgraph.core.history.schema import metadata, runs_table

__all__ = [
    "RunHistory",
    "RunHistoryDB",
    "RunRepository",
    "metadata",
    "runs_table",
]
