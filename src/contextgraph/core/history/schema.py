"""SQLAlchemy table definitions for the run history.

Uses SQLAlchemy Core (not ORM) for explicit control over queries and
compatibility with multiple database backends.

The history is append-only: rows are inserted, never updated or deleted.
"""

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

runs_table = Table(
    "runs",
    metadata,
    Column("run_id", String(64), primary_key=True),
    Column("dataset_id", String(128), nullable=False),
    Column("row_index", Integer, nullable=False),
    # Per-(dataset_id, row_index) append counter, assigned on insert
    Column("sequence", Integer, nullable=False),
    Column("project_id", String(128), nullable=False),
    # ISO-8601 UTC string, stored verbatim so the record round-trips exactly
    Column("created_at", String(40), nullable=False),
    Column("status", String(16), nullable=False),
    Column("output_digest", String(64), nullable=False),
    Column("digest_version", String(32), nullable=False),
    Column("missing_variables_count", Integer, nullable=False),
    Column("graph_hash", String(64), nullable=False),
    Column("trace_json", Text, nullable=False),
    UniqueConstraint("dataset_id", "row_index", "sequence"),
)

Index("ix_runs_dataset_row", runs_table.c.dataset_id, runs_table.c.row_index)
