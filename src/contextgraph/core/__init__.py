# src/contextgraph/core/__init__.py
"""Core infrastructure: Canonical digests, Configuration, DAG ordering, Run history, Logging."""

from contextgraph.core.canonical import (
    DIGEST_VERSION,
    canonical_json,
    compute_graph_hash,
    stable_hash,
    text_digest,
)
from contextgraph.core.config import (
    ContextGraphSettings,
    HistorySettings,
    RenderingSettings,
    ReplaySettings,
    ResolutionSettings,
    SchedulerSettings,
    StoreSettings,
    load_settings,
)
from contextgraph.core.dag import GraphOrderer, OrderResult, order_nodes
from contextgraph.core.history import RunHistory, RunHistoryDB
from contextgraph.core.logging import configure_logging, get_logger

__all__ = [
    "DIGEST_VERSION",
    "ContextGraphSettings",
    "GraphOrderer",
    "HistorySettings",
    "OrderResult",
    "RenderingSettings",
    "ReplaySettings",
    "ResolutionSettings",
    "RunHistory",
    "RunHistoryDB",
    "SchedulerSettings",
    "StoreSettings",
    "canonical_json",
    "compute_graph_hash",
    "configure_logging",
    "get_logger",
    "load_settings",
    "order_nodes",
    "stable_hash",
    "text_digest",
]
