# src/contextgraph/core/canonical.py
"""
Canonical JSON serialization and content digests.

Two kinds of hash live here:

1. Output digests: SHA-256 hex of the UTF-8 bytes of a trace's final text.
   This is a pure function of the text and is the sole equality signal used
   for drift detection.
2. Structural hashes: SHA-256 of canonical JSON (RFC 8785/JCS via the
   rfc8785 package) for graphs and configuration, so that a run record can
   say which graph produced it.

IMPORTANT: NaN and Infinity are strictly REJECTED by canonical_json, not
silently converted.
"""

from __future__ import annotations

import hashlib
import math
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import rfc8785

if TYPE_CHECKING:
    from contextgraph.contracts import ContextEdge, ContextNode, Variable

# Version string stored with every run next to its output digest
DIGEST_VERSION = "sha256-hex-v1"


def _normalize_value(obj: Any) -> Any:
    """Reject values JSON cannot represent exactly.

    Raises:
        ValueError: If value is a non-finite float
    """
    if isinstance(obj, float) and (math.isnan(obj) or math.isinf(obj)):
        raise ValueError(f"Cannot canonicalize non-finite float: {obj}. Use None for missing values, not NaN.")
    return obj


def _normalize_for_canonical(data: Any) -> Any:
    """Recursively normalize a data structure for canonical JSON."""
    if isinstance(data, dict):
        return {k: _normalize_for_canonical(v) for k, v in data.items()}
    if isinstance(data, list | tuple):
        return [_normalize_for_canonical(v) for v in data]
    return _normalize_value(data)


def canonical_json(obj: Any) -> str:
    """Produce canonical JSON for hashing.

    Args:
        obj: Data structure to serialize

    Returns:
        Canonical JSON string (no whitespace, sorted keys)

    Raises:
        ValueError: If data contains NaN, Infinity, or other non-finite values
        TypeError: If data contains types that cannot be serialized
    """
    normalized = _normalize_for_canonical(obj)
    result: bytes = rfc8785.dumps(normalized)
    return result.decode("utf-8")


def stable_hash(obj: Any) -> str:
    """SHA-256 hex digest of the canonical JSON of ``obj``."""
    canonical = canonical_json(obj)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def text_digest(text: str) -> str:
    """Digest of a trace's final text.

    Fixed-length (64 char) lowercase hex. Equal text always yields an equal
    digest; consumers compare digests for equality and nothing else.
    """
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def compute_graph_hash(
    nodes: Iterable[ContextNode],
    edges: Iterable[ContextEdge],
    variables: Iterable[Variable] = (),
) -> str:
    """Hash of a graph snapshot: nodes, edges and variable configuration.

    Node and variable order is part of the hash (order is a rendering
    tie-break); edge order is not, since it never changes the render.
    """
    data = {
        "nodes": [{"id": n.id, "label": n.label, "kind": n.kind.value, "content": n.content} for n in nodes],
        "edges": sorted(
            ({"source": e.source, "target": e.target} for e in edges),
            key=lambda e: (e["source"], e["target"]),
        ),
        "variables": [
            {"id": v.id, "name": v.name, "type": v.type.value, "value": v.value, "resolver": v.resolver}
            for v in variables
        ],
    }
    return stable_hash(data)
