"""Graph input contracts: context nodes, edges, variables.

These are strict contracts - enum fields must be proper enum instances.
Conversion from caller-supplied strings happens once, in
contextgraph.contracts.requests. Everything here is frozen: a render pass
never mutates its inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from contextgraph.contracts.enums import NodeKind, VariableType


def _validate_enum(value: object, enum_type: type, field_name: str) -> None:
    """Validate that value is an instance of the expected enum type."""
    if value is not None and not isinstance(value, enum_type):
        raise TypeError(f"{field_name} must be {enum_type.__name__}, got {type(value).__name__}: {value!r}")


@dataclass(frozen=True)
class ContextNode:
    """One labeled content block with a placeholder-bearing template."""

    id: str
    label: str
    kind: NodeKind
    content: str

    def __post_init__(self) -> None:
        _validate_enum(self.kind, NodeKind, "kind")


@dataclass(frozen=True)
class ContextEdge:
    """A "must render before" relation from source to target."""

    source: str
    target: str


@dataclass(frozen=True)
class Variable:
    """A named value referenced by templates.

    Static variables carry their literal value. Dynamic variables carry a
    query in ``value`` and a ``resolver`` URI (``scheme://target``).
    """

    id: str
    name: str
    type: VariableType
    value: str
    resolver: str | None = None

    def __post_init__(self) -> None:
        _validate_enum(self.type, VariableType, "type")

    @property
    def is_dynamic(self) -> bool:
        return self.type == VariableType.DYNAMIC

    def bound_to(self, value: str) -> Variable:
        """Return a static copy of this variable carrying ``value``."""
        return Variable(id=self.id, name=self.name, type=VariableType.STATIC, value=value)


@dataclass(frozen=True)
class ResolverURI:
    """A parsed resolver URI.

    The target is opaque: only the capability registered for ``scheme``
    interprets it.
    """

    scheme: str
    target: str
    raw: str

    @classmethod
    def parse(cls, raw: str) -> ResolverURI:
        """Split ``scheme://target``.

        A string without ``://`` yields the whole (trimmed) string as scheme
        and an empty target, which no registered capability will match.
        """
        text = raw.strip()
        scheme, sep, target = text.partition("://")
        if not sep:
            return cls(scheme=text, target="", raw=text)
        return cls(scheme=scheme.strip().lower(), target=target, raw=text)


@dataclass(frozen=True)
class ProjectSnapshot:
    """Graph and variables of a stored project, as used by replay."""

    id: str
    name: str
    nodes: tuple[ContextNode, ...]
    edges: tuple[ContextEdge, ...]
    variables: tuple[Variable, ...]


@dataclass(frozen=True)
class Dataset:
    """An ordered collection of rows used to drive replay.

    Rows are kept as received. A row that is not a mapping is still a row;
    replay records it as a failed run rather than skipping it.
    """

    id: str
    name: str
    rows: tuple[Any, ...] = field(default_factory=tuple)

    @property
    def row_count(self) -> int:
        return len(self.rows)
