"""Trace contracts: messages, segments and the assembled trace run.

TraceRun is the response shape of preview/execute and is embedded in every
RunRecord. ``to_dict()`` produces the camelCase wire shape; ``from_dict()``
reads it back from the run history. The history is OUR data: malformed
stored traces crash on load instead of being patched up.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from contextgraph.contracts.enums import NodeKind, OutputStyle, Severity


@dataclass(frozen=True)
class Message:
    """A non-fatal diagnostic attached to a segment or to the whole trace."""

    severity: Severity
    code: str
    message: str
    details: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.severity, Severity):
            raise TypeError(f"severity must be Severity, got {type(self.severity).__name__}: {self.severity!r}")

    @classmethod
    def info(cls, code: str, message: str, **details: Any) -> Message:
        return cls(Severity.INFO, code, message, details or None)

    @classmethod
    def warn(cls, code: str, message: str, **details: Any) -> Message:
        return cls(Severity.WARN, code, message, details or None)

    @classmethod
    def error(cls, code: str, message: str, **details: Any) -> Message:
        return cls(Severity.ERROR, code, message, details or None)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "severity": self.severity.value,
            "code": self.code,
            "message": self.message,
        }
        if self.details is not None:
            out["details"] = self.details
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            severity=Severity(data["severity"]),
            code=data["code"],
            message=data["message"],
            details=data.get("details"),
        )


@dataclass(frozen=True)
class Segment:
    """Rendered output and diagnostics for one context node."""

    node_id: str
    label: str
    kind: NodeKind
    template: str
    rendered: str
    missing_variables: tuple[str, ...] = ()
    messages: tuple[Message, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "label": self.label,
            "kind": self.kind.value,
            "template": self.template,
            "rendered": self.rendered,
            "missingVariables": list(self.missing_variables),
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Segment:
        return cls(
            node_id=data["nodeId"],
            label=data["label"],
            kind=NodeKind(data["kind"]),
            template=data["template"],
            rendered=data["rendered"],
            missing_variables=tuple(data["missingVariables"]),
            messages=tuple(Message.from_dict(m) for m in data["messages"]),
        )


@dataclass(frozen=True)
class TraceRun:
    """The full ordered collection of segments plus the final text.

    Immutable once produced by the TraceBuilder.
    """

    run_id: str
    created_at: str
    output_style: OutputStyle
    text: str
    segments: tuple[Segment, ...] = ()
    messages: tuple[Message, ...] = field(default_factory=tuple)

    @property
    def missing_variables_count(self) -> int:
        """Number of distinct non-blank names missing across all segments."""
        names = {name for seg in self.segments for name in seg.missing_variables if name.strip()}
        return len(names)

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "createdAt": self.created_at,
            "outputStyle": self.output_style.value,
            "text": self.text,
            "segments": [s.to_dict() for s in self.segments],
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TraceRun:
        return cls(
            run_id=data["runId"],
            created_at=data["createdAt"],
            output_style=OutputStyle(data["outputStyle"]),
            text=data["text"],
            segments=tuple(Segment.from_dict(s) for s in data["segments"]),
            messages=tuple(Message.from_dict(m) for m in data["messages"]),
        )
