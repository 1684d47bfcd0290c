# src/contextgraph/engine/tracer.py
"""TraceBuilder: assembles segments into an immutable TraceRun."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from uuid import uuid4

from contextgraph.contracts import Message, OutputStyle, Segment, TraceRun
from contextgraph.core.canonical import text_digest

SEGMENT_SEPARATOR = "\n\n"


def generate_run_id() -> str:
    """Generate a unique run ID (UUID4 hex)."""
    return uuid4().hex


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with microseconds."""
    return datetime.now(UTC).isoformat()


def join_segments(segments: Sequence[Segment]) -> str:
    """Join rendered segments with a blank line, trimming outer whitespace."""
    return SEGMENT_SEPARATOR.join(s.rendered for s in segments).strip()


def output_digest(text: str) -> str:
    """Digest of a trace's final text (see canonical.text_digest)."""
    return text_digest(text)


class TraceBuilder:
    """Builds TraceRuns from ordered segments.

    Segment order is taken as given: the caller passes segments in
    GraphOrderer output order. Trace messages are the pipeline-level
    messages followed by each segment's messages, in segment order.
    """

    def build(
        self,
        segments: Sequence[Segment],
        output_style: OutputStyle,
        messages: Sequence[Message] = (),
        *,
        run_id: str | None = None,
        created_at: str | None = None,
    ) -> TraceRun:
        all_messages = list(messages)
        for segment in segments:
            all_messages.extend(segment.messages)
        return TraceRun(
            run_id=run_id or generate_run_id(),
            created_at=created_at or utc_now_iso(),
            output_style=output_style,
            text=join_segments(segments),
            segments=tuple(segments),
            messages=tuple(all_messages),
        )


def build_trace(
    segments: Sequence[Segment],
    output_style: OutputStyle = OutputStyle.LABELED,
    messages: Sequence[Message] = (),
    *,
    run_id: str | None = None,
    created_at: str | None = None,
) -> TraceRun:
    """Convenience wrapper around TraceBuilder().build()."""
    return TraceBuilder().build(segments, output_style, messages, run_id=run_id, created_at=created_at)
