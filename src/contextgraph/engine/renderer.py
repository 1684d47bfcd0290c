# src/contextgraph/engine/renderer.py
"""ContextRenderer: substitutes variable values into one node's template.

The placeholder grammar is deliberately flat: ``{{ identifier }}``, with
surrounding whitespace inside the braces ignored. There are no
conditionals, loops or filters.

Rendering is pure and idempotent: the same (node, values, style) always
yields a byte-identical segment.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from contextgraph.contracts import ContextNode, Message, OutputStyle, RenderError, Segment
from contextgraph.core.logging import get_logger

logger = get_logger(__name__)

# Shortest match between "{{" and the next "}}". An unterminated "{{" never
# matches and stays in the text verbatim.
PLACEHOLDER_PATTERN = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)


def placeholder_names(template: str) -> list[str]:
    """Distinct non-empty placeholder names in order of first appearance."""
    seen: dict[str, None] = {}
    for match in PLACEHOLDER_PATTERN.finditer(template):
        name = match.group(1).strip()
        if name:
            seen.setdefault(name, None)
    return list(seen)


def interpolate(template: str, values: Mapping[str, str]) -> tuple[str, list[str]]:
    """Replace known placeholders and collect unknown names.

    Returns:
        (rendered text, sorted distinct missing names)
    """
    missing: set[str] = set()

    def replace(match: re.Match[str]) -> str:
        name = match.group(1).strip()
        if not name:
            return match.group(0)
        if name in values:
            return values[name]
        missing.add(name)
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(replace, template), sorted(missing)


def frame(label: str, body: str, style: OutputStyle) -> str:
    """Apply the output style's framing to one rendered body."""
    if style == OutputStyle.LABELED:
        return f"--- {label} ---\n{body}"
    return body


class ContextRenderer:
    """Renders context nodes into segments.

    Stateless; one instance can be shared across threads.
    """

    def render(
        self,
        node: ContextNode,
        values: Mapping[str, str],
        output_style: OutputStyle = OutputStyle.LABELED,
    ) -> Segment:
        """Render one node.

        A name with no value is kept as its literal placeholder and listed
        in ``missing_variables``. A template that cannot be rendered at all
        is emitted verbatim, with a ``render_failed`` message and every
        placeholder it contains counted as missing.
        """
        messages: list[Message] = []
        try:
            body, missing = self._interpolate(node.content, values)
        except RenderError as exc:
            logger.warning("render.template_failed", node_id=node.id, error=str(exc))
            body = node.content
            missing = sorted(set(exc.names))
            messages.append(Message.error("render_failed", f"node {node.label} could not be rendered: {exc}", nodeId=node.id))

        if missing:
            messages.append(
                Message.warn(
                    "missing_variable",
                    f"missing variables: {', '.join(missing)}",
                    nodeId=node.id,
                    variables=missing,
                )
            )

        return Segment(
            node_id=node.id,
            label=node.label,
            kind=node.kind,
            template=node.content,
            rendered=frame(node.label, body, output_style),
            missing_variables=tuple(missing),
            messages=tuple(messages),
        )

    @staticmethod
    def _interpolate(template: str, values: Mapping[str, str]) -> tuple[str, list[str]]:
        try:
            return interpolate(template, values)
        except (TypeError, re.error) as exc:
            # Non-string values or pathological input; degrade to "all missing"
            raise RenderError(str(exc), names=placeholder_names(template)) from exc


def render_segment(
    node: ContextNode,
    values: Mapping[str, str],
    output_style: OutputStyle = OutputStyle.LABELED,
) -> Segment:
    """Convenience wrapper around ContextRenderer().render()."""
    return ContextRenderer().render(node, values, output_style)
