"""Request schemas: the only place caller-supplied payloads are validated.

Payloads arrive as JSON-shaped dicts (camelCase keys). Pydantic validates
them at this boundary; a failure raises RequestValidationError before any
rendering begins. Validated payloads are converted into the frozen
contracts used by the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from contextgraph.contracts.enums import NodeKind, OutputStyle, VariableType
from contextgraph.contracts.errors import RequestValidationError
from contextgraph.contracts.graph import ContextEdge, ContextNode, Variable

_CAMEL = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class NodeSpec(BaseModel):
    model_config = _CAMEL

    id: str = Field(min_length=1)
    label: str
    kind: NodeKind = NodeKind.TEXT
    content: str = ""


class EdgeSpec(BaseModel):
    model_config = _CAMEL

    source: str
    target: str


class VariableSpec(BaseModel):
    model_config = _CAMEL

    id: str
    name: str = Field(min_length=1)
    type: VariableType
    value: str = ""
    resolver: str | None = None


class RenderRequestSpec(BaseModel):
    """Preview/execute request payload."""

    model_config = _CAMEL

    nodes: list[NodeSpec] = Field(default_factory=list)
    edges: list[EdgeSpec] = Field(default_factory=list)
    variables: list[VariableSpec] = Field(default_factory=list)
    output_style: OutputStyle = Field(default=OutputStyle.LABELED, alias="outputStyle")


class ReplayRequestSpec(BaseModel):
    """Dataset replay request payload."""

    model_config = _CAMEL

    dataset_id: str = Field(min_length=1, alias="datasetId")
    project_id: str = Field(min_length=1, alias="projectId")
    limit: int | None = Field(default=None, ge=0)
    offset: int | None = Field(default=None, ge=0)


@dataclass(frozen=True)
class RenderRequest:
    """Immutable render request passed into the evaluator.

    Replaces any shared editing state: everything a render needs is here.
    """

    nodes: tuple[ContextNode, ...]
    edges: tuple[ContextEdge, ...] = ()
    variables: tuple[Variable, ...] = ()
    output_style: OutputStyle = OutputStyle.LABELED


@dataclass(frozen=True)
class ReplayRequest:
    dataset_id: str
    project_id: str
    limit: int | None = None
    offset: int | None = None


def format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def parse_render_request(payload: dict[str, Any]) -> RenderRequest:
    """Validate a preview/execute payload and convert it to a RenderRequest.

    Raises:
        RequestValidationError: If the payload does not match the schema
    """
    try:
        spec = RenderRequestSpec.model_validate(payload)
    except ValidationError as exc:
        raise RequestValidationError(f"invalid render request: {format_validation_error(exc)}") from exc

    return RenderRequest(
        nodes=tuple(ContextNode(id=n.id, label=n.label, kind=n.kind, content=n.content) for n in spec.nodes),
        edges=tuple(ContextEdge(source=e.source, target=e.target) for e in spec.edges),
        variables=tuple(
            Variable(id=v.id, name=v.name, type=v.type, value=v.value, resolver=v.resolver) for v in spec.variables
        ),
        output_style=spec.output_style,
    )


def parse_replay_request(payload: dict[str, Any]) -> ReplayRequest:
    """Validate a replay payload.

    Raises:
        RequestValidationError: If the payload does not match the schema
    """
    try:
        spec = ReplayRequestSpec.model_validate(payload)
    except ValidationError as exc:
        raise RequestValidationError(f"invalid replay request: {format_validation_error(exc)}") from exc
    return ReplayRequest(
        dataset_id=spec.dataset_id,
        project_id=spec.project_id,
        limit=spec.limit,
        offset=spec.offset,
    )
