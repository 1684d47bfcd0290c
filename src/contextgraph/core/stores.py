# src/contextgraph/core/stores.py
"""Project and dataset collaborators used by replay.

Persistence of projects and datasets belongs to an external system. The
engine only needs read access, expressed as the ProjectStore and
DatasetStore protocols. Two implementations of each are provided:

- InMemory*: for embedding and tests
- Json*: reads ``<data_dir>/projects/<id>.json`` and
  ``<data_dir>/datasets/<id>.json`` as written by the editor

Stored documents are validated with the Stored*Doc models; anything that
does not match (including a file that is not JSON) is a
RequestValidationError.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from contextgraph.contracts import (
    ContextEdge,
    ContextNode,
    Dataset,
    DatasetNotFoundError,
    NodeKind,
    ProjectNotFoundError,
    ProjectSnapshot,
    RequestValidationError,
    Variable,
    VariableType,
)
from contextgraph.contracts.requests import format_validation_error
from contextgraph.core.logging import get_logger

logger = get_logger(__name__)

# Node types as stored by the editor. NodeKind values are accepted as-is;
# anything else renders as plain text.
EDITOR_NODE_TYPES: dict[str, NodeKind] = {
    "system_prompt": NodeKind.SYSTEM,
    "user_input": NodeKind.USER,
    "messages": NodeKind.ASSISTANT,
    "tools": NodeKind.TOOL,
    "memory": NodeKind.MEMORY,
    "retrieval": NodeKind.RETRIEVAL,
    "metadata": NodeKind.TEXT,
    "text": NodeKind.TEXT,
}


def node_kind_from_editor_type(node_type: str) -> NodeKind:
    """Map a stored editor node type onto NodeKind.

    Unrecognised types map to NodeKind.TEXT (logged), so one unfamiliar
    node never makes a whole project unusable.
    """
    if node_type in EDITOR_NODE_TYPES:
        return EDITOR_NODE_TYPES[node_type]
    try:
        return NodeKind(node_type)
    except ValueError:
        logger.warning("store.unknown_node_type", node_type=node_type, mapped_to=NodeKind.TEXT.value)
        return NodeKind.TEXT


_STORED = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class StoredNodeData(BaseModel):
    model_config = _STORED

    label: str
    node_type: str = Field(alias="type")
    content: str = ""


class StoredNode(BaseModel):
    model_config = _STORED

    id: str = Field(min_length=1)
    data: StoredNodeData


class StoredEdge(BaseModel):
    model_config = _STORED

    source: str
    target: str


class StoredVariable(BaseModel):
    model_config = _STORED

    id: str
    name: str = Field(min_length=1)
    type: VariableType
    value: str = ""
    resolver: str | None = None


class StoredProjectState(BaseModel):
    model_config = _STORED

    nodes: list[StoredNode] = Field(default_factory=list)
    edges: list[StoredEdge] = Field(default_factory=list)
    variables: list[StoredVariable] = Field(default_factory=list)


class StoredProjectDoc(BaseModel):
    """Editor project document: ``{id, name, state: {nodes, edges, variables}}``."""

    model_config = _STORED

    id: str = Field(min_length=1)
    name: str | None = None
    state: StoredProjectState

    def to_snapshot(self) -> ProjectSnapshot:
        return ProjectSnapshot(
            id=self.id,
            name=self.name or self.id,
            nodes=tuple(
                ContextNode(
                    id=n.id,
                    label=n.data.label,
                    kind=node_kind_from_editor_type(n.data.node_type),
                    content=n.data.content,
                )
                for n in self.state.nodes
            ),
            edges=tuple(ContextEdge(source=e.source, target=e.target) for e in self.state.edges),
            variables=tuple(
                Variable(id=v.id, name=v.name, type=v.type, value=v.value, resolver=v.resolver)
                for v in self.state.variables
            ),
        )


class StoredDatasetDoc(BaseModel):
    """Dataset document: ``{id?, name?, rows: [...]}``. Rows are kept as received."""

    model_config = _STORED

    id: str | None = None
    name: str | None = None
    rows: list[Any] = Field(default_factory=list)

    def to_dataset(self, dataset_id: str) -> Dataset:
        return Dataset(id=self.id or dataset_id, name=self.name or dataset_id, rows=tuple(self.rows))


def project_from_document(doc: Any) -> ProjectSnapshot:
    """Build a ProjectSnapshot from an already-decoded project document.

    Raises:
        RequestValidationError: If the document is malformed
    """
    try:
        return StoredProjectDoc.model_validate(doc).to_snapshot()
    except ValidationError as exc:
        raise RequestValidationError(f"malformed project document: {format_validation_error(exc)}") from exc


class ProjectStore(Protocol):
    """Read access to stored projects."""

    def get_project(self, project_id: str) -> ProjectSnapshot:
        """Raises ProjectNotFoundError if the project does not exist."""
        ...


class DatasetStore(Protocol):
    """Read access to stored datasets."""

    def get_dataset(self, dataset_id: str) -> Dataset:
        """Raises DatasetNotFoundError if the dataset does not exist."""
        ...


class InMemoryProjectStore:
    def __init__(self, projects: list[ProjectSnapshot] | None = None) -> None:
        self._projects = {p.id: p for p in projects or []}

    def add(self, project: ProjectSnapshot) -> None:
        self._projects[project.id] = project

    def get_project(self, project_id: str) -> ProjectSnapshot:
        if project_id not in self._projects:
            raise ProjectNotFoundError(project_id)
        return self._projects[project_id]


class InMemoryDatasetStore:
    def __init__(self, datasets: list[Dataset] | None = None) -> None:
        self._datasets = {d.id: d for d in datasets or []}

    def add(self, dataset: Dataset) -> None:
        self._datasets[dataset.id] = dataset

    def get_dataset(self, dataset_id: str) -> Dataset:
        if dataset_id not in self._datasets:
            raise DatasetNotFoundError(dataset_id)
        return self._datasets[dataset_id]


def _safe_file(base: Path, record_id: str) -> Path | None:
    """Path of ``<base>/<record_id>.json``, or None for ids that escape base."""
    if not record_id or "/" in record_id or "\\" in record_id or record_id in {".", ".."}:
        return None
    return base / f"{record_id}.json"



class JsonProjectStore:
    """Projects stored as ``<data_dir>/projects/<id>.json``."""

    def __init__(self, data_dir: Path) -> None:
        self._base = Path(data_dir) / "projects"

    def get_project(self, project_id: str) -> ProjectSnapshot:
        path = _safe_file(self._base, project_id)
        if path is None or not path.is_file():
            raise ProjectNotFoundError(project_id)
        try:
            doc = StoredProjectDoc.model_validate_json(path.read_bytes())
        except ValidationError as exc:
            raise RequestValidationError(f"malformed project {project_id!r}: {format_validation_error(exc)}") from exc
        return doc.to_snapshot()


class JsonDatasetStore:
    """Datasets stored as ``<data_dir>/datasets/<id>.json``."""

    def __init__(self, data_dir: Path) -> None:
        self._base = Path(data_dir) / "datasets"

    def get_dataset(self, dataset_id: str) -> Dataset:
        path = _safe_file(self._base, dataset_id)
        if path is None or not path.is_file():
            raise DatasetNotFoundError(dataset_id)
        try:
            doc = StoredDatasetDoc.model_validate_json(path.read_bytes())
        except ValidationError as exc:
            raise RequestValidationError(f"malformed dataset {dataset_id!r}: {format_validation_error(exc)}") from exc
        return doc.to_dataset(dataset_id)
