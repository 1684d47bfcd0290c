# tests/core/test_stores.py
"""Tests for project and dataset collaborators."""

import json
from pathlib import Path

import pytest

from contextgraph.contracts import (
    Dataset,
    DatasetNotFoundError,
    NodeKind,
    ProjectNotFoundError,
    RequestValidationError,
    VariableType,
)

PROJECT_DOC = {
    "id": "p1",
    "name": "Support bot",
    "state": {
        "nodes": [
            {"id": "n1", "data": {"label": "System", "type": "system_prompt", "content": "Be kind."}},
            {"id": "n2", "data": {"label": "Question", "type": "user_input", "content": "{{question}}"}},
            {"id": "n3", "data": {"label": "History", "type": "messages"}},
        ],
        "edges": [{"source": "n1", "target": "n2"}],
        "variables": [
            {"id": "v1", "name": "question", "type": "static", "value": "Hi?"},
            {"id": "v2", "name": "orders", "type": "dynamic", "value": "select 1", "resolver": "sql://shop"},
        ],
    },
}


class TestEditorNodeTypes:
    @pytest.mark.parametrize(
        ("node_type", "kind"),
        [
            ("system_prompt", NodeKind.SYSTEM),
            ("user_input", NodeKind.USER),
            ("messages", NodeKind.ASSISTANT),
            ("tools", NodeKind.TOOL),
            ("memory", NodeKind.MEMORY),
            ("retrieval", NodeKind.RETRIEVAL),
            ("text", NodeKind.TEXT),
            ("metadata", NodeKind.TEXT),
            ("assistant", NodeKind.ASSISTANT),
        ],
    )
    def test_known_types(self, node_type: str, kind: NodeKind) -> None:
        from contextgraph.core.stores import node_kind_from_editor_type

        assert node_kind_from_editor_type(node_type) == kind

    def test_unknown_type_renders_as_text(self) -> None:
        from contextgraph.core.stores import node_kind_from_editor_type

        assert node_kind_from_editor_type("banner") == NodeKind.TEXT


class TestProjectFromDocument:
    def test_editor_layout(self) -> None:
        from contextgraph.core.stores import project_from_document

        project = project_from_document(PROJECT_DOC)

        assert project.name == "Support bot"
        assert [n.kind for n in project.nodes] == [NodeKind.SYSTEM, NodeKind.USER, NodeKind.ASSISTANT]
        assert project.nodes[2].content == ""
        assert project.edges[0].target == "n2"
        assert project.variables[1].type == VariableType.DYNAMIC
        assert project.variables[1].resolver == "sql://shop"

    def test_metadata_node_accepted(self) -> None:
        from contextgraph.core.stores import project_from_document

        doc = {
            "id": "p2",
            "name": "With metadata",
            "state": {
                "nodes": [
                    {"id": "s", "data": {"label": "System", "type": "system_prompt", "content": "Hi"}},
                    {"id": "m", "data": {"label": "Meta", "type": "metadata", "content": "v2"}},
                ],
                "edges": [],
                "variables": [],
            },
        }

        project = project_from_document(doc)

        assert [n.kind for n in project.nodes] == [NodeKind.SYSTEM, NodeKind.TEXT]
        assert project.nodes[1].content == "v2"

    def test_top_level_list_rejected(self) -> None:
        from contextgraph.core.stores import project_from_document

        with pytest.raises(RequestValidationError, match="malformed"):
            project_from_document([PROJECT_DOC])

    def test_malformed_document_rejected(self) -> None:
        from contextgraph.core.stores import project_from_document

        with pytest.raises(RequestValidationError, match="malformed"):
            project_from_document({"id": "p", "state": {"nodes": [{"id": "n"}]}})


class TestJsonStores:
    def test_project_round_trip(self, tmp_path: Path) -> None:
        from contextgraph.core.stores import JsonProjectStore

        (tmp_path / "projects").mkdir()
        (tmp_path / "projects" / "p1.json").write_text(json.dumps(PROJECT_DOC), encoding="utf-8")

        project = JsonProjectStore(tmp_path).get_project("p1")

        assert project.id == "p1"
        assert len(project.nodes) == 3

    def test_corrupt_project_file_rejected(self, tmp_path: Path) -> None:
        from contextgraph.core.stores import JsonProjectStore

        (tmp_path / "projects").mkdir()
        (tmp_path / "projects" / "p1.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(RequestValidationError, match="malformed project 'p1'"):
            JsonProjectStore(tmp_path).get_project("p1")

    def test_missing_project(self, tmp_path: Path) -> None:
        from contextgraph.core.stores import JsonProjectStore

        with pytest.raises(ProjectNotFoundError):
            JsonProjectStore(tmp_path).get_project("p1")

    def test_path_escape_treated_as_missing(self, tmp_path: Path) -> None:
        from contextgraph.core.stores import JsonDatasetStore

        with pytest.raises(DatasetNotFoundError):
            JsonDatasetStore(tmp_path).get_dataset("../secrets")

    def test_dataset_rows_kept_as_received(self, tmp_path: Path) -> None:
        from contextgraph.core.stores import JsonDatasetStore

        (tmp_path / "datasets").mkdir()
        (tmp_path / "datasets" / "ds.json").write_text(
            json.dumps({"id": "ds", "name": "Questions", "rows": [{"q": "a"}, "not-an-object"]}),
            encoding="utf-8",
        )

        dataset = JsonDatasetStore(tmp_path).get_dataset("ds")

        assert dataset.row_count == 2
        assert dataset.rows[1] == "not-an-object"

    def test_dataset_rows_must_be_list(self, tmp_path: Path) -> None:
        from contextgraph.core.stores import JsonDatasetStore

        (tmp_path / "datasets").mkdir()
        (tmp_path / "datasets" / "ds.json").write_text(json.dumps({"rows": {"a": 1}}), encoding="utf-8")

        with pytest.raises(RequestValidationError, match="malformed dataset 'ds'"):
            JsonDatasetStore(tmp_path).get_dataset("ds")

    def test_dataset_file_holding_a_list_rejected(self, tmp_path: Path) -> None:
        from contextgraph.core.stores import JsonDatasetStore

        (tmp_path / "datasets").mkdir()
        (tmp_path / "datasets" / "ds.json").write_text(json.dumps([{"q": "a"}]), encoding="utf-8")

        with pytest.raises(RequestValidationError, match="malformed dataset"):
            JsonDatasetStore(tmp_path).get_dataset("ds")


class TestInMemoryStores:
    def test_unknown_dataset(self) -> None:
        from contextgraph.core.stores import InMemoryDatasetStore

        store = InMemoryDatasetStore([Dataset(id="ds", name="d", rows=({"x": 1},))])

        assert store.get_dataset("ds").row_count == 1
        with pytest.raises(DatasetNotFoundError):
            store.get_dataset("other")
