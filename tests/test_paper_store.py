from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

from core.models import AutoTag, Paper, StudyType, TagSource
from core.utils import read_json, write_json
from stores.paper_store import InMemoryPaperStore, JsonPaperStore
from stores.supabase_store import SupabasePaperStore


def test_in_memory_store_crud(sample_papers):
    store = InMemoryPaperStore(sample_papers)
    assert store.get("p2").title == "Sleep architecture in chronic fatigue"
    assert store.get("missing") is None
    assert [p.id for p in store.bulk_get(["p3", "missing", "p1"])] == ["p3", "p1"]

    updated = store.update("p2", {"tags": ["Sleep"]})
    assert updated.tags == ["Sleep"]
    assert store.get("p2").tags == ["Sleep"]
    # Records handed out earlier are never mutated.
    assert sample_papers[1].tags == []

    with pytest.raises(KeyError):
        store.update("missing", {"tags": []})
    with pytest.raises(TypeError):
        store.update("p1", {"not_a_field": 1})


def test_json_store_round_trips_updates(tmp_path, sample_papers):
    path = tmp_path / "papers.json"
    assert JsonPaperStore(path).list() == []

    write_json(path, {"papers": [p.to_dict() for p in sample_papers]})
    store = JsonPaperStore(path)
    tag = AutoTag(tag="cytokines", confidence=0.7, source=TagSource.HEURISTIC, is_new=True)
    store.update("p3", {"tags": ["cytokines"], "auto_tags": [tag]})

    reloaded = JsonPaperStore(path)
    paper = reloaded.get("p3")
    assert paper.tags == ["cytokines"]
    assert paper.auto_tags == [tag]
    assert paper.sections == sample_papers[2].sections
    assert reloaded.get("p2").is_preprint is True
    assert read_json(path)["papers"][0]["id"] == "p1"


def test_paper_from_dict_accepts_camel_case_and_author_objects():
    paper = Paper.from_dict(
        {
            "id": 7,
            "title": "T",
            "authors": [{"name": "A. Smith"}, "B. Jones", {"name": ""}],
            "publicationDate": "2020-02-02",
            "fullText": "Results\nbody",
            "studyType": "meta-analysis",
        }
    )
    assert paper.id == "7"
    assert paper.authors == ["A. Smith", "B. Jones"]
    assert paper.year == "2020"
    assert paper.full_text == "Results\nbody"
    assert paper.study_type == StudyType.META_ANALYSIS


class FakeQuery:
    def __init__(self, table: "FakeTable") -> None:
        self.table = table
        self.filters: List[tuple] = []
        self.payload: Any = None
        self.window = None

    def select(self, _cols: str) -> "FakeQuery":
        return self

    def update(self, payload: Dict[str, Any]) -> "FakeQuery":
        self.payload = payload
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(("eq", column, value))
        return self

    def in_(self, column: str, values: List[Any]) -> "FakeQuery":
        self.filters.append(("in", column, values))
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        return self

    def limit(self, n: int) -> "FakeQuery":
        self.window = (0, n - 1)
        return self

    def range(self, start: int, end: int) -> "FakeQuery":
        self.window = (start, end)
        return self

    def _matches(self, row: Dict[str, Any]) -> bool:
        for kind, column, value in self.filters:
            if kind == "eq" and row.get(column) != value:
                return False
            if kind == "in" and row.get(column) not in value:
                return False
        return True

    def execute(self) -> SimpleNamespace:
        rows = sorted((r for r in self.table.rows if self._matches(r)), key=lambda r: r["id"])
        if self.payload is not None:
            for row in rows:
                row.update(self.payload)
            self.table.updates.append(self.payload)
        if self.window is not None:
            rows = rows[self.window[0] : self.window[1] + 1]
        return SimpleNamespace(data=[dict(r) for r in rows])


class FakeTable:
    def __init__(self, rows: List[Dict[str, Any]]) -> None:
        self.rows = rows
        self.updates: List[Dict[str, Any]] = []


class FakeSupabase:
    def __init__(self, rows: List[Dict[str, Any]]) -> None:
        self.tables = {"papers": FakeTable(rows)}

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self.tables[name])


def test_supabase_store(sample_papers):
    client = FakeSupabase([p.to_dict() for p in sample_papers])
    store = SupabasePaperStore(client, page_size=2)
    assert [p.id for p in store.list()] == ["p1", "p2", "p3"]
    assert store.get("p2").is_preprint
    assert store.get("nope") is None
    assert [p.id for p in store.bulk_get(["p3", "p1", "p3"])] == ["p3", "p1"]
    assert store.bulk_get([]) == []

    tag = AutoTag(tag="Sleep", confidence=0.6, source=TagSource.MODEL, is_new=False)
    updated = store.update("p2", {"tags": ["Sleep"], "auto_tags": [tag]})
    assert updated.tags == ["Sleep"]
    assert client.tables["papers"].updates == [{"tags": ["Sleep"], "auto_tags": [tag.to_dict()]}]
    assert store.get("p2").auto_tags == [tag]

    with pytest.raises(KeyError):
        store.update("nope", {"tags": []})
