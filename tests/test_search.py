"""Tests for tag search across a scope."""

from __future__ import annotations

import json

import pytest
from pathlib import Path

from membank.fs import FileSystem
from membank.models import Document, Scope
from membank.store.index import IndexService
from membank.store.repository import DocumentRepository
from membank.store.search import TagSearchEngine


class _Setup:
    def __init__(self, root: Path):
        self.root = root
        self.index = IndexService(FileSystem(root))
        self.repos: dict[Scope, DocumentRepository] = {}
        self.engine = TagSearchEngine(self.index, self.repository)

    def repository(self, scope: Scope) -> DocumentRepository:
        if scope not in self.repos:
            self.repos[scope] = DocumentRepository(FileSystem(self.root / scope.dir_name), scope)
        return self.repos[scope]

    async def save(self, scope: str, document: Document) -> Document:
        scope = Scope.parse(scope)
        saved = await self.repository(scope).save(document)
        await self.index.add_to_index(scope, saved)
        return saved


@pytest.fixture
def setup(tmp_path: Path) -> _Setup:
    return _Setup(tmp_path)


class TestSearch:
    @pytest.mark.asyncio
    async def test_and_or(self, setup: _Setup):
        await setup.save("global", Document.create("a.json", "{}", tags=["x", "y"]))
        await setup.save("global", Document.create("b.json", "{}", tags=["y"]))

        result = await setup.engine.search("global", ["x", "y"], match_all=True)
        assert [d.path.value for d in result.documents] == ["a.json"]

        result = await setup.engine.search("global", ["x", "y"])
        assert sorted(d.path.value for d in result.documents) == ["a.json", "b.json"]
        assert result.count == 2
        assert result.searched_tags == ["x", "y"]
        assert result.location == "global"

    @pytest.mark.asyncio
    async def test_deleted_file_is_skipped(self, setup: _Setup):
        await setup.save("global", Document.create("a.md", "a", tags=["t"]))
        await setup.save("global", Document.create("b.md", "b", tags=["t"]))
        (setup.root / "global" / "a.md").unlink()

        result = await setup.engine.search("global", ["t"])
        assert [d.path.value for d in result.documents] == ["b.md"]

    @pytest.mark.asyncio
    async def test_scan_fallback_builds_index(self, setup: _Setup):
        branch = setup.root / "feature-login"
        branch.mkdir()
        (branch / "notes.md").write_text("---\ntags: [auth]\n---\n# Notes\n", encoding="utf-8")
        (branch / "other.md").write_text("# Other\n", encoding="utf-8")

        result = await setup.engine.search("feature/login", ["#Auth"])
        assert [d.path.value for d in result.documents] == ["notes.md"]
        assert (branch / "_index.json").is_file()
        assert await setup.index.has_index("feature/login")

    @pytest.mark.asyncio
    async def test_corrupt_index_falls_back_to_scan(self, setup: _Setup):
        await setup.save("feature/x", Document.create("a.md", "# A\n", tags=["x"]))
        index_file = setup.root / "feature-x" / "_index.json"
        index_file.write_text("{not json", encoding="utf-8")

        fresh = _Setup(setup.root)
        result = await fresh.engine.search("feature/x", ["x"])
        assert [d.path.value for d in result.documents] == ["a.md"]
        # the scan rebuilt a readable index
        assert "idIndex" in json.loads(index_file.read_text(encoding="utf-8"))

    @pytest.mark.asyncio
    async def test_no_tags(self, setup: _Setup):
        result = await setup.engine.search("global", [])
        assert result.documents == []
        assert result.count == 0
