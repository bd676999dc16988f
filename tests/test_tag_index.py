"""Tests for the legacy tag index export."""

from __future__ import annotations

import json

import pytest
from pathlib import Path

from membank.fs import FileSystem
from membank.models import Document
from membank.store.tag_index import TAG_INDEX_SCHEMA, TagIndexStore


@pytest.fixture
def store(tmp_path: Path) -> TagIndexStore:
    return TagIndexStore(FileSystem(tmp_path))


@pytest.fixture
def docs() -> list[Document]:
    return [
        Document.create("b.md", "b", tags=["api"]),
        Document.create("a.md", "a", tags=["api", "design"]),
        Document.create("c.md", "c", tags=["design"]),
    ]


class TestGenerate:
    @pytest.mark.asyncio
    async def test_writes_file(self, store: TagIndexStore, docs, tmp_path: Path):
        await store.generate(docs)
        data = json.loads((tmp_path / "_global_index.json").read_text(encoding="utf-8"))
        assert data["schema"] == TAG_INDEX_SCHEMA
        assert data["metadata"]["documentCount"] == 3
        assert data["metadata"]["context"] == "global"
        assert data["index"] == {"api": ["a.md", "b.md"], "design": ["a.md", "c.md"]}

    @pytest.mark.asyncio
    async def test_regenerate_replaces(self, store: TagIndexStore, docs):
        await store.generate(docs)
        await store.generate(docs[:1])
        data = await store.load()
        assert data["index"] == {"api": ["b.md"]}


class TestQuery:
    @pytest.mark.asyncio
    async def test_or_and(self, store: TagIndexStore, docs):
        await store.generate(docs)
        assert sorted(await store.find_by_tags(["api", "design"])) == ["a.md", "b.md", "c.md"]
        assert await store.find_by_tags(["api", "design"], match_all=True) == ["a.md"]
        assert await store.find_by_tags([]) == []

    @pytest.mark.asyncio
    async def test_missing_or_corrupt_file(self, store: TagIndexStore, tmp_path: Path):
        assert await store.load() is None
        assert await store.find_by_tags(["api"]) == []
        (tmp_path / "_global_index.json").write_text("[1, 2]", encoding="utf-8")
        assert await store.load() is None
