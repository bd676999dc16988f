"""Legacy tag index file (``_global_index.json``).

A flat ``tag -> [path, ...]`` export derived from the documents of a scope.
The per-scope ``IndexService`` is the canonical index; this file is
regenerated from repository documents for consumers that still read it.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from membank.errors import MemoryBankError
from membank.fs import FileSystem
from membank.models import Document, Tag, format_timestamp, utcnow
from membank.store.repository import TAG_INDEX_FILENAME

logger = logging.getLogger(__name__)

TAG_INDEX_SCHEMA = "tag_index_v1"


class TagIndexStore:
    """Reads and writes ``<root>/_global_index.json``."""

    def __init__(self, fs: FileSystem, filename: str = TAG_INDEX_FILENAME) -> None:
        self.fs = fs
        self.filename = filename

    async def generate(
        self, documents: Iterable[Document], context: str = "global", full_rebuild: bool = True
    ) -> dict[str, Any]:
        """Build the tag index from ``documents`` and persist it."""
        docs = list(documents)
        index: dict[str, list[str]] = {}
        for doc in sorted(docs, key=lambda d: d.path.value):
            for tag in doc.tags:
                paths = index.setdefault(tag, [])
                if doc.path.value not in paths:
                    paths.append(doc.path.value)

        data = {
            "schema": TAG_INDEX_SCHEMA,
            "metadata": {
                "updatedAt": format_timestamp(utcnow()),
                "documentCount": len(docs),
                "fullRebuild": full_rebuild,
                "context": context,
            },
            "index": dict(sorted(index.items())),
        }
        try:
            await self.fs.write_file(self.filename, json.dumps(data, indent=2, ensure_ascii=False) + "\n")
        except OSError as e:
            raise MemoryBankError.persistence_failed("save tag index for", context, e) from e
        logger.info("Tag index for %s regenerated (%d tags, %d documents)", context, len(index), len(docs))
        return data

    async def load(self) -> dict[str, Any] | None:
        """Parsed tag index, or None when the file is missing or unusable."""
        if not await self.fs.file_exists(self.filename):
            return None
        try:
            data = json.loads(await self.fs.read_file(self.filename))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable tag index: %s", type(e).__name__)
            return None
        if not isinstance(data, dict) or not isinstance(data.get("index"), dict):
            logger.warning("Ignoring tag index with unexpected structure")
            return None
        return data

    async def find_by_tags(self, tags: Iterable[str | Tag], match_all: bool = False) -> list[str]:
        """Document paths matching any (or all) of ``tags``."""
        values = [t.value if isinstance(t, Tag) else Tag.create(t).value for t in tags]
        data = await self.load()
        if not values or data is None:
            return []
        index = data["index"]

        if match_all:
            matching = dict.fromkeys(index.get(values[0], []))
            for tag in values[1:]:
                if not matching:
                    break
                tagged = set(index.get(tag, []))
                matching = {p: None for p in matching if p in tagged}
        else:
            matching = {}
            for tag in values:
                matching.update(dict.fromkeys(index.get(tag, [])))
        return list(matching)
