"""Per-scope document repository.

Markdown files are the source of truth. Structured metadata (id, tags,
document type, timestamps) lives in YAML frontmatter for Markdown documents
and in the ``metadata`` object of the envelope for JSON documents.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Any

import frontmatter

from membank.errors import ErrorKind, MemoryBankError
from membank.fs import FileSystem
from membank.models import (
    Document,
    DocumentPath,
    DocumentType,
    Scope,
    Tag,
    format_timestamp,
    new_document_id,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

JSON_DOCUMENT_SCHEMA = "memory_document_v2"

INDEX_FILENAME = "_index.json"
TAG_INDEX_FILENAME = "_global_index.json"
RESERVED_PATHS = frozenset({INDEX_FILENAME, TAG_INDEX_FILENAME, "tags/index.md", "tags/index.json"})

_LEGACY_TAGS_RE = re.compile(r"^\s*tags:\s*(.*)$", re.MULTILINE)


class DocumentRepository:
    """CRUD over the documents of one scope directory."""

    def __init__(self, fs: FileSystem, scope: Scope) -> None:
        self.fs = fs
        self.scope = scope

    # ── Read ──────────────────────────────────────────────────

    async def get(self, path: DocumentPath) -> Document:
        """Read one document. Raises NOT_FOUND when the file is absent."""
        if not await self.fs.file_exists(path.value):
            raise MemoryBankError.document_not_found(path.value, self.scope.name)
        try:
            raw = await self.fs.read_file(path.value)
        except FileNotFoundError as e:
            raise MemoryBankError.document_not_found(path.value, self.scope.name) from e
        except OSError as e:
            raise MemoryBankError.persistence_failed("read", path.value, e) from e
        return self._parse(path, raw)

    async def find(self, path: DocumentPath) -> Document | None:
        """Like ``get`` but returns None for a missing document."""
        try:
            return await self.get(path)
        except MemoryBankError as e:
            match e.kind:
                case ErrorKind.NOT_FOUND:
                    return None
                case _:
                    raise

    async def get_by_id(self, document_id: str) -> Document | None:
        """Linear scan for a document ID. Used when no index is available."""
        for doc in await self.list_documents():
            if doc.resolved_id == document_id:
                return doc
        return None

    async def exists(self, path: DocumentPath) -> bool:
        return await self.fs.file_exists(path.value)

    async def scope_exists(self) -> bool:
        return await self.fs.dir_exists()

    async def list_paths(self) -> list[DocumentPath]:
        """All document paths in this scope, excluding index side files."""
        paths = []
        for rel in await self.fs.list_files():
            if rel in RESERVED_PATHS or not rel.lower().endswith((".md", ".json")):
                continue
            try:
                paths.append(DocumentPath.create(rel))
            except MemoryBankError:
                logger.warning("Skipping unsupported file name in %s: %s", self.scope, rel)
        return paths

    async def list_documents(self) -> list[Document]:
        """Read every document; unreadable ones are logged and skipped."""
        documents = []
        for path in await self.list_paths():
            try:
                documents.append(await self.get(path))
            except MemoryBankError as e:
                logger.warning("Skipping unreadable document %s in %s: %s", path, self.scope, e.message)
        return documents

    # ── Write ─────────────────────────────────────────────────

    async def save(self, document: Document) -> Document:
        """Write a document, assigning its ID and refreshing lastModified."""
        if document.path.value in RESERVED_PATHS:
            raise MemoryBankError.invalid_path(document.path.value, "reserved for index files")

        existing = await self._existing(document.path)
        doc_id = document.id or (existing.resolved_id if existing else new_document_id())
        now = utcnow()

        if document.path.is_json:
            text = self._render_json(document, doc_id, now, existing)
        else:
            text = self._render_markdown(document, doc_id, now)

        try:
            await self.fs.write_file(document.path.value, text)
        except OSError as e:
            raise MemoryBankError.persistence_failed("write", document.path.value, e) from e

        saved = self._parse(document.path, text)
        saved.last_modified = now
        logger.info("Saved %s in %s", document.path, self.scope)
        return saved

    async def _existing(self, path: DocumentPath) -> Document | None:
        """Current version of a document about to be overwritten; corrupt files count as absent."""
        try:
            return await self.get(path)
        except MemoryBankError as e:
            match e.kind:
                case ErrorKind.NOT_FOUND | ErrorKind.VALIDATION:
                    return None
                case _:
                    raise

    async def delete(self, path: DocumentPath) -> None:
        if not await self.fs.file_exists(path.value):
            raise MemoryBankError.document_not_found(path.value, self.scope.name)
        try:
            await self.fs.delete_file(path.value)
        except FileNotFoundError as e:
            raise MemoryBankError.document_not_found(path.value, self.scope.name) from e
        except OSError as e:
            raise MemoryBankError.persistence_failed("delete", path.value, e) from e
        logger.info("Deleted %s from %s", path, self.scope)

    # ── Parsing ───────────────────────────────────────────────

    def _parse(self, path: DocumentPath, raw: str) -> Document:
        if path.is_json:
            return self._parse_json(path, raw)
        return self._parse_markdown(path, raw)

    def _parse_markdown(self, path: DocumentPath, raw: str) -> Document:
        meta, body = _split_frontmatter(raw)
        tags = meta.get("tags")
        if not tags:
            tags = _legacy_tags(body)
        return Document(
            path=path,
            content=body,
            tags=self._safe_tags(tags, path),
            document_type=DocumentType.parse(meta.get("documentType")),
            id=str(meta["id"]) if meta.get("id") else None,
            title=str(meta["title"]) if meta.get("title") else None,
            last_modified=parse_timestamp(meta.get("lastModified")),
        )

    def _parse_json(self, path: DocumentPath, raw: str) -> Document:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MemoryBankError.invalid_document(path.value, "content is not valid JSON") from e
        meta = data.get("metadata") if isinstance(data, dict) else None
        if not isinstance(meta, dict):
            meta = {}
        return Document(
            path=path,
            content=raw,
            tags=self._safe_tags(meta.get("tags"), path),
            document_type=DocumentType.parse(meta.get("documentType")),
            id=str(meta["id"]) if meta.get("id") else None,
            title=str(meta["title"]) if meta.get("title") else None,
            last_modified=parse_timestamp(meta.get("lastModified")),
        )

    def _safe_tags(self, raw: Any, path: DocumentPath) -> list[str]:
        """Tags read from disk: drop invalid ones instead of failing the read."""
        if not isinstance(raw, list):
            return []
        tags = set()
        for item in raw:
            try:
                tags.add(Tag.create(str(item)).value)
            except MemoryBankError:
                logger.warning("Ignoring invalid tag %r in %s", item, path)
        return sorted(tags)

    # ── Rendering ─────────────────────────────────────────────

    def _render_markdown(self, document: Document, doc_id: str, now: datetime) -> str:
        meta, body = _split_frontmatter(document.content)
        meta.update(
            {
                "id": doc_id,
                "documentType": document.resolved_type.value,
                "tags": list(document.tags),
                "lastModified": format_timestamp(now),
            }
        )
        if document.title:
            meta["title"] = document.title
        post = frontmatter.Post(body.strip("\n"), **meta)
        return frontmatter.dumps(post) + "\n"

    def _render_json(self, document: Document, doc_id: str, now: datetime, existing: Document | None) -> str:
        try:
            data = json.loads(document.content) if document.content.strip() else {}
        except json.JSONDecodeError as e:
            raise MemoryBankError.invalid_document(document.path.value, "content is not valid JSON") from e

        if isinstance(data, dict) and isinstance(data.get("metadata"), dict):
            envelope = data
        else:
            envelope = {"schema": JSON_DOCUMENT_SCHEMA, "metadata": {}, "content": data}
        envelope.setdefault("schema", JSON_DOCUMENT_SCHEMA)
        meta = envelope["metadata"]

        previous = _json_metadata(existing.content) if existing else {}
        meta["id"] = doc_id
        meta["title"] = document.title or meta.get("title") or document.path.stem
        meta["documentType"] = document.resolved_type.value
        meta["path"] = document.path.value
        meta["tags"] = list(document.tags)
        meta["lastModified"] = format_timestamp(now)
        meta["createdAt"] = previous.get("createdAt") or meta.get("createdAt") or format_timestamp(now)
        meta["version"] = int(previous.get("version", 0)) + 1 if existing else int(meta.get("version", 1))
        envelope.setdefault("content", {})
        return json.dumps(envelope, indent=2, ensure_ascii=False) + "\n"


def _split_frontmatter(raw: str) -> tuple[dict[str, Any], str]:
    """Split YAML frontmatter from the body. Text without frontmatter is kept verbatim."""
    if not raw.lstrip().startswith("---"):
        return {}, raw
    try:
        post = frontmatter.loads(raw)
    except Exception as e:
        logger.warning("Unparseable frontmatter, treating as plain text: %s", type(e).__name__)
        return {}, raw
    body = post.content
    return dict(post.metadata), (body + "\n") if body else ""


def _legacy_tags(body: str) -> list[str]:
    """Read a ``tags: #a #b`` line written by older tools."""
    match = _LEGACY_TAGS_RE.search(body)
    if not match:
        return []
    return [t[1:] for t in match.group(1).split() if t.startswith("#") and len(t) > 1]


def _json_metadata(raw: str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    meta = data.get("metadata") if isinstance(data, dict) else None
    return meta if isinstance(meta, dict) else {}
