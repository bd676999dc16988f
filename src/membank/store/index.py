"""Secondary document index, one per scope.

Each scope gets four lookup maps (by ID, path, document type and tag) held
in memory by an ``IndexStore`` and persisted to ``<scope>/_index.json``.
The files are a cache: a missing or corrupt index is rebuilt empty (or from
the repository by the caller) rather than treated as an error.

No locking is done here. Callers serialize mutations per scope and treat
``build_index`` as exclusive.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from membank.errors import ErrorKind, MemoryBankError
from membank.fs import FileSystem
from membank.models import (
    Document,
    DocumentPath,
    DocumentReference,
    DocumentType,
    Scope,
    Tag,
    derive_document_id,
    format_timestamp,
    parse_timestamp,
    utcnow,
)
from membank.store.repository import INDEX_FILENAME

logger = logging.getLogger(__name__)

INDEX_SCHEMA_VERSION = "document_index_v1"


@dataclass
class DocumentIndex:
    """Lookup maps for one scope. Every ID in the secondary maps is in ``id_index``."""

    branch_name: str
    schema: str = INDEX_SCHEMA_VERSION
    last_updated: datetime = field(default_factory=utcnow)
    id_index: dict[str, DocumentReference] = field(default_factory=dict)
    path_index: dict[str, str] = field(default_factory=dict)
    type_index: dict[str, list[str]] = field(default_factory=dict)
    tag_index: dict[str, list[str]] = field(default_factory=dict)

    def add(self, document: Document) -> DocumentReference:
        """Insert or replace a document's entries across all four maps."""
        ref = document.to_reference()
        if ref.id in self.id_index:
            self.remove(ref.id)
        previous_holder = self.path_index.get(ref.path)
        if previous_holder is not None and previous_holder != ref.id:
            self.remove(previous_holder)

        self.id_index[ref.id] = ref
        self.path_index[ref.path] = ref.id
        _append_unique(self.type_index.setdefault(ref.document_type.value, []), ref.id)
        for tag in document.tags:
            _append_unique(self.tag_index.setdefault(tag, []), ref.id)
        return ref

    def remove(self, document_id: str) -> bool:
        """Purge an ID from every map. Returns False if it was not indexed."""
        ref = self.id_index.pop(document_id, None)
        if ref is None:
            return False
        if self.path_index.get(ref.path) == document_id:
            del self.path_index[ref.path]
        _discard_from(self.type_index, document_id)
        _discard_from(self.tag_index, document_id)
        return True

    def resolve(self, ref: Document | DocumentPath | str) -> str | None:
        """Canonical ID for a document, an ID or a path."""
        if isinstance(ref, Document):
            return ref.resolved_id if ref.resolved_id in self.id_index else self.path_index.get(ref.path.value)
        if isinstance(ref, DocumentPath):
            return self.path_index.get(ref.value)
        if ref in self.id_index:
            return ref
        return self.path_index.get(ref)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": self.schema,
            "lastUpdated": format_timestamp(self.last_updated),
            "branchName": self.branch_name,
            "idIndex": {doc_id: ref.to_dict() for doc_id, ref in self.id_index.items()},
            "pathIndex": dict(self.path_index),
            "typeIndex": {k: list(v) for k, v in self.type_index.items()},
            "tagIndex": {k: list(v) for k, v in self.tag_index.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DocumentIndex:
        """Rebuild from the persisted form. Raises ValueError on a malformed structure."""
        if not isinstance(data, dict):
            raise ValueError("index root must be an object")
        maps = {}
        for key in ("idIndex", "pathIndex", "typeIndex", "tagIndex"):
            value = data.get(key, {})
            if not isinstance(value, dict):
                raise ValueError(f"{key} must be an object")
            maps[key] = value

        try:
            id_index = {str(k): DocumentReference.from_dict(v) for k, v in maps["idIndex"].items()}
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError("malformed idIndex entry") from e

        index = cls(
            branch_name=str(data.get("branchName", "")),
            schema=str(data.get("schema", INDEX_SCHEMA_VERSION)),
            last_updated=parse_timestamp(data.get("lastUpdated")) or utcnow(),
            id_index=id_index,
        )
        # Drop dangling IDs so the secondary maps never outlive idIndex
        index.path_index = {p: i for p, i in maps["pathIndex"].items() if i in id_index}
        index.type_index = _clean_lists(maps["typeIndex"], id_index)
        index.tag_index = _clean_lists(maps["tagIndex"], id_index)
        return index


def _append_unique(ids: list[str], doc_id: str) -> None:
    if doc_id not in ids:
        ids.append(doc_id)


def _discard_from(mapping: dict[str, list[str]], doc_id: str) -> None:
    for key in list(mapping):
        ids = [i for i in mapping[key] if i != doc_id]
        if ids:
            mapping[key] = ids
        else:
            del mapping[key]


def _clean_lists(raw: dict[str, Any], id_index: dict[str, DocumentReference]) -> dict[str, list[str]]:
    cleaned: dict[str, list[str]] = {}
    for key, ids in raw.items():
        if not isinstance(ids, list):
            raise ValueError(f"entry {key!r} must be a list")
        kept = list(dict.fromkeys(i for i in ids if i in id_index))
        if kept:
            cleaned[key] = kept
    return cleaned


class IndexStore:
    """Owns the in-memory indices, keyed by scope name."""

    def __init__(self) -> None:
        self._indices: dict[str, DocumentIndex] = {}

    def get(self, scope: Scope) -> DocumentIndex | None:
        return self._indices.get(scope.name)

    def put(self, scope: Scope, index: DocumentIndex) -> None:
        self._indices[scope.name] = index

    def discard(self, scope: Scope) -> None:
        self._indices.pop(scope.name, None)

    def clear(self) -> None:
        self._indices.clear()

    def __contains__(self, scope: Scope) -> bool:
        return scope.name in self._indices

    def __len__(self) -> int:
        return len(self._indices)


class IndexService:
    """Maintains and queries the per-scope document indices."""

    def __init__(
        self,
        fs: FileSystem,
        store: IndexStore | None = None,
        index_filename: str = INDEX_FILENAME,
    ) -> None:
        self.fs = fs
        self.store = store if store is not None else IndexStore()
        self.index_filename = index_filename

    def _index_file(self, scope: Scope) -> str:
        return f"{scope.dir_name}/{self.index_filename}"

    # ── Lifecycle ─────────────────────────────────────────────

    async def initialize_index(self, scope: Scope | str) -> None:
        """Load the persisted index, or start (and persist) an empty one.

        A resident index is left untouched.
        """
        scope = Scope.parse(scope)
        if scope in self.store:
            return
        try:
            await self.load_index(scope)
        except MemoryBankError as e:
            logger.info("Starting empty index for %s (%s)", scope, e.message)
            self.store.put(scope, DocumentIndex(branch_name=scope.name))
            await self._persist(scope)

    async def build_index(self, scope: Scope | str, documents: Iterable[Document]) -> None:
        """Discard the current index for ``scope`` and rebuild it from ``documents``.

        When two files carry the same ID, the later one is indexed under the
        ID derived from its path so neither drops out of the index.
        """
        scope = Scope.parse(scope)
        index = DocumentIndex(branch_name=scope.name)
        count = 0
        for document in documents:
            holder = index.id_index.get(document.resolved_id)
            if holder is not None and holder.path != document.path.value:
                logger.warning(
                    "Duplicate ID %s in %s: %s already holds it, indexing %s by path",
                    document.resolved_id, scope, holder.path, document.path,
                )
                document = dataclasses.replace(document, id=derive_document_id(document.path))
            index.add(document)
            count += 1
        self.store.put(scope, index)
        logger.info("Rebuilt index for %s (%d documents)", scope, count)
        await self._persist(scope)

    async def load_index(self, scope: Scope | str) -> DocumentIndex:
        """Read ``_index.json``. Missing or corrupt files raise PERSISTENCE."""
        scope = Scope.parse(scope)
        name = self._index_file(scope)
        if not await self.fs.file_exists(name):
            raise MemoryBankError.persistence_failed("load index for", scope.name, FileNotFoundError())
        try:
            data = json.loads(await self.fs.read_file(name))
            index = DocumentIndex.from_dict(data)
        except (OSError, ValueError) as e:
            # json.JSONDecodeError is a ValueError
            raise MemoryBankError.persistence_failed("load index for", scope.name, e) from e
        index.branch_name = scope.name
        self.store.put(scope, index)
        logger.debug("Loaded index for %s (%d documents)", scope, len(index.id_index))
        return index

    async def save_index(self, scope: Scope | str) -> None:
        """Write the resident index for ``scope`` to disk. Raises PERSISTENCE on failure."""
        scope = Scope.parse(scope)
        index = self.store.get(scope)
        if index is None:
            raise MemoryBankError.persistence_failed("save index for", scope.name, LookupError())
        text = json.dumps(index.to_dict(), indent=2, sort_keys=True, ensure_ascii=False) + "\n"
        try:
            await self.fs.write_file(self._index_file(scope), text)
        except OSError as e:
            raise MemoryBankError.persistence_failed("save index for", scope.name, e) from e

    async def has_index(self, scope: Scope | str) -> bool:
        """True if an index is resident or ``_index.json`` loads cleanly."""
        scope = Scope.parse(scope)
        if scope in self.store:
            return True
        try:
            await self.load_index(scope)
        except MemoryBankError as e:
            match e.kind:
                case ErrorKind.PERSISTENCE:
                    logger.debug("No usable index for %s: %s", scope, e.message)
                    return False
                case _:
                    raise
        return True

    def close(self) -> None:
        self.store.clear()

    async def _persist(self, scope: Scope) -> None:
        """Persist after a mutation. Memory is already current, so failures only warn."""
        try:
            await self.save_index(scope)
        except MemoryBankError as e:
            logger.warning("Index for %s not persisted: %s", scope, e.message)

    async def _get_or_create(self, scope: Scope) -> DocumentIndex:
        index = self.store.get(scope)
        if index is not None:
            return index
        try:
            return await self.load_index(scope)
        except MemoryBankError:
            logger.debug("No usable index for %s, using an empty one", scope)
            index = DocumentIndex(branch_name=scope.name)
            self.store.put(scope, index)
            return index

    # ── Mutations ─────────────────────────────────────────────

    async def add_to_index(self, scope: Scope | str, document: Document) -> None:
        scope = Scope.parse(scope)
        index = await self._get_or_create(scope)
        index.add(document)
        index.last_updated = utcnow()
        await self._persist(scope)

    async def remove_from_index(self, scope: Scope | str, ref: Document | DocumentPath | str) -> None:
        """Remove by document, ID or path. Unknown references are ignored."""
        scope = Scope.parse(scope)
        index = await self._get_or_create(scope)
        doc_id = index.resolve(ref)
        if doc_id is None or not index.remove(doc_id):
            return
        index.last_updated = utcnow()
        await self._persist(scope)

    # ── Queries ───────────────────────────────────────────────

    async def find_by_id(self, scope: Scope | str, document_id: str) -> DocumentReference | None:
        index = await self._get_or_create(Scope.parse(scope))
        ref = index.id_index.get(document_id)
        return dataclasses.replace(ref) if ref else None

    async def find_by_path(self, scope: Scope | str, path: DocumentPath | str) -> DocumentReference | None:
        index = await self._get_or_create(Scope.parse(scope))
        key = path.value if isinstance(path, DocumentPath) else path
        doc_id = index.path_index.get(key)
        if doc_id is None or doc_id not in index.id_index:
            return None
        return dataclasses.replace(index.id_index[doc_id])

    async def find_by_tags(
        self, scope: Scope | str, tags: Iterable[str | Tag], match_all: bool = False
    ) -> list[DocumentReference]:
        """OR (default) or AND query over the tag map."""
        index = await self._get_or_create(Scope.parse(scope))
        values = [t.value if isinstance(t, Tag) else Tag.create(t).value for t in tags]
        if not values:
            return []

        if match_all:
            matching = dict.fromkeys(index.tag_index.get(values[0], []))
            for tag in values[1:]:
                if not matching:
                    break
                tagged = set(index.tag_index.get(tag, []))
                matching = {doc_id: None for doc_id in matching if doc_id in tagged}
        else:
            matching = {}
            for tag in values:
                matching.update(dict.fromkeys(index.tag_index.get(tag, [])))

        return [dataclasses.replace(index.id_index[i]) for i in matching if i in index.id_index]

    async def find_by_type(self, scope: Scope | str, document_type: DocumentType | str) -> list[DocumentReference]:
        index = await self._get_or_create(Scope.parse(scope))
        doc_type = DocumentType.parse(document_type)
        if doc_type is None:
            raise MemoryBankError.invalid_argument("documentType", str(document_type))
        ids = index.type_index.get(doc_type.value, [])
        return [dataclasses.replace(index.id_index[i]) for i in ids if i in index.id_index]

    async def list_all(self, scope: Scope | str) -> list[DocumentReference]:
        index = await self._get_or_create(Scope.parse(scope))
        return [dataclasses.replace(ref) for ref in index.id_index.values()]
