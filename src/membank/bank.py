"""MemoryBank: the facade tying repositories, indices and core files together.

Every write goes repository first, then index. The in-memory index is
current as soon as a call returns; its disk copy is best effort. Writes to
the global scope also regenerate the legacy ``_global_index.json`` export.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

from membank.config import MembankConfig
from membank.errors import ErrorKind, MemoryBankError
from membank.fs import FileSystem
from membank.markdown.core_files import (
    CORE_FILE_PATHS,
    ActiveContext,
    BranchContext,
    CoreRecord,
    Progress,
    SystemPatterns,
    core_file_path,
    detect_locale,
    empty_record,
    from_markdown,
    headers_for,
    render_template,
    to_markdown,
)
from membank.markdown.sections import EditMode, SectionEdit, apply_sections
from membank.models import (
    GLOBAL_SCOPE,
    Document,
    DocumentPath,
    DocumentReference,
    DocumentType,
    Scope,
    format_timestamp,
    looks_like_path,
    utcnow,
    validate_branch_name,
)
from membank.store.index import IndexService
from membank.store.json_patch import Operations, apply_patch, content_of, diff_content
from membank.store.repository import INDEX_FILENAME, DocumentRepository
from membank.store.search import SearchResult, TagSearchEngine
from membank.store.tag_index import TagIndexStore

logger = logging.getLogger(__name__)

CORE_FILE_TAGS: dict[DocumentType, list[str]] = {
    DocumentType.BRANCH_CONTEXT: ["core", "branch-context"],
    DocumentType.ACTIVE_CONTEXT: ["core", "active-context"],
    DocumentType.PROGRESS: ["core", "progress"],
    DocumentType.SYSTEM_PATTERNS: ["core", "system-patterns"],
}


@dataclass
class CoreFilesResult:
    """Parsed core files of one branch. Unreadable files become placeholders."""

    branch: str
    branch_context: BranchContext
    active_context: ActiveContext
    progress: Progress
    system_patterns: SystemPatterns
    missing: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ContextResult:
    """Everything an agent reads before working on a branch."""

    branch: str
    branch_memory: dict[str, Any] = field(default_factory=dict)
    global_memory: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class MemoryBank:
    """Document storage for the global scope and every branch under ``root``."""

    def __init__(self, root: Path | str, language: str = "en", index_filename: str = INDEX_FILENAME) -> None:
        headers_for(language)
        self.root = Path(root)
        self.language = language
        self.fs = FileSystem(self.root)
        self.index = IndexService(self.fs, index_filename=index_filename)
        self.search_engine = TagSearchEngine(self.index, self.repository)
        self.tag_index = TagIndexStore(FileSystem(self.root / Scope(GLOBAL_SCOPE).dir_name))
        self._repositories: dict[Scope, DocumentRepository] = {}

    @classmethod
    def from_config(cls, config: MembankConfig) -> MemoryBank:
        return cls(config.root_dir, language=config.language, index_filename=config.index_filename)

    def repository(self, scope: Scope | str | None) -> DocumentRepository:
        scope = Scope.parse(scope)
        repo = self._repositories.get(scope)
        if repo is None:
            repo = DocumentRepository(FileSystem(self.root / scope.dir_name), scope)
            self._repositories[scope] = repo
        return repo

    def close(self) -> None:
        self.index.close()
        self._repositories.clear()

    # ── Documents ─────────────────────────────────────────────

    async def get(self, scope: Scope | str | None, path_or_id: str) -> Document:
        scope = Scope.parse(scope)
        path = await self._resolve(scope, path_or_id)
        return await self.repository(scope).get(path)

    async def save(self, scope: Scope | str | None, document: Document) -> Document:
        """Write ``document`` and index it. An ID held by another path is rejected."""
        scope = Scope.parse(scope)
        if document.id:
            holder = await self.index.find_by_id(scope, document.id)
            if (
                holder is not None
                and holder.path != document.path.value
                and await self.repository(scope).exists(DocumentPath.create(holder.path))
            ):
                raise MemoryBankError.duplicate_id(document.id, document.path.value, holder.path)
        saved = await self.repository(scope).save(document)
        await self.index.add_to_index(scope, saved)
        if scope.is_global:
            await self._refresh_tag_index()
        return saved

    async def delete(self, scope: Scope | str | None, path_or_id: str) -> None:
        scope = Scope.parse(scope)
        path = await self._resolve(scope, path_or_id)
        await self.repository(scope).delete(path)
        await self.index.remove_from_index(scope, path)
        if scope.is_global:
            await self._refresh_tag_index()

    async def list(self, scope: Scope | str | None) -> list[DocumentReference]:
        """References to every readable document in ``scope``, ordered by path."""
        scope = Scope.parse(scope)
        repo = self.repository(scope)
        if not scope.is_global and not await repo.scope_exists():
            raise MemoryBankError.branch_not_found(scope.name)
        return [doc.to_reference() for doc in await repo.list_documents()]

    async def find_by_tags(
        self, scope: Scope | str | None, tags: Iterable[str], match_all: bool = False
    ) -> SearchResult:
        return await self.search_engine.search(scope, tags, match_all)

    async def edit_sections(
        self,
        scope: Scope | str | None,
        path: str,
        edits: Mapping[str, SectionEdit | Mapping[str, Any]] | Iterable[SectionEdit | Mapping[str, Any]],
        mode: EditMode | str = EditMode.REPLACE,
    ) -> Document:
        """Apply section edits to an existing Markdown document and save it."""
        scope = Scope.parse(scope)
        doc_path = DocumentPath.create(path)
        if not doc_path.is_markdown:
            raise MemoryBankError.invalid_argument("path", f"{doc_path} is not a Markdown document")
        current = await self.repository(scope).get(doc_path)
        current.content = apply_sections(current.content, edits, mode)
        return await self.save(scope, current)

    async def patch_json(self, scope: Scope | str | None, path: str, operations: Operations) -> Document:
        """Apply RFC 6902 ``operations`` to a JSON document's content and save it.

        Pointers are relative to the content, e.g. ``/items/0``. The saved
        version is bumped; a rejected patch leaves the file untouched.
        """
        scope = Scope.parse(scope)
        doc_path = self._json_path(path)
        current = await self.repository(scope).get(doc_path)
        current.content = apply_patch(doc_path.value, current.content, operations)
        return await self.save(scope, current)

    async def diff_json(self, scope: Scope | str | None, source: str, target: str) -> list[dict[str, Any]]:
        """Patch operations that turn the content of ``source`` into that of ``target``."""
        scope = Scope.parse(scope)
        repo = self.repository(scope)
        source_doc = await repo.get(self._json_path(source))
        target_doc = await repo.get(self._json_path(target))
        return diff_content(source_doc.path.value, source_doc.content, target_doc.content)

    @staticmethod
    def _json_path(path: str) -> DocumentPath:
        doc_path = DocumentPath.create(path)
        if not doc_path.is_json:
            raise MemoryBankError.invalid_argument("path", f"{doc_path} is not a JSON document")
        return doc_path

    async def rebuild_index(self, scope: Scope | str | None) -> int:
        """Rebuild the index of ``scope`` from disk. Returns the document count."""
        scope = Scope.parse(scope)
        documents = await self.repository(scope).list_documents()
        await self.index.build_index(scope, documents)
        if scope.is_global:
            await self._refresh_tag_index(documents)
        return len(documents)

    async def _resolve(self, scope: Scope, path_or_id: str) -> DocumentPath:
        if not isinstance(path_or_id, str) or not path_or_id.strip():
            raise MemoryBankError.invalid_argument("path_or_id", "must be a non-empty string")
        if looks_like_path(path_or_id):
            return DocumentPath.create(path_or_id)

        ref = await self.index.find_by_id(scope, path_or_id)
        if ref is not None:
            return DocumentPath.create(ref.path)
        logger.debug("ID %s not indexed in %s, scanning", path_or_id, scope)
        document = await self.repository(scope).get_by_id(path_or_id)
        if document is None:
            raise MemoryBankError.document_not_found(path_or_id, scope.name)
        return document.path

    async def _refresh_tag_index(self, documents: list[Document] | None = None) -> None:
        if documents is None:
            documents = await self.repository(GLOBAL_SCOPE).list_documents()
        try:
            await self.tag_index.generate(documents, context=GLOBAL_SCOPE)
        except MemoryBankError as e:
            logger.warning("Tag index not regenerated: %s", e.message)

    # ── Branches ──────────────────────────────────────────────

    async def branch_exists(self, branch: str) -> bool:
        return await self.repository(validate_branch_name(branch)).scope_exists()

    async def list_branches(self) -> list[str]:
        """Names of the branches with a directory under ``root``."""
        branches = []
        for name in await self.fs.list_dirs():
            if name == GLOBAL_SCOPE:
                continue
            branches.append(await self._branch_name_of(name))
        return branches

    async def _branch_name_of(self, dir_name: str) -> str:
        """Recover ``feature/x`` from ``feature-x`` via the branchContext header."""
        fs = FileSystem(self.root / dir_name)
        path = core_file_path(DocumentType.BRANCH_CONTEXT)
        if await fs.file_exists(path):
            text = await fs.read_file(path)
            record = from_markdown(DocumentType.BRANCH_CONTEXT, text, detect_locale(text, self.language))
            if record.branch_name and Scope(record.branch_name).dir_name == dir_name:
                return record.branch_name
        return dir_name

    async def initialize_branch(self, branch: str) -> list[str]:
        """Create the branch directory and any missing core files. Returns created paths."""
        scope = Scope.parse(validate_branch_name(branch))
        repo = self.repository(scope)
        await repo.fs.create_directory()
        timestamp = format_timestamp(utcnow())

        created = []
        for kind, name in CORE_FILE_PATHS.items():
            path = DocumentPath.create(name)
            if await repo.exists(path):
                continue
            content = render_template(kind, self.language, scope.name, timestamp)
            await self.save(scope, Document(path=path, content=content, tags=list(CORE_FILE_TAGS[kind]), document_type=kind))
            created.append(name)
        logger.info("Initialized branch %s (%d core files created)", scope, len(created))
        return created

    async def read_core_files(self, branch: str) -> CoreFilesResult:
        scope = Scope.parse(validate_branch_name(branch))
        repo = self.repository(scope)
        if not await repo.scope_exists():
            raise MemoryBankError.branch_not_found(scope.name)

        records: dict[DocumentType, CoreRecord] = {}
        missing = []
        for kind, name in CORE_FILE_PATHS.items():
            try:
                document = await repo.get(DocumentPath.create(name))
            except MemoryBankError as e:
                match e.kind:
                    case ErrorKind.NOT_FOUND | ErrorKind.VALIDATION:
                        logger.debug("Core file %s missing in %s: %s", name, scope, e.message)
                        records[kind] = empty_record(kind)
                        missing.append(name)
                        continue
                    case _:
                        raise
            locale = detect_locale(document.content, self.language)
            records[kind] = from_markdown(kind, document.content, locale)

        return CoreFilesResult(
            branch=scope.name,
            branch_context=records[DocumentType.BRANCH_CONTEXT],
            active_context=records[DocumentType.ACTIVE_CONTEXT],
            progress=records[DocumentType.PROGRESS],
            system_patterns=records[DocumentType.SYSTEM_PATTERNS],
            missing=missing,
        )

    async def read_context(self, branch: str) -> ContextResult:
        """Branch documents plus the global ``core/`` documents, initializing the branch if needed.

        JSON documents are returned as their parsed content, Markdown as text.
        Unreadable documents are logged and left out.
        """
        scope = Scope.parse(validate_branch_name(branch))
        if not await self.repository(scope).scope_exists():
            logger.info("Branch %s has no memory yet, initializing", scope)
            await self.initialize_branch(scope.name)
        return ContextResult(
            branch=scope.name,
            branch_memory=await self._read_memory(scope),
            global_memory=await self._read_memory(Scope.parse(GLOBAL_SCOPE), prefix="core/"),
        )

    async def _read_memory(self, scope: Scope, prefix: str = "") -> dict[str, Any]:
        memory: dict[str, Any] = {}
        # list_documents already skips files that fail to parse
        for document in await self.repository(scope).list_documents():
            if not document.path.value.startswith(prefix):
                continue
            if document.path.is_json:
                memory[document.path.value] = content_of(document.path.value, document.content)
            else:
                memory[document.path.value] = document.content
        return memory

    async def update_core_file(
        self, branch: str, record: CoreRecord, mode: EditMode | str = EditMode.REPLACE
    ) -> Document:
        """Merge ``record`` into the branch's core file, creating it from the template if needed."""
        scope = Scope.parse(validate_branch_name(branch))
        kind = record.kind
        path = DocumentPath.create(core_file_path(kind))
        existing = await self.repository(scope).find(path)

        if existing is not None:
            base = existing.content
            locale = detect_locale(base, self.language)
        else:
            locale = self.language
            base = render_template(kind, locale, scope.name, format_timestamp(utcnow()))

        document = Document(
            path=path,
            content=to_markdown(record, locale, existing=base, mode=mode),
            tags=existing.tags if existing else list(CORE_FILE_TAGS[kind]),
            document_type=kind,
            id=existing.id if existing else None,
        )
        return await self.save(scope, document)
