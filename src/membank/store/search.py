"""Tag search across a scope, hydrating index hits into full documents."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from membank.errors import ErrorKind, MemoryBankError
from membank.models import Document, DocumentPath, DocumentReference, Scope, Tag
from membank.store.index import IndexService
from membank.store.repository import DocumentRepository

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    documents: list[Document] = field(default_factory=list)
    searched_tags: list[str] = field(default_factory=list)
    match_all: bool = False
    location: str = ""

    @property
    def count(self) -> int:
        return len(self.documents)


class TagSearchEngine:
    """AND/OR tag queries against the scope index, with a scan fallback."""

    def __init__(
        self,
        index: IndexService,
        repository_for: Callable[[Scope], DocumentRepository],
    ) -> None:
        self.index = index
        self.repository_for = repository_for

    async def search(
        self, scope: Scope | str | None, tags: Iterable[str | Tag], match_all: bool = False
    ) -> SearchResult:
        scope = Scope.parse(scope)
        values = list(dict.fromkeys(t.value if isinstance(t, Tag) else Tag.create(t).value for t in tags))
        result = SearchResult(searched_tags=values, match_all=match_all, location=scope.name)
        if not values:
            return result

        repo = self.repository_for(scope)
        if await self.index.has_index(scope):
            refs = await self.index.find_by_tags(scope, values, match_all)
            result.documents = await self._hydrate(repo, refs)
        else:
            result.documents = await self._scan(repo, scope, values, match_all)
        logger.debug(
            "Tag search in %s for %s (match_all=%s): %d hits", scope, values, match_all, result.count
        )
        return result

    async def _hydrate(self, repo: DocumentRepository, refs: list[DocumentReference]) -> list[Document]:
        documents: list[Document] = []
        seen: set[str] = set()
        for ref in refs:
            if ref.path in seen:
                continue
            seen.add(ref.path)
            try:
                documents.append(await repo.get(DocumentPath.create(ref.path)))
            except MemoryBankError as e:
                match e.kind:
                    case ErrorKind.NOT_FOUND:
                        logger.debug("Indexed document %s no longer exists, skipping", ref.path)
                    case ErrorKind.VALIDATION:
                        logger.warning("Indexed document %s is unreadable, skipping", ref.path)
                    case _:
                        raise
        return documents

    async def _scan(
        self, repo: DocumentRepository, scope: Scope, values: list[str], match_all: bool
    ) -> list[Document]:
        """No index yet: read everything, rebuild the index, filter in memory."""
        logger.info("No index for %s, scanning documents", scope)
        documents = await repo.list_documents()
        await self.index.build_index(scope, documents)
        wanted = set(values)
        if match_all:
            return [d for d in documents if wanted.issubset(d.tags)]
        return [d for d in documents if wanted.intersection(d.tags)]
