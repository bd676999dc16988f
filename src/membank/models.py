"""Value objects shared by the repository, index and search layers."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

from membank.errors import MemoryBankError

GLOBAL_SCOPE = "global"
BRANCH_PREFIXES = ("feature/", "fix/")

_TAG_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")
_DRIVE_RE = re.compile(r"^[A-Za-z]:")
_ID_NAMESPACE = uuid.UUID("6f1c3a52-2b8e-4d8e-9a63-3c1f4f0b7d21")

SUPPORTED_EXTENSIONS = (".md", ".json")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.isoformat(timespec="milliseconds")


def parse_timestamp(value: Any) -> datetime | None:
    """Accept datetimes (YAML may produce them) or ISO strings."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


# ── Tags ──────────────────────────────────────────────────


@dataclass(frozen=True, order=True)
class Tag:
    value: str

    @classmethod
    def create(cls, raw: str) -> Tag:
        if not isinstance(raw, str):
            raise MemoryBankError.invalid_tag(str(raw))
        value = raw.strip()
        if value.startswith("#"):
            value = value[1:]
        value = value.lower()
        if not _TAG_RE.match(value):
            raise MemoryBankError.invalid_tag(raw)
        return cls(value)

    def __str__(self) -> str:
        return self.value


def normalize_tags(raw_tags: Iterable[str | Tag] | None) -> list[str]:
    """Validate, lower-case and de-duplicate tags. Returns a sorted list."""
    if not raw_tags:
        return []
    values = {t.value if isinstance(t, Tag) else Tag.create(t).value for t in raw_tags}
    return sorted(values)


# ── Paths ─────────────────────────────────────────────────


@dataclass(frozen=True)
class DocumentPath:
    """Relative, normalized document path that cannot escape its scope."""

    value: str

    @classmethod
    def create(cls, raw: str) -> DocumentPath:
        if not isinstance(raw, str) or not raw.strip():
            raise MemoryBankError.invalid_path(str(raw or ""), "path cannot be empty")
        text = raw.strip()
        if ".." in text:
            raise MemoryBankError.invalid_path(raw, "path cannot contain '..'")
        if text.startswith(("/", "\\")) or _DRIVE_RE.match(text):
            raise MemoryBankError.invalid_path(raw, "absolute paths are not allowed")
        parts = [p for p in text.replace("\\", "/").split("/") if p not in ("", ".")]
        if not parts:
            raise MemoryBankError.invalid_path(raw, "path cannot be empty")
        value = "/".join(parts)
        if not value.lower().endswith(SUPPORTED_EXTENSIONS):
            raise MemoryBankError.invalid_path(raw, "only .md and .json documents are supported")
        return cls(value)

    @property
    def name(self) -> str:
        return self.value.rsplit("/", 1)[-1]

    @property
    def extension(self) -> str:
        return "." + self.name.rsplit(".", 1)[-1].lower()

    @property
    def stem(self) -> str:
        return self.name.rsplit(".", 1)[0]

    @property
    def is_markdown(self) -> bool:
        return self.extension == ".md"

    @property
    def is_json(self) -> bool:
        return self.extension == ".json"

    def __str__(self) -> str:
        return self.value


def looks_like_path(identifier: str) -> bool:
    return identifier.strip().lower().endswith(SUPPORTED_EXTENSIONS) or "/" in identifier


# ── Scopes ────────────────────────────────────────────────


def validate_branch_name(name: str) -> str:
    if not isinstance(name, str):
        raise MemoryBankError.invalid_branch_name(str(name))
    name = name.strip()
    for prefix in BRANCH_PREFIXES:
        if name.startswith(prefix) and name[len(prefix):].strip("/"):
            if ".." in name or "\\" in name:
                break
            return name
    raise MemoryBankError.invalid_branch_name(name)


@dataclass(frozen=True)
class Scope:
    """Either the global namespace or a single branch."""

    name: str

    @classmethod
    def parse(cls, name: str | Scope | None) -> Scope:
        if isinstance(name, Scope):
            return name
        if name is None or name == GLOBAL_SCOPE:
            return cls(GLOBAL_SCOPE)
        return cls(validate_branch_name(name))

    @property
    def is_global(self) -> bool:
        return self.name == GLOBAL_SCOPE

    @property
    def dir_name(self) -> str:
        return self.name.replace("/", "-")

    def __str__(self) -> str:
        return self.name


# ── Document types ────────────────────────────────────────


class DocumentType(str, Enum):
    GENERIC = "generic"
    BRANCH_CONTEXT = "branchContext"
    ACTIVE_CONTEXT = "activeContext"
    PROGRESS = "progress"
    SYSTEM_PATTERNS = "systemPatterns"

    @classmethod
    def parse(cls, value: Any) -> DocumentType | None:
        if isinstance(value, DocumentType):
            return value
        if not isinstance(value, str) or not value:
            return None
        key = value.replace("_", "").replace("-", "").lower()
        for member in cls:
            if member.value.lower() == key:
                return member
        return None

    @classmethod
    def infer(cls, path: DocumentPath) -> DocumentType:
        """Guess the type from the filename."""
        name = path.name.lower().replace("-", "").replace("_", "")
        if "branchcontext" in name:
            return cls.BRANCH_CONTEXT
        if "activecontext" in name:
            return cls.ACTIVE_CONTEXT
        if "systempatterns" in name:
            return cls.SYSTEM_PATTERNS
        if "progress" in name:
            return cls.PROGRESS
        return cls.GENERIC


# ── Documents ─────────────────────────────────────────────


def derive_document_id(path: DocumentPath) -> str:
    """Stable ID for documents written without one."""
    return str(uuid.uuid5(_ID_NAMESPACE, path.value))


def new_document_id() -> str:
    return str(uuid.uuid4())


def derive_title(content: str, path: DocumentPath) -> str:
    for line in content.splitlines():
        line = line.strip()
        if line.startswith("# "):
            return line[2:].strip()
    return path.stem


@dataclass
class Document:
    """A stored document and its metadata."""

    path: DocumentPath
    content: str
    tags: list[str] = field(default_factory=list)
    document_type: DocumentType | None = None
    id: str | None = None
    title: str | None = None
    last_modified: datetime | None = None

    @classmethod
    def create(
        cls,
        path: str | DocumentPath,
        content: str,
        tags: Iterable[str] | None = None,
        document_type: DocumentType | str | None = None,
        id: str | None = None,
        title: str | None = None,
    ) -> Document:
        """Validate user input into a Document."""
        doc_path = path if isinstance(path, DocumentPath) else DocumentPath.create(path)
        doc_type = None
        if document_type is not None:
            doc_type = DocumentType.parse(document_type)
            if doc_type is None:
                raise MemoryBankError.invalid_argument("documentType", str(document_type))
        return cls(
            path=doc_path,
            content=content,
            tags=normalize_tags(tags),
            document_type=doc_type,
            id=id,
            title=title,
        )

    @property
    def resolved_type(self) -> DocumentType:
        return self.document_type or DocumentType.infer(self.path)

    @property
    def resolved_title(self) -> str:
        return self.title or derive_title(self.content, self.path)

    @property
    def resolved_id(self) -> str:
        return self.id or derive_document_id(self.path)

    def to_reference(self) -> DocumentReference:
        return DocumentReference(
            id=self.resolved_id,
            path=self.path.value,
            document_type=self.resolved_type,
            title=self.resolved_title,
            last_modified=self.last_modified,
        )


@dataclass
class DocumentReference:
    """Index entry: enough to locate a document without reading it."""

    id: str
    path: str
    document_type: DocumentType
    title: str
    last_modified: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "documentType": self.document_type.value,
            "title": self.title,
            "lastModified": format_timestamp(self.last_modified) if self.last_modified else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DocumentReference:
        return cls(
            id=str(data["id"]),
            path=str(data["path"]),
            document_type=DocumentType.parse(data.get("documentType")) or DocumentType.GENERIC,
            title=str(data.get("title") or ""),
            last_modified=parse_timestamp(data.get("lastModified")),
        )
