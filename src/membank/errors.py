"""Error taxonomy for the memory bank.

Every failure raised by the core is a ``MemoryBankError`` carrying a closed
``kind`` discriminant. Callers dispatch on ``err.kind`` with ``match`` rather
than on exception subclasses. Messages and details only ever contain the
identifiers the caller supplied (relative paths, scope names, tags), never
resolved host paths.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Closed set of error kinds."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PERSISTENCE = "persistence"


class MemoryBankError(Exception):
    """Single error type for all memory bank failures."""

    def __init__(self, kind: ErrorKind, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        return f"MemoryBankError({self.kind.value!r}, {self.message!r})"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "details": dict(self.details)}

    # ── Validation ────────────────────────────────────────────

    @classmethod
    def invalid_path(cls, path: str, reason: str) -> MemoryBankError:
        return cls(ErrorKind.VALIDATION, f"Invalid path: {path} ({reason})", {"path": path, "reason": reason})

    @classmethod
    def invalid_tag(cls, tag: str) -> MemoryBankError:
        return cls(
            ErrorKind.VALIDATION,
            f"Invalid tag format: {tag} (lowercase letters, digits and hyphens only)",
            {"tag": tag},
        )

    @classmethod
    def invalid_branch_name(cls, branch: str) -> MemoryBankError:
        return cls(
            ErrorKind.VALIDATION,
            f"Invalid branch name: {branch} (must start with 'feature/' or 'fix/')",
            {"branch": branch},
        )

    @classmethod
    def invalid_document(cls, path: str, reason: str) -> MemoryBankError:
        return cls(
            ErrorKind.VALIDATION,
            f"Invalid document format at {path}: {reason}",
            {"path": path, "reason": reason},
        )

    @classmethod
    def invalid_argument(cls, name: str, reason: str) -> MemoryBankError:
        return cls(ErrorKind.VALIDATION, f"Invalid {name}: {reason}", {"argument": name, "reason": reason})

    @classmethod
    def duplicate_id(cls, document_id: str, path: str, existing_path: str) -> MemoryBankError:
        return cls(
            ErrorKind.VALIDATION,
            f"Duplicate document ID {document_id}: already used by {existing_path}",
            {"id": document_id, "path": path, "existingPath": existing_path},
        )

    @classmethod
    def invalid_json_patch(cls, path: str, reason: str) -> MemoryBankError:
        return cls(
            ErrorKind.VALIDATION,
            f"Invalid JSON Patch for {path}: {reason}",
            {"path": path, "reason": reason},
        )

    # ── Not found ─────────────────────────────────────────────

    @classmethod
    def document_not_found(cls, identifier: str, scope: str | None = None) -> MemoryBankError:
        where = f" in {scope}" if scope else ""
        details = {"identifier": identifier}
        if scope:
            details["scope"] = scope
        return cls(ErrorKind.NOT_FOUND, f"Document not found: {identifier}{where}", details)

    @classmethod
    def branch_not_found(cls, branch: str) -> MemoryBankError:
        return cls(ErrorKind.NOT_FOUND, f"Branch not found: {branch}", {"branch": branch})

    # ── Persistence ───────────────────────────────────────────

    @classmethod
    def persistence_failed(
        cls, operation: str, identifier: str, cause: BaseException | None = None
    ) -> MemoryBankError:
        reason = _describe(cause) if cause is not None else "unknown error"
        return cls(
            ErrorKind.PERSISTENCE,
            f"Failed to {operation} {identifier}: {reason}",
            {"operation": operation, "identifier": identifier, "reason": reason},
        )


def _describe(exc: BaseException) -> str:
    """Describe an exception without leaking file-system paths."""
    if isinstance(exc, OSError):
        return exc.strerror or type(exc).__name__
    return type(exc).__name__
