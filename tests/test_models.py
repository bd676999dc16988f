"""Tests for value objects and the error type."""

from __future__ import annotations

import pytest

from membank.errors import ErrorKind, MemoryBankError
from membank.models import (
    Document,
    DocumentPath,
    DocumentType,
    Scope,
    Tag,
    derive_document_id,
    looks_like_path,
    normalize_tags,
    validate_branch_name,
)


class TestTag:
    def test_normalizes(self):
        assert Tag.create("#Architecture").value == "architecture"
        assert Tag.create(" api-v2 ").value == "api-v2"

    @pytest.mark.parametrize("raw", ["", "-lead", "has space", "under_score", "日本"])
    def test_rejects_invalid(self, raw):
        with pytest.raises(MemoryBankError) as exc:
            Tag.create(raw)
        assert exc.value.kind == ErrorKind.VALIDATION

    def test_normalize_tags_dedupes_and_sorts(self):
        assert normalize_tags(["b", "#A", "a"]) == ["a", "b"]
        assert normalize_tags(None) == []


class TestDocumentPath:
    def test_normalizes_separators(self):
        assert DocumentPath.create("./notes\\design.md").value == "notes/design.md"

    @pytest.mark.parametrize("raw", ["../escape.md", "a/../../b.md", "/etc/passwd.md", "C:\\x.md", "", "notes.txt"])
    def test_rejects_unsafe_or_unsupported(self, raw):
        with pytest.raises(MemoryBankError) as exc:
            DocumentPath.create(raw)
        assert exc.value.kind == ErrorKind.VALIDATION

    def test_properties(self):
        path = DocumentPath.create("docs/Plan.JSON")
        assert path.name == "Plan.JSON"
        assert path.stem == "Plan"
        assert path.is_json and not path.is_markdown

    def test_looks_like_path(self):
        assert looks_like_path("notes.md")
        assert looks_like_path("a/b")
        assert not looks_like_path("0b5c1a52-1111-4e4e-8888-2a2a2a2a2a2a")


class TestScope:
    def test_global(self):
        assert Scope.parse(None).is_global
        assert Scope.parse("global").dir_name == "global"

    def test_branch_dir_name(self):
        scope = Scope.parse("feature/login-form")
        assert not scope.is_global
        assert scope.dir_name == "feature-login-form"

    @pytest.mark.parametrize("name", ["main", "feature/", "hotfix/x", "feature/../x"])
    def test_invalid_branch(self, name):
        with pytest.raises(MemoryBankError) as exc:
            validate_branch_name(name)
        assert exc.value.kind == ErrorKind.VALIDATION


class TestDocument:
    def test_type_inferred_from_name(self):
        doc = Document.create("activeContext.md", "# Active Context\n")
        assert doc.resolved_type == DocumentType.ACTIVE_CONTEXT
        assert doc.resolved_title == "Active Context"

    def test_type_aliases(self):
        assert DocumentType.parse("system_patterns") == DocumentType.SYSTEM_PATTERNS
        assert DocumentType.parse("unknown") is None

    def test_invalid_type_rejected(self):
        with pytest.raises(MemoryBankError):
            Document.create("a.md", "", document_type="nope")

    def test_derived_id_is_stable(self):
        path = DocumentPath.create("a.md")
        assert derive_document_id(path) == derive_document_id(DocumentPath.create("a.md"))
        assert Document.create("a.md", "").resolved_id == derive_document_id(path)

    def test_reference_round_trip(self):
        ref = Document.create("notes/x.md", "# X\n", tags=["t"]).to_reference()
        data = ref.to_dict()
        assert data["documentType"] == "generic"
        assert type(ref).from_dict(data) == ref


class TestErrors:
    def test_to_dict(self):
        err = MemoryBankError.document_not_found("a.md", "global")
        assert err.to_dict() == {
            "kind": "not_found",
            "message": "Document not found: a.md in global",
            "details": {"identifier": "a.md", "scope": "global"},
        }

    def test_persistence_message_has_no_host_path(self):
        cause = PermissionError(13, "Permission denied", "/home/someone/secret/a.md")
        err = MemoryBankError.persistence_failed("write", "a.md", cause)
        assert err.kind == ErrorKind.PERSISTENCE
        assert "/home/someone" not in err.message
        assert "Permission denied" in err.message
