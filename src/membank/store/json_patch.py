"""RFC 6902 JSON Patch editing of stored JSON documents.

Pointers address the document's ``content`` value, not the
``memory_document_v2`` envelope around it. Metadata stays owned by the
repository, which rewrites it on save.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping

import jsonpatch
import jsonpointer

from membank.errors import MemoryBankError
from membank.store.repository import JSON_DOCUMENT_SCHEMA

Operations = Iterable[Mapping[str, Any]] | str


def load_envelope(path: str, raw: str) -> dict[str, Any]:
    """Parse stored JSON text. Files without a metadata object get wrapped."""
    try:
        data = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError as e:
        raise MemoryBankError.invalid_document(path, "content is not valid JSON") from e
    if isinstance(data, dict) and isinstance(data.get("metadata"), dict):
        data.setdefault("content", {})
        return data
    return {"schema": JSON_DOCUMENT_SCHEMA, "metadata": {}, "content": data}


def content_of(path: str, raw: str) -> Any:
    return load_envelope(path, raw)["content"]


def _as_patch(path: str, operations: Operations) -> jsonpatch.JsonPatch:
    if isinstance(operations, str):
        try:
            return jsonpatch.JsonPatch.from_string(operations)
        except json.JSONDecodeError as e:
            raise MemoryBankError.invalid_json_patch(path, "operations are not valid JSON") from e
    if isinstance(operations, Mapping):
        raise MemoryBankError.invalid_json_patch(path, "expected a list of operations")
    ops = list(operations)
    if not all(isinstance(op, Mapping) for op in ops):
        raise MemoryBankError.invalid_json_patch(path, "every operation must be an object")
    return jsonpatch.JsonPatch([dict(op) for op in ops])


def apply_patch(path: str, raw: str, operations: Operations) -> str:
    """Apply ``operations`` to the content of ``raw`` and return the new JSON text.

    The patch is all or nothing: a failing ``test`` op or a bad pointer
    raises VALIDATION and nothing is returned.
    """
    envelope = load_envelope(path, raw)
    try:
        patch = _as_patch(path, operations)
        envelope["content"] = patch.apply(envelope["content"])
    except (jsonpatch.JsonPatchException, jsonpointer.JsonPointerException) as e:
        raise MemoryBankError.invalid_json_patch(path, str(e) or type(e).__name__) from e
    return json.dumps(envelope, indent=2, ensure_ascii=False) + "\n"


def diff_content(path: str, source_raw: str, target_raw: str) -> list[dict[str, Any]]:
    """Operations turning the content of ``source_raw`` into that of ``target_raw``."""
    patch = jsonpatch.make_patch(content_of(path, source_raw), content_of(path, target_raw))
    return list(patch)
