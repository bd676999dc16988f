"""Core branch files <-> structured records.

Each branch carries four core Markdown files (branchContext, activeContext,
progress, systemPatterns). Writing goes through the section editor so
hand-written text outside the known sections survives; reading pulls each
field out of its section by header. Header text comes from ``HEADERS``,
keyed by locale, so the parsing code itself is locale-agnostic.

Parsing is tolerant: a missing section gives the field's default, an empty
section gives an empty list (never None).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from membank.errors import MemoryBankError
from membank.markdown.sections import EditMode, SectionEdit, apply_sections, normalize_line_endings
from membank.models import DocumentType

DEFAULT_LOCALE = "en"

HEADERS: dict[str, dict[str, str]] = {
    "en": {
        "purpose": "Purpose",
        "userStories": "User Stories",
        "currentWork": "Current Work",
        "recentChanges": "Recent Changes",
        "activeDecisions": "Active Decisions",
        "considerations": "Active Considerations",
        "nextSteps": "Next Steps",
        "technicalDecisions": "Technical Decisions",
        "relatedFiles": "Related Files and Directory Structure",
        "workingFeatures": "Working Features",
        "pendingImplementation": "Pending Implementation",
        "status": "Current Status",
        "knownIssues": "Known Issues",
        "context": "Context",
        "decision": "Decision",
        "consequences": "Consequences",
        "branchLabel": "Branch",
        "createdLabel": "Created",
    },
    "ja": {
        "purpose": "目的",
        "userStories": "ユーザーストーリー",
        "currentWork": "現在の作業内容",
        "recentChanges": "最近の変更点",
        "activeDecisions": "アクティブな決定事項",
        "considerations": "検討事項",
        "nextSteps": "次のステップ",
        "technicalDecisions": "技術的決定事項",
        "relatedFiles": "関連ファイルとディレクトリ構造",
        "workingFeatures": "動作している機能",
        "pendingImplementation": "未実装の機能",
        "status": "現在の状態",
        "knownIssues": "既知の問題",
        "context": "コンテキスト",
        "decision": "決定事項",
        "consequences": "影響",
        "branchLabel": "ブランチ",
        "createdLabel": "作成日時",
    },
}

TITLES: dict[str, dict[DocumentType, str]] = {
    "en": {
        DocumentType.BRANCH_CONTEXT: "Branch Context",
        DocumentType.ACTIVE_CONTEXT: "Active Context",
        DocumentType.SYSTEM_PATTERNS: "System Patterns",
        DocumentType.PROGRESS: "Progress",
    },
    "ja": {
        DocumentType.BRANCH_CONTEXT: "ブランチコンテキスト",
        DocumentType.ACTIVE_CONTEXT: "アクティブコンテキスト",
        DocumentType.SYSTEM_PATTERNS: "システムパターン",
        DocumentType.PROGRESS: "進捗状況",
    },
}

DEFAULT_USER_STORIES: dict[str, list[str]] = {
    "en": ["Define the problem to solve", "Describe required features", "Specify expected behavior"],
    "ja": ["解決する課題を定義", "必要な機能を記述", "期待される動作を明記"],
}

SECTION_KEYS: dict[DocumentType, tuple[str, ...]] = {
    DocumentType.BRANCH_CONTEXT: ("purpose", "userStories"),
    DocumentType.ACTIVE_CONTEXT: ("currentWork", "recentChanges", "activeDecisions", "considerations", "nextSteps"),
    DocumentType.SYSTEM_PATTERNS: ("technicalDecisions", "relatedFiles"),
    DocumentType.PROGRESS: ("workingFeatures", "pendingImplementation", "status", "knownIssues"),
}

CORE_FILE_PATHS: dict[DocumentType, str] = {
    DocumentType.BRANCH_CONTEXT: "branchContext.md",
    DocumentType.ACTIVE_CONTEXT: "activeContext.md",
    DocumentType.SYSTEM_PATTERNS: "systemPatterns.md",
    DocumentType.PROGRESS: "progress.md",
}

_STORY_RE = re.compile(r"^\s*-\s*\[([ xX])\]\s*(.+)$")
_PLACEHOLDER_RE = re.compile(r"^_.*_$")


def headers_for(locale: str) -> dict[str, str]:
    try:
        return HEADERS[locale]
    except KeyError:
        raise MemoryBankError.invalid_argument("language", f"{locale!r} (supported: {', '.join(HEADERS)})")


def core_file_path(kind: DocumentType) -> str:
    try:
        return CORE_FILE_PATHS[kind]
    except KeyError:
        raise MemoryBankError.invalid_argument("core file type", kind.value)


def detect_locale(text: str, preferred: str = DEFAULT_LOCALE) -> str:
    """Pick the locale whose section headers appear in ``text``."""
    text = normalize_line_endings(text)
    candidates = [preferred] + [loc for loc in HEADERS if loc != preferred]
    for locale in candidates:
        headers = HEADERS.get(locale)
        if headers and any(_section_body(text, headers[key]) is not None for key in _all_section_keys()):
            return locale
    return preferred


def _all_section_keys() -> list[str]:
    return [key for keys in SECTION_KEYS.values() for key in keys]


# ── Records ───────────────────────────────────────────────


@dataclass
class UserStory:
    description: str
    completed: bool = False


@dataclass
class TechnicalDecision:
    title: str
    context: str = ""
    decision: str = ""
    consequences: list[str] = field(default_factory=list)


@dataclass
class BranchContext:
    kind: ClassVar[DocumentType] = DocumentType.BRANCH_CONTEXT

    purpose: str | None = None
    user_stories: list[UserStory] | None = None
    branch_name: str | None = None
    created_at: str | None = None


@dataclass
class ActiveContext:
    kind: ClassVar[DocumentType] = DocumentType.ACTIVE_CONTEXT

    current_work: str | None = None
    recent_changes: list[str] | None = None
    active_decisions: list[str] | None = None
    considerations: list[str] | None = None
    next_steps: list[str] | None = None


@dataclass
class Progress:
    kind: ClassVar[DocumentType] = DocumentType.PROGRESS

    working_features: list[str] | None = None
    pending_implementation: list[str] | None = None
    status: str | None = None
    known_issues: list[str] | None = None


@dataclass
class SystemPatterns:
    kind: ClassVar[DocumentType] = DocumentType.SYSTEM_PATTERNS

    technical_decisions: list[TechnicalDecision] | None = None
    related_files: list[str] | None = None


CoreRecord = Union[BranchContext, ActiveContext, Progress, SystemPatterns]

RECORD_TYPES: dict[DocumentType, type] = {
    DocumentType.BRANCH_CONTEXT: BranchContext,
    DocumentType.ACTIVE_CONTEXT: ActiveContext,
    DocumentType.PROGRESS: Progress,
    DocumentType.SYSTEM_PATTERNS: SystemPatterns,
}

# record attribute -> header key, for the plain string/list fields
_FIELD_KEYS: dict[DocumentType, dict[str, str]] = {
    DocumentType.ACTIVE_CONTEXT: {
        "current_work": "currentWork",
        "recent_changes": "recentChanges",
        "active_decisions": "activeDecisions",
        "considerations": "considerations",
        "next_steps": "nextSteps",
    },
    DocumentType.PROGRESS: {
        "working_features": "workingFeatures",
        "pending_implementation": "pendingImplementation",
        "status": "status",
        "known_issues": "knownIssues",
    },
}


def empty_record(kind: DocumentType) -> CoreRecord:
    """Placeholder with every field at its empty value."""
    return from_markdown(kind, "")


# ── Templates ─────────────────────────────────────────────


def render_template(kind: DocumentType, locale: str = DEFAULT_LOCALE, branch_name: str = "", timestamp: str = "") -> str:
    """Initial content of a core file."""
    headers = headers_for(locale)
    parts = [f"# {TITLES[locale][kind]}\n"]
    for key in SECTION_KEYS[kind]:
        body = ""
        if key == "purpose":
            body = f"{headers['branchLabel']}: {branch_name}\n{headers['createdLabel']}: {timestamp}\n"
        elif key == "userStories":
            body = "".join(f"- [ ] {story}\n" for story in DEFAULT_USER_STORIES[locale])
        parts.append(f"## {headers[key]}\n\n{body}" if body else f"## {headers[key]}\n")
    return "\n".join(parts)


# ── Record -> Markdown ────────────────────────────────────


def to_markdown(
    record: CoreRecord,
    locale: str = DEFAULT_LOCALE,
    existing: str | None = None,
    mode: EditMode | str = EditMode.REPLACE,
) -> str:
    """Apply the set (non-None) fields of ``record`` to ``existing`` or a fresh template."""
    headers = headers_for(locale)
    kind = record.kind
    base = existing if existing is not None else render_template(kind, locale, record_branch(record))
    edits: dict[str, SectionEdit] = {}

    if isinstance(record, BranchContext):
        if record.purpose is not None:
            current = from_markdown(kind, base, locale)
            branch = record.branch_name or current.branch_name or ""
            created = record.created_at or current.created_at or ""
            body = f"{headers['branchLabel']}: {branch}\n{headers['createdLabel']}: {created}"
            if record.purpose.strip():
                body += "\n\n" + record.purpose.strip()
            edits["purpose"] = SectionEdit(headers["purpose"], body, mode=EditMode.REPLACE)
        if record.user_stories is not None:
            items = [f"[{'x' if s.completed else ' '}] {s.description}" for s in record.user_stories]
            edits["userStories"] = SectionEdit(headers["userStories"], items)
    elif isinstance(record, SystemPatterns):
        if record.technical_decisions is not None:
            blocks = [_render_decision(d, headers) for d in record.technical_decisions]
            edits["technicalDecisions"] = SectionEdit(headers["technicalDecisions"], "\n\n".join(blocks))
        if record.related_files is not None:
            edits["relatedFiles"] = SectionEdit(headers["relatedFiles"], record.related_files)
    else:
        for attr, key in _FIELD_KEYS[kind].items():
            value = getattr(record, attr)
            if value is not None:
                edits[key] = SectionEdit(headers[key], value)

    if not edits:
        return normalize_line_endings(base)
    return apply_sections(base, edits, mode)


def record_branch(record: CoreRecord) -> str:
    return getattr(record, "branch_name", None) or ""


def _render_decision(decision: TechnicalDecision, headers: dict[str, str]) -> str:
    lines = [f"### {decision.title}", "", f"#### {headers['context']}", decision.context.strip(), ""]
    lines += [f"#### {headers['decision']}", decision.decision.strip(), ""]
    lines.append(f"#### {headers['consequences']}")
    lines += [f"- {c.strip()}" for c in decision.consequences if c.strip()]
    return "\n".join(lines).rstrip("\n")


# ── Markdown -> Record ────────────────────────────────────


def from_markdown(kind: DocumentType, text: str, locale: str = DEFAULT_LOCALE) -> CoreRecord:
    headers = headers_for(locale)
    text = normalize_line_endings(text)

    if kind == DocumentType.BRANCH_CONTEXT:
        return _parse_branch_context(text, headers)
    if kind == DocumentType.SYSTEM_PATTERNS:
        body = _section_body(text, headers["technicalDecisions"])
        return SystemPatterns(
            technical_decisions=_parse_decisions(body or "", headers),
            related_files=_list_items(_section_body(text, headers["relatedFiles"])),
        )
    if kind not in _FIELD_KEYS:
        raise MemoryBankError.invalid_argument("core file type", kind.value)

    values: dict[str, Any] = {}
    for attr, key in _FIELD_KEYS[kind].items():
        body = _section_body(text, headers[key])
        values[attr] = _text(body) if attr in ("current_work", "status") else _list_items(body)
    return RECORD_TYPES[kind](**values)


def _section_body(text: str, header: str, level: int = 2) -> str | None:
    """Body under ``header`` at the given heading level, or None when absent."""
    hashes = "#" * level
    pattern = re.compile(
        rf"^{hashes}[ \t]+{re.escape(header)}[ \t]*$\n?(.*?)(?=^#{{1,{level}}}[ \t]|\Z)",
        re.MULTILINE | re.DOTALL,
    )
    match = pattern.search(text)
    return match.group(1) if match else None


def _list_items(body: str | None) -> list[str]:
    if not body:
        return []
    return [line.strip()[2:].strip() for line in body.split("\n") if line.strip().startswith("- ")]


def _text(body: str | None) -> str:
    if not body:
        return ""
    lines = [line.strip() for line in body.split("\n")]
    return "\n".join(line for line in lines if line and not _PLACEHOLDER_RE.match(line)).strip()


def _parse_branch_context(text: str, headers: dict[str, str]) -> BranchContext:
    record = BranchContext(purpose="", user_stories=[])
    body = _section_body(text, headers["purpose"])
    if body:
        purpose_lines = []
        for line in body.split("\n"):
            stripped = line.strip()
            if stripped.startswith(f"{headers['branchLabel']}:"):
                record.branch_name = stripped.split(":", 1)[1].strip()
            elif stripped.startswith(f"{headers['createdLabel']}:"):
                record.created_at = stripped.split(":", 1)[1].strip()
            else:
                purpose_lines.append(line)
        record.purpose = _text("\n".join(purpose_lines))

    stories = _section_body(text, headers["userStories"]) or ""
    for line in stories.split("\n"):
        match = _STORY_RE.match(line)
        if match:
            record.user_stories.append(UserStory(description=match.group(2).strip(), completed=match.group(1) != " "))
    return record


def _parse_decisions(body: str, headers: dict[str, str]) -> list[TechnicalDecision]:
    decisions = []
    for chunk in re.split(r"^###(?!#)[ \t]*", body, flags=re.MULTILINE)[1:]:
        title, _, rest = chunk.partition("\n")
        decisions.append(
            TechnicalDecision(
                title=title.strip(),
                context=_text(_section_body(rest, headers["context"], level=4)),
                decision=_text(_section_body(rest, headers["decision"], level=4)),
                consequences=_list_items(_section_body(rest, headers["consequences"], level=4)),
            )
        )
    return decisions
