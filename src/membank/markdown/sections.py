"""Section-level editing of Markdown documents.

A section is a ``## <header>`` line plus every following line up to the next
``## `` header (or the end of the document). Deeper headings (``###``) stay
inside the section that contains them. Text before the first section is the
preamble and is kept verbatim.

All edits of one ``apply_sections`` call run against a single parse, so
untouched sections are re-emitted byte-for-byte and edited sections keep
their original slot. Sections that do not exist yet are appended at the end
in the order the edits were given.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Union

from membank.errors import MemoryBankError

SectionContent = Union[str, list[str]]

_HEADER_RE = re.compile(r"^##(?!#)[ \t]*(.*?)[ \t]*$")


class EditMode(str, Enum):
    REPLACE = "replace"
    APPEND = "append"
    PREPEND = "prepend"

    @classmethod
    def parse(cls, value: EditMode | str | None) -> EditMode:
        if value is None:
            return cls.REPLACE
        if isinstance(value, EditMode):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise MemoryBankError.invalid_argument("mode", f"{value!r} (expected replace, append or prepend)")


@dataclass
class SectionEdit:
    """One requested change.

    ``mode`` overrides the call's default for this edit; ``append`` does the
    same for list content only (True means append, False means replace).
    """

    header: str
    content: SectionContent
    append: bool | None = None
    mode: EditMode | None = None

    @classmethod
    def coerce(cls, value: SectionEdit | Mapping[str, Any], key: str | None = None) -> SectionEdit:
        """Accept a SectionEdit or a plain mapping; the mapping key doubles as header."""
        if isinstance(value, SectionEdit):
            edit = value
        elif isinstance(value, Mapping):
            mode = value.get("mode")
            edit = cls(
                header=value.get("header") or key,
                content=value.get("content", ""),
                append=value.get("append"),
                mode=EditMode.parse(mode) if mode is not None else None,
            )
        else:
            raise MemoryBankError.invalid_argument("section edit", type(value).__name__)
        edit.validate()
        return edit

    def validate(self) -> None:
        if not isinstance(self.header, str) or not self.header.strip() or "\n" in self.header:
            raise MemoryBankError.invalid_argument("section header", repr(self.header))
        if isinstance(self.content, str):
            return
        if isinstance(self.content, list) and all(isinstance(i, str) for i in self.content):
            return
        raise MemoryBankError.invalid_argument("section content", "expected a string or a list of strings")

    def effective_mode(self, default: EditMode) -> EditMode:
        if self.mode is not None:
            return EditMode.parse(self.mode)
        if isinstance(self.content, list) and self.append is not None:
            return EditMode.APPEND if self.append else EditMode.REPLACE
        return default


@dataclass
class Section:
    header: str
    lines: list[str] = field(default_factory=list)
    header_line: str = ""
    edited: bool = False

    @property
    def body(self) -> list[str]:
        """Body lines without surrounding blank lines."""
        return _trim_blank(self.lines)

    def set_body(self, lines: list[str]) -> None:
        self.lines = lines
        self.edited = True

    def render(self) -> list[str]:
        if not self.edited:
            return [self.header_line or f"## {self.header}", *self.lines]
        body = _trim_blank(self.lines)
        return [f"## {self.header}", "", *body, *([""] if body else [])]


@dataclass
class ParsedDocument:
    preamble: list[str] = field(default_factory=list)
    sections: list[Section] = field(default_factory=list)

    def find(self, header: str) -> Section | None:
        for section in self.sections:
            if section.header == header:
                return section
        return None

    def render(self) -> str:
        # [""] is what splitting empty text yields, not a real leading blank line
        out: list[str] = [] if self.preamble == [""] else list(self.preamble)
        for section in self.sections:
            if section.edited and out and out[-1].strip():
                out.append("")
            out.extend(section.render())
        text = "\n".join(out).rstrip("\n")
        return text + "\n" if text else ""


def normalize_line_endings(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def parse_sections(text: str) -> ParsedDocument:
    doc = ParsedDocument()
    current: Section | None = None
    for line in normalize_line_endings(text).split("\n"):
        match = _HEADER_RE.match(line)
        if match:
            current = Section(header=match.group(1), header_line=line)
            doc.sections.append(current)
        elif current is None:
            doc.preamble.append(line)
        else:
            current.lines.append(line)
    return doc


def render_content(content: SectionContent) -> str:
    """A string verbatim, or a list as ``- item`` lines (empty entries dropped)."""
    if isinstance(content, str):
        return normalize_line_endings(content).strip("\n")
    items = (" ".join(normalize_line_endings(i).split("\n")).strip() for i in content)
    return "\n".join(f"- {item}" for item in items if item)


def apply_sections(
    text: str,
    edits: Mapping[str, SectionEdit | Mapping[str, Any]] | Iterable[SectionEdit | Mapping[str, Any]],
    mode: EditMode | str | None = EditMode.REPLACE,
) -> str:
    """Apply all ``edits`` in one parse/render pass and return the new text."""
    default_mode = EditMode.parse(mode)
    if isinstance(edits, Mapping):
        requested = [SectionEdit.coerce(e, key) for key, e in edits.items()]
    else:
        requested = [SectionEdit.coerce(e) for e in edits]

    doc = parse_sections(text)
    for edit in requested:
        header = edit.header.strip()
        section = doc.find(header)
        if section is None:
            section = Section(header=header)
            doc.sections.append(section)
        new_lines = _lines(render_content(edit.content))
        match edit.effective_mode(default_mode):
            case EditMode.REPLACE:
                section.set_body(new_lines)
            case EditMode.APPEND:
                section.set_body(section.body + new_lines)
            case EditMode.PREPEND:
                section.set_body(new_lines + section.body)
    return doc.render()


def read_section(text: str, header: str) -> str | None:
    """Body of the first section named ``header``, or None if absent."""
    section = parse_sections(text).find(header.strip())
    if section is None:
        return None
    return "\n".join(section.body)


def _lines(rendered: str) -> list[str]:
    return rendered.split("\n") if rendered else []


def _trim_blank(lines: list[str]) -> list[str]:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return lines[start:end]
