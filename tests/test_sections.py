"""Tests for Markdown section editing."""

from __future__ import annotations

import pytest

from membank.errors import ErrorKind, MemoryBankError
from membank.markdown.sections import (
    EditMode,
    SectionEdit,
    apply_sections,
    parse_sections,
    read_section,
    render_content,
)

DOC = "# T\n\n## S1\n- i1\n\n## S2\nbody\n"


class TestParse:
    def test_preamble_and_sections(self):
        doc = parse_sections(DOC)
        assert doc.preamble == ["# T", ""]
        assert [s.header for s in doc.sections] == ["S1", "S2"]
        assert doc.sections[0].body == ["- i1"]

    def test_deeper_headings_stay_in_section(self):
        doc = parse_sections("## A\n### sub\ntext\n## B\n")
        assert [s.header for s in doc.sections] == ["A", "B"]
        assert doc.sections[0].body == ["### sub", "text"]

    def test_unedited_document_round_trips(self):
        assert parse_sections(DOC).render() == DOC

    def test_read_section(self):
        assert read_section(DOC, "S2") == "body"
        assert read_section(DOC, "missing") is None


class TestRenderContent:
    def test_string_verbatim(self):
        assert render_content("line 1\n  line 2") == "line 1\n  line 2"

    def test_list_as_bullets(self):
        assert render_content(["a", "", "  b "]) == "- a\n- b"

    def test_empty_list(self):
        assert render_content([]) == ""


class TestApplySections:
    def test_append_to_list(self):
        out = apply_sections(DOC, {"S1": {"content": ["i2"], "mode": "append"}})
        assert out == "# T\n\n## S1\n\n- i1\n- i2\n\n## S2\nbody\n"

    def test_replace(self):
        out = apply_sections(DOC, [SectionEdit("S2", "new body")])
        assert out.endswith("## S2\n\nnew body\n")
        assert "- i1" in out

    def test_prepend(self):
        out = apply_sections(DOC, [SectionEdit("S1", ["i0"])], mode=EditMode.PREPEND)
        assert "- i0\n- i1" in out

    def test_append_flag_overrides_default_for_lists(self):
        out = apply_sections(DOC, [SectionEdit("S1", ["i2"], append=True)], mode="replace")
        assert "- i1\n- i2" in out

    def test_append_false_forces_replace(self):
        out = apply_sections(DOC, [SectionEdit("S1", ["i2"], append=False)], mode="append")
        assert "- i1" not in out
        assert "- i2" in out

    def test_missing_sections_appended_in_order(self):
        out = apply_sections(DOC, [SectionEdit("Z", "z"), SectionEdit("A", "a")])
        assert out.index("## S2") < out.index("## Z") < out.index("## A")

    def test_edited_section_keeps_its_slot(self):
        out = apply_sections(DOC, [SectionEdit("S1", "x")])
        assert out.index("## S1") < out.index("## S2")

    def test_crlf_normalized(self):
        out = apply_sections("## A\r\nold\r\n## B\r\nkeep\r\n", [SectionEdit("A", "new")])
        assert "\r" not in out
        assert out == "## A\n\nnew\n\n## B\nkeep\n"

    def test_mixed_line_endings_normalized(self):
        out = apply_sections("## A\r\none\ntwo\rthree\n", [SectionEdit("B", "b")])
        assert "\r" not in out

    def test_empty_list_emits_no_bullet(self):
        out = apply_sections(DOC, [SectionEdit("S1", [])])
        assert "- " not in out.split("## S2")[0]
        assert "## S1\n\n## S2" in out

    def test_adjacent_sections_do_not_bleed(self):
        out = apply_sections("## A\na\n## B\nb\n", [SectionEdit("A", ["x"])])
        assert out == "## A\n\n- x\n\n## B\nb\n"

    def test_preamble_only_document(self):
        out = apply_sections("Intro text\n", [SectionEdit("New", "content")])
        assert out == "Intro text\n\n## New\n\ncontent\n"

    def test_empty_document(self):
        assert apply_sections("", [SectionEdit("A", "a")]) == "## A\n\na\n"

    def test_blank_preamble_kept_verbatim(self):
        out = apply_sections("\n\n## A\nx\n", [SectionEdit("B", "b")])
        assert out == "\n\n## A\nx\n\n## B\n\nb\n"

    def test_blank_preamble_round_trips(self):
        text = "\n  \n## A\nx\n"
        assert parse_sections(text).render() == text

    def test_header_match_is_case_sensitive(self):
        out = apply_sections(DOC, [SectionEdit("s1", "x")])
        assert "## S1\n- i1" in out
        assert out.endswith("## s1\n\nx\n")

    def test_multiple_edits_single_pass(self):
        out = apply_sections(DOC, {"a": SectionEdit("S2", "b2"), "b": SectionEdit("S1", "b1")})
        assert out == "# T\n\n## S1\n\nb1\n\n## S2\n\nb2\n"


class TestValidation:
    def test_invalid_mode(self):
        with pytest.raises(MemoryBankError) as exc:
            apply_sections(DOC, [SectionEdit("S1", "x")], mode="merge")
        assert exc.value.kind == ErrorKind.VALIDATION

    def test_multiline_header_rejected(self):
        with pytest.raises(MemoryBankError):
            apply_sections(DOC, [SectionEdit("a\nb", "x")])

    def test_non_string_list_rejected(self):
        with pytest.raises(MemoryBankError):
            apply_sections(DOC, [{"header": "S1", "content": [1, 2]}])
