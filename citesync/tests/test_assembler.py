"""Tests for applying operations to DOCX containers."""

from datetime import datetime, timezone
from io import BytesIO

import pytest
from docx.oxml.ns import qn

from citesync.config import Config
from citesync.core.models import (
    ChangeType,
    EffectiveOperation,
    OperationScope,
    PatchMode,
    ReferenceEntry,
)
from citesync.core.styles import StyleRegistry
from citesync.document.assembler import DocumentAssembler, placeholder
from citesync.exceptions import ApplyError, ValidationError
from citesync.reconcile.ordering import ReferenceOrderPlanner
from citesync.reconcile.results import SkipReason
from citesync.utils.citation_text import citation_format_variants

from conftest import body_texts, build_docx, open_docx

WHEN = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)


def op(original, final, scope=OperationScope.IN_TEXT, mode=PatchMode.CLEAN, **kwargs):
    return EffectiveOperation(
        subject_key=kwargs.pop("subject_key", f"text:{original}"),
        original_text=original,
        final_text=final,
        mode=mode,
        scope=scope,
        **kwargs,
    )


@pytest.fixture
def assembler(config):
    return DocumentAssembler(config)


class TestPlaceholders:
    """Placeholder tokens."""

    def test_unique_and_private_use(self):
        """Test placeholders are distinct and use private-use code points."""
        tokens = {placeholder(n) for n in range(10000)}
        assert len(tokens) == 10000
        assert all(ord(ch) >= 0xE000 for token in tokens for ch in token)


class TestAssemble:
    """End-to-end patch passes."""

    def test_no_operations_returns_input(self, assembler):
        """Test an empty operation list returns the input bytes."""
        original = build_docx(["Text (1)."])
        result = assembler.assemble(original, [])

        assert result.content is original
        assert not result.fell_back

    def test_swap_does_not_interfere(self, assembler):
        """Test swapped markers do not overwrite each other."""
        original = build_docx(["Intro cites (1) and (2).", "More (2)."])
        result = assembler.assemble(
            original, [op("(1)", "(2)"), op("(2)", "(1)")], mode=PatchMode.CLEAN, timestamp=WHEN
        )

        assert body_texts(result.content) == ["Intro cites (2) and (1).", "More (1)."]
        assert len(result.applied) == 2

    def test_run_spanning_match_in_document(self, assembler):
        """Test a marker split across runs is replaced."""
        original = build_docx([["As argued (Smi", ("th, 2020)", True), " before."]])
        result = assembler.assemble(original, [op("(Smith, 2020)", "[3]")], mode=PatchMode.CLEAN)

        assert body_texts(result.content) == ["As argued [3] before."]

    def test_tracked_output(self, assembler):
        """Test tracked output carries revision marks and document properties."""
        original = build_docx(["See (1) and (1)."])
        revision = open_docx(original).core_properties.revision

        result = assembler.assemble(
            original, [op("(1)", "[1]", mode=PatchMode.TRACKED)], mode=PatchMode.TRACKED, timestamp=WHEN
        )

        document = open_docx(result.content)
        body = document.element.body
        deletions = list(body.iter(qn("w:del")))
        insertions = list(body.iter(qn("w:ins")))
        assert len(deletions) == 2 and len(insertions) == 2
        assert {d.get(qn("w:author")) for d in deletions + insertions} == {"Test Author"}
        assert {d.get(qn("w:date")) for d in deletions} == {"2026-03-01T12:30:00Z"}
        assert [t.text for t in body.iter(qn("w:delText"))] == ["(1)", "(1)"]
        ids = [el.get(qn("w:id")) for el in deletions + insertions]
        assert len(set(ids)) == len(ids)

        assert body_texts(result.content) == ["See [1] and [1]."]
        assert document.settings.element.find(qn("w:trackRevisions")) is not None
        assert document.core_properties.last_modified_by == "Test Author"
        assert document.core_properties.revision == revision + 1

    def test_clean_output_has_no_revision_marks(self, assembler):
        """Test clean output has no revision marks."""
        original = build_docx(["See (1)."])
        result = assembler.assemble(original, [op("(1)", "[1]")], mode=PatchMode.CLEAN)

        document = open_docx(result.content)
        assert next(document.element.body.iter(qn("w:ins")), None) is None
        assert document.settings.element.find(qn("w:trackRevisions")) is None

    def test_missing_text_is_skipped(self, assembler):
        """Test an absent search text is reported as skipped."""
        original = build_docx(["Nothing here."])
        result = assembler.assemble(original, [op("(99)", "[99]")], mode=PatchMode.CLEAN)

        assert result.applied == []
        assert result.skipped[0].reason is SkipReason.SEARCH_TEXT_ABSENT
        assert result.content == original

    def test_alternate_spelling_used_when_original_absent(self, assembler):
        """Test an equivalent spelling is used when the original is absent."""
        original = build_docx(["Shown in [1,2]."])
        operation = op("(1, 2)", "(2, 3)", alternates=tuple(citation_format_variants("(1, 2)")))
        result = assembler.assemble(original, [operation], mode=PatchMode.CLEAN)

        assert body_texts(result.content) == ["Shown in (2, 3)."]

    def test_scopes_are_separated(self, assembler):
        """Test in-text and bibliography operations stay in their sections."""
        original = build_docx(
            ["Smith (2020) argued."],
            references=["Smith (2020). A title."],
        )
        operations = [
            op("Smith (2020)", "[1]", subject_key="citation:c1"),
            op("A title.", "A better title.", scope=OperationScope.REFERENCE_SECTION),
        ]
        result = assembler.assemble(original, operations, mode=PatchMode.CLEAN)

        assert body_texts(result.content) == [
            "[1] argued.",
            "References",
            "Smith (2020). A better title.",
        ]

    def test_reference_deletion_removes_paragraph(self, assembler):
        """Test a deleted entry's paragraph is removed in clean mode."""
        original = build_docx(["Body."], references=["Alpha, A. (2001). One.", "Beta, B. (2002). Two."])
        operation = op("Beta, B. (2002). Two.", None, scope=OperationScope.REFERENCE_SECTION,
                       change_type=ChangeType.DELETE)
        result = assembler.assemble(original, [operation], mode=PatchMode.CLEAN)

        assert body_texts(result.content) == ["Body.", "References", "Alpha, A. (2001). One."]

    def test_reference_deletion_marks_paragraph_tracked(self, assembler):
        """Test a deleted entry's paragraph mark is tracked."""
        original = build_docx(["Body."], references=["Alpha, A. (2001). One.", "Beta, B. (2002). Two."])
        operation = op("Beta, B. (2002). Two.", None, scope=OperationScope.REFERENCE_SECTION,
                       mode=PatchMode.TRACKED, change_type=ChangeType.DELETE)
        result = assembler.assemble(original, [operation], mode=PatchMode.TRACKED, timestamp=WHEN)

        paragraphs = list(open_docx(result.content).element.body.iter(qn("w:p")))
        last = paragraphs[-1]
        mark = last.find(f"{qn('w:pPr')}/{qn('w:rPr')}/{qn('w:del')}")
        assert mark is not None
        assert last.find(f".//{qn('w:delText')}").text == "Beta, B. (2002). Two."

    def test_size_limit(self):
        """Test oversized containers are refused."""
        original = build_docx(["Body (1)."])
        assembler = DocumentAssembler(Config(max_document_size=100))
        with pytest.raises(ValidationError):
            assembler.assemble(original, [op("(1)", "[1]")])


class TestFallback:
    """Failures return the input untouched."""

    def test_unreadable_container(self, assembler):
        """Test an unreadable container falls back to the input."""
        original = b"not a zip archive"
        result = assembler.assemble(original, [op("(1)", "[1]")])

        assert result.fell_back
        assert result.content == original

    def test_unreadable_container_raises_apply_error(self):
        """Test opening a non-DOCX payload raises ApplyError."""
        with pytest.raises(ApplyError):
            DocumentAssembler._open(b"not a zip archive")

    def test_failure_mid_pass(self, assembler, monkeypatch):
        """Test an error during the pass falls back to the input."""
        original = build_docx(["See (1)."])

        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(DocumentAssembler, "_apply_scope", explode)
        result = assembler.assemble(original, [op("(1)", "[1]")])

        assert result.fell_back
        assert result.content == original
        assert result.applied == []


class TestReorder:
    """Bibliography reordering."""

    def references(self):
        return [
            ReferenceEntry(id="a", document_id="d", sort_key=1,
                           formatted={"formatted_apa": "Alpha, A. (2001). One."}),
            ReferenceEntry(id="b", document_id="d", sort_key=2,
                           formatted={"formatted_apa": "Beta, B. (2002). Two."}),
            ReferenceEntry(id="c", document_id="d", sort_key=3,
                           formatted={"formatted_apa": "Gamma, C. (2003). Three."}),
        ]

    def plan(self):
        return ReferenceOrderPlanner(StyleRegistry.default()).plan(self.references(), True, "APA")

    def test_paragraphs_follow_plan(self, assembler):
        """Test bibliography paragraphs follow the plan."""
        original = build_docx(
            ["Body."],
            references=["Gamma, C. (2003). Three.", "Alpha, A. (2001). One.", "Beta, B. (2002). Two."],
        )
        result = assembler.assemble(original, [], plan=self.plan(), mode=PatchMode.CLEAN)

        assert result.reordered == 3
        assert body_texts(result.content)[2:] == [
            "Alpha, A. (2001). One.",
            "Beta, B. (2002). Two.",
            "Gamma, C. (2003). Three.",
        ]

    def test_numbered_paragraphs_match_by_fingerprint(self, assembler):
        """Test numbered paragraphs are matched without their labels."""
        original = build_docx(
            ["Body."],
            references=["1. Beta, B. (2002). Two.", "2. Alpha, A. (2001). One."],
        )
        result = assembler.assemble(original, [], plan=self.plan(), mode=PatchMode.CLEAN)

        assert body_texts(result.content)[2:] == ["2. Alpha, A. (2001). One.", "1. Beta, B. (2002). Two."]

    def test_unmatched_paragraphs_keep_their_slot(self, assembler):
        """Test unmatched paragraphs keep their position."""
        original = build_docx(
            ["Body."],
            references=["Beta, B. (2002). Two.", "Unlisted entry.", "Alpha, A. (2001). One."],
        )
        result = assembler.assemble(original, [], plan=self.plan(), mode=PatchMode.CLEAN)

        assert body_texts(result.content)[2:] == [
            "Alpha, A. (2001). One.",
            "Unlisted entry.",
            "Beta, B. (2002). Two.",
        ]

    def test_fewer_than_two_matches_keeps_order(self, assembler):
        """Test a single match leaves the order alone."""
        original = build_docx(["Body."], references=["Alpha, A. (2001). One.", "Unrelated."])
        result = assembler.assemble(original, [], plan=self.plan(), mode=PatchMode.CLEAN)

        assert result.reordered == 0
        assert result.content == original

    def test_reorder_stops_at_next_heading(self, assembler):
        """Test reordering stops at the next heading."""
        original = build_docx(
            ["Body."],
            references=["Beta, B. (2002). Two.", "Alpha, A. (2001). One."],
        )
        document = open_docx(original)
        document.add_heading("Appendix", level=1)
        document.add_paragraph("Alpha, A. (2001). One. quoted again")
        buffer = BytesIO()
        document.save(buffer)

        result = assembler.assemble(buffer.getvalue(), [], plan=self.plan(), mode=PatchMode.CLEAN)

        assert body_texts(result.content)[2:] == [
            "Alpha, A. (2001). One.",
            "Beta, B. (2002). Two.",
            "Appendix",
            "Alpha, A. (2001). One. quoted again",
        ]
