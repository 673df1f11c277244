"""Tests for run-spanning text substitution."""

import pytest
from docx.oxml.ns import qn

from citesync.core.models import ChangeType, PatchMode
from citesync.document.patcher import RunSpanningPatcher, max_revision_id, visible_text

from conftest import paragraph_xml

XML_SPACE = "{http://www.w3.org/XML/1998/namespace}space"


@pytest.fixture
def patcher():
    return RunSpanningPatcher("Test Author", "2026-01-01T00:00:00Z", start_id=10)


def run_texts(paragraph):
    return [run.findtext(qn("w:t")) for run in paragraph.findall(qn("w:r"))]


class TestCleanMode:
    """Accepted substitutions."""

    def test_single_leaf(self, patcher):
        """Test replacement within one text leaf."""
        paragraph = paragraph_xml("As shown (1), and again (1).")
        result = patcher.patch(paragraph, "(1)", "[1]")

        assert result.count == 2
        assert visible_text(paragraph) == "As shown [1], and again [1]."

    def test_spans_three_runs(self, patcher):
        """Test replacement across three runs."""
        paragraph = paragraph_xml("Prior work (Smi", ("th, 20", True), "20) shows")
        result = patcher.patch(paragraph, "(Smith, 2020)", "[4]")

        assert result.count == 1
        assert run_texts(paragraph) == ["Prior work [4]", "", " shows"]
        bold_run = paragraph.findall(qn("w:r"))[1]
        assert bold_run.find(qn("w:rPr")).find(qn("w:b")) is not None

    def test_no_match_leaves_tree_unchanged(self, patcher):
        """Test a missing search text changes nothing."""
        paragraph = paragraph_xml("Nothing ", "to see")
        before = [t.text for t in paragraph.iter(qn("w:t"))]

        result = patcher.patch(paragraph, "(3)", "[3]")

        assert result.count == 0
        assert result.paragraphs == []
        assert [t.text for t in paragraph.iter(qn("w:t"))] == before

    def test_deletion_removes_text(self, patcher):
        """Test a deletion removes the text."""
        paragraph = paragraph_xml("Claim (2) holds.")
        patcher.patch(paragraph, " (2)", None)

        assert visible_text(paragraph) == "Claim holds."

    def test_modified_leaves_preserve_space(self, patcher):
        """Test modified leaves preserve whitespace."""
        paragraph = paragraph_xml("a (1) b")
        patcher.patch(paragraph, "(1)", "[1]")

        assert paragraph.find(f"{qn('w:r')}/{qn('w:t')}").get(XML_SPACE) == "preserve"

    def test_multiple_roots_and_matches_per_paragraph(self, patcher):
        """Test several roots and matches per paragraph."""
        first = paragraph_xml("(1) and (1)")
        second = paragraph_xml("(", "1)")
        result = patcher.patch([first, second], "(1)", "(2)")

        assert result.count == 3
        assert len(result.paragraphs) == 2
        assert visible_text(second) == "(2)"

    def test_two_leaves_collapse_into_first(self, patcher):
        """Test a two-leaf match lands in the first leaf."""
        paragraph = paragraph_xml("(", ("1)", True))
        result = patcher.patch(paragraph, "(1)", "(2)")

        assert result.count == 1
        assert run_texts(paragraph) == ["(2)", ""]
        first, second = paragraph.findall(qn("w:r"))
        assert first.find(qn("w:rPr")) is None
        properties = second.find(qn("w:rPr"))
        assert [child.tag for child in properties] == [qn("w:b")]

    def test_empty_search_is_ignored(self, patcher):
        """Test an empty search text is ignored."""
        assert patcher.patch(paragraph_xml("text"), "", "x").count == 0


class TestTrackedMode:
    """Revision-marked substitutions."""

    def test_single_leaf_markup(self, patcher):
        """Test tracked markup for one leaf."""
        paragraph = paragraph_xml(("See (1) here", True))
        result = patcher.patch(paragraph, "(1)", "[1]", PatchMode.TRACKED)

        assert result.count == 1
        children = [child.tag for child in paragraph]
        assert children == [qn("w:r"), qn("w:del"), qn("w:ins"), qn("w:r")]

        head, deletion, insertion, tail = list(paragraph)
        assert head.findtext(qn("w:t")) == "See "
        assert deletion.get(qn("w:author")) == "Test Author"
        assert deletion.get(qn("w:date")) == "2026-01-01T00:00:00Z"
        assert deletion.find(f"{qn('w:r')}/{qn('w:delText')}").text == "(1)"
        assert insertion.find(f"{qn('w:r')}/{qn('w:t')}").text == "[1]"
        assert tail.findtext(qn("w:t")) == " here"

        for run in (deletion.find(qn("w:r")), insertion.find(qn("w:r")), tail):
            assert run.find(qn("w:rPr")).find(qn("w:b")) is not None

        assert visible_text(paragraph) == "See [1] here"

    def test_revision_ids_unique_and_increasing(self, patcher):
        """Test revision ids are unique and increasing."""
        paragraph = paragraph_xml("(1) then (1)")
        patcher.patch(paragraph, "(1)", "[1]", PatchMode.TRACKED)

        ids = [el.get(qn("w:id")) for el in paragraph if el.tag in (qn("w:del"), qn("w:ins"))]
        assert len(ids) == 4
        assert len(set(ids)) == 4
        assert min(int(i) for i in ids) == 10
        assert max_revision_id(paragraph) == 13

    def test_display_text_shown_in_deletion(self, patcher):
        """Test the matched text is shown in the deletion."""
        paragraph = paragraph_xml("x TOKEN y")
        patcher.patch(paragraph, "TOKEN", "[2]", PatchMode.TRACKED, display_text="(2)")

        assert paragraph.find(f".//{qn('w:delText')}").text == "(2)"
        assert visible_text(paragraph) == "x [2] y"

    def test_deletion_has_no_insertion(self, patcher):
        """Test a deletion has no insertion."""
        paragraph = paragraph_xml("Claim (2) holds.")
        patcher.patch(paragraph, "(2)", None, PatchMode.TRACKED)

        assert paragraph.find(qn("w:ins")) is None
        assert paragraph.find(qn("w:del")) is not None
        assert visible_text(paragraph) == "Claim  holds."

    def test_spanning_match(self, patcher):
        """Test tracked replacement across runs."""
        paragraph = paragraph_xml("Prior (Smi", ("th, 2020) work", True))
        patcher.patch(paragraph, "(Smith, 2020)", "[4]", PatchMode.TRACKED)

        assert visible_text(paragraph) == "Prior [4] work"
        assert paragraph.find(f".//{qn('w:delText')}").text == "(Smith, 2020)"

    def test_own_insertions_not_rematched(self, patcher):
        """Test inserted text is not matched again."""
        paragraph = paragraph_xml("(1)")
        patcher.patch(paragraph, "(1)", "(1)(1)", PatchMode.TRACKED)

        assert patcher.patch(paragraph, "(1)", "[1]", PatchMode.TRACKED).count == 0

    def test_highlight_by_change_type(self):
        """Test highlight colour per change type."""
        patcher = RunSpanningPatcher("A", "2026-01-01T00:00:00Z", highlight=True)
        paragraph = paragraph_xml("see (1)")
        patcher.patch(paragraph, "(1)", "(2)", PatchMode.TRACKED, change_type=ChangeType.RENUMBER)

        highlight = paragraph.find(f".//{qn('w:ins')}//{qn('w:highlight')}")
        assert highlight is not None
        assert highlight.get(qn("w:val")) == "yellow"
