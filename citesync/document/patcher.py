"""Exact text substitution across formatting-run boundaries.

Word splits visible text into ``w:t`` leaves inside ``w:r`` runs wherever the
formatting, spell-check state or edit session changes, so a citation such as
``(Smith, 2020)`` may be spread over three runs. The patcher flattens the
leaves of each paragraph into one character stream, finds the search text
there and edits the leaves in place, leaving run properties alone.
"""
import logging
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from docx.enum.text import WD_COLOR_INDEX
from docx.oxml import OxmlElement
from docx.oxml.ns import qn

from ..core.models import ChangeType, PatchMode

logger = logging.getLogger(__name__)

W_P = qn("w:p")
W_R = qn("w:r")
W_T = qn("w:t")
W_RPR = qn("w:rPr")
W_INS = qn("w:ins")
W_DEL = qn("w:del")
W_ID = qn("w:id")
XML_SPACE = "{http://www.w3.org/XML/1998/namespace}space"

HIGHLIGHT_COLOURS = {
    ChangeType.RENUMBER: WD_COLOR_INDEX.YELLOW,
    ChangeType.INTEXT_STYLE_CONVERSION: WD_COLOR_INDEX.TURQUOISE,
    ChangeType.REFERENCE_STYLE_CONVERSION: WD_COLOR_INDEX.TURQUOISE,
    ChangeType.REFERENCE_EDIT: WD_COLOR_INDEX.BRIGHT_GREEN,
    ChangeType.REORDER: WD_COLOR_INDEX.PINK,
}


@dataclass
class PatchResult:
    """Occurrences replaced and the paragraphs they were found in."""
    count: int = 0
    paragraphs: List = field(default_factory=list)


def max_revision_id(root) -> int:
    """Largest numeric ``w:id`` under ``root`` (0 when there is none)."""
    highest = 0
    for element in root.iter():
        value = element.get(W_ID)
        if value is not None and value.isdigit():
            highest = max(highest, int(value))
    return highest


def visible_text(paragraph) -> str:
    """Concatenated ``w:t`` text of a paragraph (deleted text excluded)."""
    return "".join(t.text or "" for t in paragraph.iter(W_T))


def _preserve(leaf) -> None:
    leaf.set(XML_SPACE, "preserve")


class RunSpanningPatcher:
    """Replaces text inside WordprocessingML trees, optionally as tracked revisions.

    Example:
        >>> patcher = RunSpanningPatcher("Citation Manager", "2026-01-01T00:00:00Z")
        >>> patcher.patch(document.element.body, "(1)", "[1]", PatchMode.TRACKED)
        PatchResult(count=1, paragraphs=[...])
    """

    def __init__(
        self,
        author: str,
        date: str,
        highlight: bool = False,
        start_id: int = 1,
    ):
        """Initialize patcher.

        Args:
            author: Author written on revision marks
            date: ISO 8601 timestamp written on revision marks
            highlight: Highlight inserted text by change type
            start_id: First revision id to hand out
        """
        self.author = author
        self.date = date
        self.highlight = highlight
        self._next_id = start_id
        self._insertions = set()

    def revision_mark(self, tag: str):
        """New ``w:ins``/``w:del`` element with a fresh id, author and date."""
        mark = OxmlElement(tag)
        mark.set(W_ID, str(self._next_id))
        mark.set(qn("w:author"), self.author)
        mark.set(qn("w:date"), self.date)
        self._next_id += 1
        return mark

    def patch(
        self,
        roots,
        search: str,
        replacement: Optional[str],
        mode: PatchMode = PatchMode.CLEAN,
        display_text: Optional[str] = None,
        change_type: Optional[ChangeType] = None,
    ) -> PatchResult:
        """Replace every occurrence of ``search`` under ``roots``.

        Args:
            roots: An element or iterable of elements (paragraphs, body, ...)
            search: Exact text to find
            replacement: New text (None or empty deletes)
            mode: CLEAN edits text in place, TRACKED emits w:del/w:ins marks
            display_text: Text shown inside the deletion mark (defaults to
                the matched text)
            change_type: Change type used to pick a highlight colour

        Returns:
            PatchResult with the number of occurrences replaced
        """
        result = PatchResult()
        if not search:
            return result
        replacement = replacement or ""
        if hasattr(roots, "tag"):
            roots = [roots]

        for paragraph, leaves in self._paragraph_leaves(roots):
            texts = [leaf.text or "" for leaf in leaves]
            stream = "".join(texts)
            if search not in stream:
                continue

            back_refs: List[Tuple[int, int]] = []
            for index, text in enumerate(texts):
                back_refs.extend((index, offset) for offset in range(len(text)))

            starts = []
            position = stream.find(search)
            while position != -1:
                starts.append(position)
                position = stream.find(search, position + len(search))

            for start in reversed(starts):
                first = back_refs[start]
                last = back_refs[start + len(search) - 1]
                if mode is PatchMode.TRACKED:
                    self._replace_tracked(
                        leaves, first, last, replacement,
                        display_text if display_text is not None else search,
                        change_type,
                    )
                else:
                    self._replace_clean(leaves, first, last, replacement)

            result.count += len(starts)
            result.paragraphs.append(paragraph)

        if result.count:
            logger.debug(f"Replaced {result.count} occurrence(s) of {search!r} ({mode.value})")
        return result

    def _paragraph_leaves(self, roots: Iterable) -> List[Tuple[object, List]]:
        """Group ``w:t`` leaves by nearest paragraph, in document order."""
        groups: Dict[object, List] = {}
        order = []
        seen = set()
        for root in roots:
            for leaf in root.iter(W_T):
                if leaf in seen or self._inside_own_insertion(leaf):
                    continue
                seen.add(leaf)
                paragraph = next(leaf.iterancestors(W_P), None)
                key = paragraph if paragraph is not None else root
                if key not in groups:
                    groups[key] = []
                    order.append(key)
                groups[key].append(leaf)
        return [(key, groups[key]) for key in order]

    def _inside_own_insertion(self, leaf) -> bool:
        return any(ins in self._insertions for ins in leaf.iterancestors(W_INS))

    @staticmethod
    def _replace_clean(leaves, first, last, replacement: str) -> None:
        first_index, first_offset = first
        last_index, last_offset = last
        head = leaves[first_index]
        text = head.text or ""

        if first_index == last_index:
            head.text = text[:first_offset] + replacement + text[last_offset + 1:]
            _preserve(head)
            return

        head.text = text[:first_offset] + replacement
        _preserve(head)
        for leaf in leaves[first_index + 1:last_index]:
            leaf.text = ""
            _preserve(leaf)
        tail = leaves[last_index]
        tail.text = (tail.text or "")[last_offset + 1:]
        _preserve(tail)

    def _replace_tracked(
        self,
        leaves,
        first,
        last,
        replacement: str,
        deleted_text: str,
        change_type: Optional[ChangeType],
    ) -> None:
        first_index, first_offset = first
        last_index, last_offset = last
        head = leaves[first_index]
        text = head.text or ""

        if first_index == last_index:
            suffix = text[last_offset + 1:]
        else:
            suffix = ""
            for leaf in leaves[first_index + 1:last_index]:
                leaf.text = ""
                _preserve(leaf)
            tail = leaves[last_index]
            tail.text = (tail.text or "")[last_offset + 1:]
            _preserve(tail)

        head.text = text[:first_offset]
        _preserve(head)

        run = head.getparent()
        rPr = run.find(W_RPR) if run.tag == W_R else None

        # Children after the matched leaf move to a trailing run
        trailing = OxmlElement("w:r")
        if rPr is not None:
            trailing.append(deepcopy(rPr))
        if suffix:
            suffix_leaf = OxmlElement("w:t")
            suffix_leaf.text = suffix
            _preserve(suffix_leaf)
            trailing.append(suffix_leaf)
        for sibling in list(head.itersiblings()):
            trailing.append(sibling)

        deletion = self.revision_mark("w:del")
        deleted_run = OxmlElement("w:r")
        if rPr is not None:
            deleted_run.append(deepcopy(rPr))
        deleted_leaf = OxmlElement("w:delText")
        deleted_leaf.text = deleted_text
        _preserve(deleted_leaf)
        deleted_run.append(deleted_leaf)
        deletion.append(deleted_run)

        anchor = run
        anchor.addnext(deletion)
        anchor = deletion

        if replacement:
            insertion = self.revision_mark("w:ins")
            inserted_run = OxmlElement("w:r")
            inserted_rPr = deepcopy(rPr) if rPr is not None else OxmlElement("w:rPr")
            colour = HIGHLIGHT_COLOURS.get(change_type) if self.highlight else None
            if colour is not None:
                inserted_rPr.highlight_val = colour
            if len(inserted_rPr) or rPr is not None:
                inserted_run.append(inserted_rPr)
            inserted_leaf = OxmlElement("w:t")
            inserted_leaf.text = replacement
            _preserve(inserted_leaf)
            inserted_run.append(inserted_leaf)
            insertion.append(inserted_run)
            anchor.addnext(insertion)
            anchor = insertion
            self._insertions.add(insertion)

        if len(trailing) > (1 if rPr is not None else 0):
            anchor.addnext(trailing)
