"""Applies effective operations to a DOCX container."""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from io import BytesIO
from itertools import count
from typing import List, Optional, Sequence, Tuple

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from docx.oxml import OxmlElement
from docx.oxml.ns import qn

from ..config import Config
from ..core.models import EffectiveOperation, OperationScope, PatchMode
from ..exceptions import ApplyError, ValidationError
from ..reconcile.ordering import ReferenceOrderPlan
from ..reconcile.results import Skipped, SkipReason
from ..utils.citation_text import normalize_for_matching, strip_numbering_label
from .patcher import W_P, RunSpanningPatcher, max_revision_id, visible_text

logger = logging.getLogger(__name__)

W_RPR = qn("w:rPr")

# Private-use code points never typed into a manuscript
PLACEHOLDER_FENCE = "\uf8ff"
PLACEHOLDER_BASE = 0xE000
PLACEHOLDER_DIGITS = 0x1800

FALLBACK_FINGERPRINT_LENGTH = 25

# w:settings children that precede w:trackRevisions
SETTINGS_BEFORE_TRACK_REVISIONS = {
    qn("w:" + name) for name in (
        "writeProtection", "view", "zoom", "removePersonalInformation",
        "removeDateAndTime", "doNotDisplayPageBoundaries", "displayBackgroundShape",
        "printPostScriptOverText", "printFractionalCharacterWidth", "printFormsData",
        "embedTrueTypeFonts", "embedSystemFonts", "saveSubsetFonts", "saveFormsData",
        "mirrorMargins", "alignBordersAndEdges", "bordersDoNotSurroundHeader",
        "bordersDoNotSurroundFooter", "gutterAtTop", "hideSpellingErrors",
        "hideGrammaticalErrors", "activeWritingStyle", "proofState", "formsDesign",
        "attachedTemplate", "linkStyles", "stylePaneFormatFilter",
        "stylePaneSortMethod", "documentType", "mailMerge", "revisionView",
    )
}

# w:pPr children that follow w:rPr
PPR_AFTER_RPR = {qn("w:sectPr"), qn("w:pPrChange")}


def placeholder(n: int) -> str:
    """Unique token for the n-th operation of a pass."""
    digits = []
    while True:
        n, digit = divmod(n, PLACEHOLDER_DIGITS)
        digits.append(chr(PLACEHOLDER_BASE + digit))
        if not n:
            break
    return PLACEHOLDER_FENCE + "".join(reversed(digits)) + PLACEHOLDER_FENCE


@dataclass
class AssemblyResult:
    """Outcome of one patch pass.

    Attributes:
        content: Repackaged container (the input bytes on fallback)
        applied: Operations found and applied
        skipped: Operations whose text was not found
        fell_back: True when the pass failed and the input was returned
        reordered: Number of bibliography paragraphs placed by the reorder
    """
    content: bytes
    applied: List[EffectiveOperation] = field(default_factory=list)
    skipped: List[Skipped] = field(default_factory=list)
    fell_back: bool = False
    reordered: int = 0


class DocumentAssembler:
    """Drives the patcher over a container's body.

    In-text operations touch paragraphs before the bibliography heading and
    reference operations the paragraphs after it. Each scope runs in two
    phases: every original text is first swapped for a placeholder token,
    then every token is replaced with its final text, so one operation's
    output is never picked up by another operation's search.

    Example:
        >>> assembler = DocumentAssembler(Config())
        >>> result = assembler.assemble(original, operations, plan, PatchMode.TRACKED)
        >>> open("out.docx", "wb").write(result.content)
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()

    def assemble(
        self,
        original: bytes,
        operations: Sequence[EffectiveOperation],
        plan: Optional[ReferenceOrderPlan] = None,
        mode: PatchMode = PatchMode.TRACKED,
        author: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> AssemblyResult:
        """Apply operations (and an optional reorder) to a container.

        Args:
            original: Original container bytes
            operations: Ordered effective operations
            plan: Bibliography order plan, or None to keep the order
            mode: CLEAN or TRACKED output
            author: Revision author (defaults to the configured one)
            timestamp: Revision timestamp (defaults to now, UTC)

        Returns:
            AssemblyResult; on any failure the original bytes with fell_back=True

        Raises:
            ValidationError: If the container exceeds max_document_size
        """
        if not operations and plan is None:
            return AssemblyResult(content=original)

        if len(original) > self.config.max_document_size:
            raise ValidationError(
                f"Document is {len(original)} bytes "
                f"(limit {self.config.max_document_size})"
            )

        author = author or self.config.revision_author
        timestamp = timestamp or datetime.now(timezone.utc)

        try:
            return self._assemble(original, operations, plan, PatchMode(mode), author, timestamp)
        except ApplyError as e:
            logger.warning(f"Patch pass failed, returning the original document: {e}")
        except Exception as e:
            logger.error(f"Unexpected error in patch pass, returning the original document: {e}", exc_info=True)
        return AssemblyResult(content=original, fell_back=True)

    @staticmethod
    def _open(original: bytes):
        """Load a container, raising ApplyError when it is not a Word document."""
        try:
            return Document(BytesIO(original))
        except (PackageNotFoundError, KeyError, ValueError) as e:
            raise ApplyError(f"Not a readable DOCX container: {e}") from e

    def _assemble(
        self,
        original: bytes,
        operations: Sequence[EffectiveOperation],
        plan: Optional[ReferenceOrderPlan],
        mode: PatchMode,
        author: str,
        timestamp: datetime,
    ) -> AssemblyResult:
        document = self._open(original)
        body = document.element.body

        patcher = RunSpanningPatcher(
            author,
            timestamp.strftime("%Y-%m-%dT%H:%M:%SZ"),
            highlight=self.config.highlight_tracked_changes,
            start_id=max_revision_id(body) + 1,
        )

        paragraphs = list(body.iter(W_P))
        heading = self._find_bibliography_heading(paragraphs)
        if heading is None:
            logger.debug("No bibliography heading found, both scopes cover the whole body")
            in_text_roots = reference_roots = [body]
        else:
            split = paragraphs.index(heading)
            in_text_roots = paragraphs[:split]
            reference_roots = paragraphs[split + 1:]

        result = AssemblyResult(content=original)
        tokens = count()
        for scope, roots in (
            (OperationScope.IN_TEXT, in_text_roots),
            (OperationScope.REFERENCE_SECTION, reference_roots),
        ):
            scoped = [op for op in operations if op.scope is scope]
            if scoped:
                self._apply_scope(patcher, roots, scoped, mode, tokens, result)

        if plan is not None:
            if heading is None:
                logger.warning("Bibliography order changed but no bibliography heading was found")
            else:
                result.reordered = self._reorder(heading, plan)

        if not result.applied and not result.reordered:
            logger.info("Nothing to apply, returning the original document")
            return result

        if mode is PatchMode.TRACKED:
            self._enable_track_revisions(document)
            properties = document.core_properties
            properties.last_modified_by = author
            properties.modified = timestamp.replace(tzinfo=None)
            properties.revision = (properties.revision or 0) + 1

        output = BytesIO()
        document.save(output)
        result.content = output.getvalue()
        logger.info(
            f"Applied {len(result.applied)} operation(s) ({mode.value}), "
            f"{len(result.skipped)} not found, {result.reordered} reference(s) reordered"
        )
        return result

    def _apply_scope(
        self,
        patcher: RunSpanningPatcher,
        roots: List,
        operations: List[EffectiveOperation],
        mode: PatchMode,
        tokens,
        result: AssemblyResult,
    ) -> None:
        pending: List[Tuple[EffectiveOperation, str, str]] = []
        for op in operations:
            token = placeholder(next(tokens))
            for candidate in (op.original_text,) + tuple(op.alternates):
                if patcher.patch(roots, candidate, token, PatchMode.CLEAN).count:
                    pending.append((op, token, candidate))
                    break
            else:
                logger.debug(f"{op.subject_key}: {op.original_text!r} not found in document")
                result.skipped.append(
                    Skipped(op.subject_key, SkipReason.SEARCH_TEXT_ABSENT, repr(op.original_text))
                )

        for op, token, matched in pending:
            patched = patcher.patch(
                roots, token, op.final_text, mode,
                display_text=matched, change_type=op.change_type,
            )
            if op.is_deletion and op.scope is OperationScope.REFERENCE_SECTION:
                self._remove_emptied_paragraphs(patcher, patched.paragraphs, mode)
            result.applied.append(op)

    def _find_bibliography_heading(self, paragraphs: List):
        names = {name.strip().casefold() for name in self.config.bibliography_headings}
        for paragraph in paragraphs:
            text = visible_text(paragraph).strip().rstrip(":").strip().casefold()
            if text and text in names:
                return paragraph
        return None

    @staticmethod
    def _remove_emptied_paragraphs(patcher: RunSpanningPatcher, paragraphs: List, mode: PatchMode) -> None:
        for paragraph in paragraphs:
            if visible_text(paragraph).strip():
                continue
            if mode is PatchMode.CLEAN:
                parent = paragraph.getparent()
                if parent is not None:
                    parent.remove(paragraph)
                continue

            pPr = paragraph.get_or_add_pPr()
            rPr = pPr.find(W_RPR)
            if rPr is None:
                rPr = OxmlElement("w:rPr")
                successor = next((c for c in pPr if c.tag in PPR_AFTER_RPR), None)
                if successor is not None:
                    successor.addprevious(rPr)
                else:
                    pPr.append(rPr)
            rPr.insert(0, patcher.revision_mark("w:del"))

    @staticmethod
    def _is_heading(paragraph) -> bool:
        style = paragraph.style or ""
        return style.lower().startswith("heading") or style.lower() == "title"

    def _reorder(self, heading, plan: ReferenceOrderPlan) -> int:
        """Rearrange the paragraphs under the heading to match the plan.

        Returns:
            Number of paragraphs placed (0 when fewer than two matched)
        """
        block = []
        sibling = heading.getnext()
        while sibling is not None and sibling.tag == W_P and not self._is_heading(sibling):
            block.append(sibling)
            sibling = sibling.getnext()

        texts = [normalize_for_matching(strip_numbering_label(visible_text(p))) for p in block]
        claimed = set()
        matched: List[int] = []
        for entry in sorted(plan.entries, key=lambda e: e.target_position):
            index = next(
                (i for i, text in enumerate(texts) if i not in claimed and text.startswith(entry.fingerprint)),
                None,
            )
            if index is None:
                short = entry.fingerprint[:FALLBACK_FINGERPRINT_LENGTH]
                index = next(
                    (i for i, text in enumerate(texts) if i not in claimed and short in text),
                    None,
                )
            if index is None:
                logger.debug(f"No bibliography paragraph matches reference {entry.reference_id}")
                continue
            claimed.add(index)
            matched.append(index)

        if len(matched) < 2:
            logger.info(f"Only {len(matched)} bibliography paragraph(s) matched, keeping the order")
            return 0

        arranged = list(block)
        for slot, index in zip(sorted(matched), matched):
            arranged[slot] = block[index]

        anchor = heading
        for paragraph in arranged:
            anchor.addnext(paragraph)
            anchor = paragraph
        return len(matched)

    @staticmethod
    def _enable_track_revisions(document) -> None:
        settings = document.settings.element
        if settings.find(qn("w:trackRevisions")) is not None:
            return
        track = OxmlElement("w:trackRevisions")
        predecessors = [c for c in settings if c.tag in SETTINGS_BEFORE_TRACK_REVISIONS]
        if predecessors:
            predecessors[-1].addnext(track)
        else:
            settings.insert(0, track)
