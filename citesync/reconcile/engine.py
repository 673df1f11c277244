"""Reconciliation of a document's change log into effective operations.

The change log holds every edit ever made to a document's citations and
bibliography, including superseded and reverted ones. At export time the
engine folds it into at most one original → final substitution per logical
subject:

- ``citation:<id>`` for edits bound to a known citation instance, and for
  text-based edits whose matched instance has reverted history,
- ``text:<before>`` for text-based edits matched to instances by content,
- ``reference:<id>`` for bibliography entry edits,
- ``reference-text:<before>`` for bibliography edits with no entry id.

The engine is pure: it never mutates its inputs and returns the same result
for the same log.
"""
import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..config import Config
from ..core.models import (
    ChangeRecord,
    ChangeType,
    CitationInstance,
    EffectiveOperation,
    OperationScope,
    PatchMode,
    ReferenceEditMetadata,
    ReferenceEntry,
    RenumberMetadata,
)
from ..core.styles import StyleRegistry
from ..exceptions import ConfigurationError
from ..utils.citation_text import citation_format_variants
from .results import Outcome, ReconciliationResult, Resolved, Skipped, SkipReason

logger = logging.getLogger(__name__)

BOUND = "bound"
TEXT = "text"
REFERENCE = "reference"
ORDER = "order"


def classify(record: ChangeRecord) -> str:
    """Bucket a record: bound, text, reference or order."""
    if record.change_type is ChangeType.REORDER:
        return ORDER
    if record.change_type is ChangeType.RENUMBER and isinstance(record.metadata, RenumberMetadata):
        if record.metadata.reference_id is not None:
            return ORDER
    if record.change_type in (ChangeType.REFERENCE_EDIT, ChangeType.REFERENCE_STYLE_CONVERSION):
        return REFERENCE
    if record.change_type is ChangeType.DELETE and record.reference_id is not None:
        return REFERENCE
    return TEXT if record.is_text_based else BOUND


def affects_order(record: ChangeRecord) -> bool:
    """True when an active record changes bibliography order or membership."""
    if record.change_type is ChangeType.REORDER:
        return True
    if record.change_type is ChangeType.DELETE and record.reference_id is not None:
        return True
    if isinstance(record.metadata, RenumberMetadata):
        return record.metadata.changes_order
    return False


def _camel(column: str) -> str:
    head, *rest = column.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _by_time(records: List[ChangeRecord]) -> List[ChangeRecord]:
    return sorted(records, key=lambda r: (r.applied_at or 0, r.id))


class ReconciliationEngine:
    """Folds active and reverted change records into effective operations.

    Example:
        >>> engine = ReconciliationEngine(StyleRegistry.default())
        >>> result = engine.reconcile("doc-1", active, reverted, citations, references, "APA")
        >>> [op.original_text for op in result.operations]
    """

    def __init__(
        self,
        style_registry: StyleRegistry,
        max_chain_hops: int = 64,
        max_citation_range: int = 100,
    ):
        """Initialize engine.

        Args:
            style_registry: Registry resolving the document style to a column
            max_chain_hops: Upper bound on text-map hops per subject
            max_citation_range: Widest numeric range expanded for alternates
        """
        self.style_registry = style_registry
        self.max_chain_hops = max_chain_hops
        self.max_citation_range = max_citation_range

    @classmethod
    def from_config(cls, config: Config, style_registry: StyleRegistry) -> "ReconciliationEngine":
        return cls(
            style_registry,
            max_chain_hops=config.max_chain_hops,
            max_citation_range=config.max_citation_range,
        )

    def reconcile(
        self,
        document_id: str,
        active: Sequence[ChangeRecord],
        reverted: Sequence[ChangeRecord] = (),
        citations: Sequence[CitationInstance] = (),
        references: Sequence[ReferenceEntry] = (),
        style: Optional[str] = None,
        mode: PatchMode = PatchMode.TRACKED,
    ) -> ReconciliationResult:
        """Compute the effective operations of one document.

        Args:
            document_id: Document being exported
            active: Active change records
            reverted: Reverted change records (used to recover origins)
            citations: Current citation instances
            references: Current bibliography entries
            style: Raw style label of the document
            mode: Output form stamped on every operation

        Returns:
            ReconciliationResult with operations in application order
        """
        records = sorted(
            (r for r in active if r.document_id == document_id and not r.is_reverted),
            key=lambda r: (r.applied_at or 0, r.id),
        )
        result = ReconciliationResult(document_id=document_id)
        result.order_changed = any(affects_order(r) for r in records)

        buckets: Dict[str, List[ChangeRecord]] = {BOUND: [], TEXT: [], REFERENCE: [], ORDER: []}
        for record in records:
            buckets[classify(record)].append(record)

        text_map = self._build_text_map(buckets[TEXT])
        claimed: Dict[Tuple[OperationScope, str], str] = {}
        seen: Set[str] = set()

        def emit(outcome: Outcome) -> None:
            if isinstance(outcome, Resolved):
                op = outcome.operation
                if op.subject_key in seen:
                    return
                if op.final_text == op.original_text:
                    outcome = Skipped(op.subject_key, SkipReason.NO_CHANGE, repr(op.original_text))
                elif (op.scope, op.original_text) in claimed:
                    outcome = Skipped(
                        op.subject_key,
                        SkipReason.DUPLICATE_ORIGIN,
                        f"{op.original_text!r} already handled by {claimed[op.scope, op.original_text]}",
                    )
                else:
                    claimed[op.scope, op.original_text] = op.subject_key
            seen.add(outcome.subject_key)
            self._log_outcome(document_id, outcome)
            result.add(outcome)

        reverted_by_citation: Dict[str, List[ChangeRecord]] = {}
        for record in _by_time(list(reverted)):
            if record.is_reverted and record.citation_id and record.change_type is ChangeType.RENUMBER:
                reverted_by_citation.setdefault(record.citation_id, []).append(record)

        absorbed: Set[str] = set()
        bound_outcomes = self._resolve_bound(
            buckets[BOUND], buckets[TEXT], reverted_by_citation, citations, text_map, mode, absorbed
        )
        for outcome in bound_outcomes:
            emit(outcome)

        bound_ids = {r.citation_id for r in buckets[BOUND]}
        text_outcomes = self._resolve_text_based(
            buckets[TEXT], reverted_by_citation, citations, bound_ids, text_map, mode, absorbed
        )
        for outcome in text_outcomes:
            emit(outcome)

        for outcome in self._resolve_references(buckets[REFERENCE], references, style, mode):
            emit(outcome)

        logger.info(
            f"[{document_id}] reconciled {len(records)} active changes into "
            f"{len(result.operations)} operations ({len(result.skipped)} skipped, "
            f"order changed: {result.order_changed})"
        )
        return result

    # ------------------------------------------------------------------
    # Citation-bound edits
    # ------------------------------------------------------------------

    def _resolve_bound(
        self,
        records: List[ChangeRecord],
        text_records: List[ChangeRecord],
        reverted_by_citation: Dict[str, List[ChangeRecord]],
        citations: Sequence[CitationInstance],
        text_map: Dict[str, str],
        mode: PatchMode,
        absorbed: Set[str],
    ) -> List[Outcome]:
        groups: "OrderedDict[str, List[ChangeRecord]]" = OrderedDict()
        for record in records:
            groups.setdefault(record.citation_id, []).append(record)

        text_producers = [r for r in text_records if r.before_text and not r.is_deletion]

        instances = {c.id: c for c in citations}
        ordered_ids = sorted(
            groups,
            key=lambda cid: (
                0 if cid in instances else 1,
                instances[cid].sort_key() if cid in instances else (0, 0, ""),
                groups[cid][0].applied_at or 0,
            ),
        )

        return [
            self._resolve_instance(
                cid,
                groups[cid],
                instances.get(cid),
                _by_time(reverted_by_citation.get(cid, []) + text_producers),
                text_map,
                mode,
                absorbed,
            )
            for cid in ordered_ids
        ]

    def _resolve_instance(
        self,
        citation_id: str,
        records: List[ChangeRecord],
        instance: Optional[CitationInstance],
        producers: List[ChangeRecord],
        text_map: Dict[str, str],
        mode: PatchMode,
        absorbed: Set[str],
    ) -> Outcome:
        key = f"citation:{citation_id}"
        first, last = records[0], records[-1]

        if not first.before_text:
            return Skipped(key, SkipReason.MISSING_ORIGINAL_TEXT, f"change {first.id} has no before text")
        traced = self._recover_origin(first.before_text, first.applied_at, producers)
        if traced is None:
            return Skipped(key, SkipReason.CHAIN_LIMIT, f"no bounded history behind {first.before_text!r}")
        origin, used = traced
        merged = tuple(r.id for r in used if not r.is_reverted)
        absorbed.update(merged)

        final: Optional[str] = None
        if not last.is_deletion:
            final = last.after_text
            if instance is not None and final != instance.raw_text:
                walked = self._walk_to_present(final, instance.raw_text, text_map)
                if walked is None:
                    return Skipped(
                        key,
                        SkipReason.CHAIN_LIMIT,
                        f"no consistent chain from {final!r} to {instance.raw_text!r}",
                    )
                final = walked

        return Resolved(EffectiveOperation(
            subject_key=key,
            original_text=origin,
            final_text=final,
            mode=mode,
            scope=OperationScope.IN_TEXT,
            change_type=last.change_type,
            source_ids=merged + tuple(r.id for r in records),
            alternates=tuple(citation_format_variants(origin, self.max_citation_range)),
        ))

    def _recover_origin(
        self,
        before: str,
        applied_at: Optional[int],
        producers: List[ChangeRecord],
    ) -> Optional[Tuple[str, List[ChangeRecord]]]:
        """Pristine text of an instance, walking its history backwards.

        ``producers`` are earlier records that may have turned some older text
        into ``before``: reverted renumbers of the instance and, for bound
        instances, text-based edits. A reverted producer's output never
        reached the container; a text-based producer's output was applied
        together with the later edit. Either way the producer's before text is
        the one to search for. Each step moves strictly back in time.

        Returns:
            ``(origin, producers used)``, or None past the hop bound
        """
        origin = before
        limit = applied_at or 0
        used: List[ChangeRecord] = []
        while True:
            producer = next(
                (r for r in reversed(producers)
                 if (r.applied_at or 0) < limit and r.after_text == origin and r.before_text),
                None,
            )
            if producer is None:
                return origin, used
            if len(used) >= self.max_chain_hops:
                return None
            logger.debug(f"Origin {origin!r} came from change {producer.id}, using {producer.before_text!r}")
            used.append(producer)
            origin = producer.before_text
            limit = producer.applied_at or 0

    def _walk_to_present(self, start: str, present: str, text_map: Dict[str, str]) -> Optional[str]:
        """Follow the text map from ``start`` until it reads ``present``.

        Stops at the first value equal to the present text. A dead end keeps
        ``start``; revisiting a value or exceeding the hop bound returns None.
        """
        value = start
        visited = {start}
        hops = 0
        while value != present:
            following = text_map.get(value)
            if following is None:
                logger.debug(f"Chain from {start!r} dead-ends at {value!r}, keeping {start!r}")
                return start
            hops += 1
            if following in visited or hops > self.max_chain_hops:
                return None
            visited.add(following)
            value = following
        return value

    # ------------------------------------------------------------------
    # Text-based edits
    # ------------------------------------------------------------------

    @staticmethod
    def _build_text_map(records: List[ChangeRecord]) -> Dict[str, str]:
        text_map: Dict[str, str] = {}
        for record in records:
            if record.before_text and not record.is_deletion:
                text_map[record.before_text] = record.after_text
        return text_map

    def _resolve_text_based(
        self,
        records: List[ChangeRecord],
        reverted_by_citation: Dict[str, List[ChangeRecord]],
        citations: Sequence[CitationInstance],
        bound_ids: Set[str],
        text_map: Dict[str, str],
        mode: PatchMode,
        absorbed: Set[str],
    ) -> List[Outcome]:
        groups: "OrderedDict[str, List[ChangeRecord]]" = OrderedDict()
        for record in records:
            if not record.before_text:
                logger.debug(f"Text-based change {record.id} has no before text, ignoring")
                continue
            groups.setdefault(record.before_text, []).append(record)

        unbound = sorted((c for c in citations if c.id not in bound_ids), key=lambda c: c.sort_key())
        present = {c.raw_text for c in unbound}
        match_by_content = bool(citations)

        outcomes: List[Outcome] = []
        for before, group in groups.items():
            key = f"text:{before}"
            first, last = group[0], group[-1]
            if last.is_deletion:
                final = None
            elif match_by_content:
                final = self._walk_to_instance(before, present, text_map)
                if isinstance(final, Skipped):
                    if final.reason is SkipReason.UNMATCHED_INSTANCE and all(r.id in absorbed for r in group):
                        logger.debug(f"{key} folded into a citation-bound change")
                        continue
                    outcomes.append(Skipped(key, final.reason, final.detail))
                    continue
            else:
                final = text_map[before]

            # Matched instances whose own reverted renumbers produced ``before``
            # are searched for under their pristine text.
            origins: "OrderedDict[str, str]" = OrderedDict()
            if final is not None:
                for citation in unbound:
                    if citation.raw_text != final:
                        continue
                    traced = self._recover_origin(
                        before, first.applied_at, reverted_by_citation.get(citation.id, [])
                    )
                    if traced is None:
                        outcomes.append(Skipped(
                            f"citation:{citation.id}", SkipReason.CHAIN_LIMIT,
                            f"no bounded history behind {before!r}",
                        ))
                        continue
                    origins.setdefault(traced[0], f"citation:{citation.id}")
            if not origins:
                origins[before] = key

            for origin, subject_key in origins.items():
                outcomes.append(Resolved(EffectiveOperation(
                    subject_key=key if origin == before else subject_key,
                    original_text=origin,
                    final_text=final,
                    mode=mode,
                    scope=OperationScope.IN_TEXT,
                    change_type=last.change_type,
                    source_ids=tuple(r.id for r in group),
                    alternates=tuple(citation_format_variants(origin, self.max_citation_range)),
                )))
        return outcomes

    def _walk_to_instance(self, before: str, present: Set[str], text_map: Dict[str, str]):
        """Follow the text map from ``before`` to the first present instance text."""
        value = text_map[before]
        visited = {before, value}
        hops = 1
        while value not in present:
            following = text_map.get(value)
            if following is None:
                return Skipped("", SkipReason.UNMATCHED_INSTANCE, f"no citation reads {value!r}")
            hops += 1
            if following in visited or hops > self.max_chain_hops:
                return Skipped("", SkipReason.CHAIN_LIMIT, f"chain from {before!r} does not settle")
            visited.add(following)
            value = following
        return value

    # ------------------------------------------------------------------
    # Bibliography edits
    # ------------------------------------------------------------------

    def _resolve_references(
        self,
        records: List[ChangeRecord],
        references: Sequence[ReferenceEntry],
        style: Optional[str],
        mode: PatchMode,
    ) -> List[Outcome]:
        by_reference: "OrderedDict[str, List[ChangeRecord]]" = OrderedDict()
        verbatim: List[ChangeRecord] = []
        for record in records:
            if record.reference_id:
                by_reference.setdefault(record.reference_id, []).append(record)
            else:
                verbatim.append(record)

        outcomes: List[Outcome] = []
        if by_reference:
            try:
                column = self.style_registry.column_for(style)
            except ConfigurationError as e:
                column = None
                for reference_id in by_reference:
                    outcomes.append(Skipped(f"reference:{reference_id}", SkipReason.UNKNOWN_STYLE, str(e)))

            if column is not None:
                entries = {r.id: r for r in references}
                for reference_id, group in by_reference.items():
                    outcomes.append(
                        self._resolve_reference(reference_id, group, entries.get(reference_id), column, mode)
                    )

        for record in verbatim:
            key = f"reference-text:{record.before_text}"
            if not record.before_text:
                outcomes.append(Skipped(key, SkipReason.MISSING_ORIGINAL_TEXT, f"change {record.id}"))
                continue
            outcomes.append(Resolved(EffectiveOperation(
                subject_key=key,
                original_text=record.before_text,
                final_text=None if record.is_deletion else record.after_text,
                mode=mode,
                scope=OperationScope.REFERENCE_SECTION,
                change_type=record.change_type,
                source_ids=(record.id,),
            )))
        return outcomes

    def _resolve_reference(
        self,
        reference_id: str,
        records: List[ChangeRecord],
        entry: Optional[ReferenceEntry],
        column: str,
        mode: PatchMode,
    ) -> Outcome:
        key = f"reference:{reference_id}"
        first, last = records[0], records[-1]

        origin = self._reference_before(first, column)
        if not origin:
            return Skipped(key, SkipReason.MISSING_FORMATTED_TEXT, f"no prior {column} text in change {first.id}")

        if last.change_type is ChangeType.DELETE:
            final = None
        elif entry is None:
            return Skipped(key, SkipReason.MISSING_REFERENCE, "reference no longer in snapshot")
        else:
            final = entry.formatted_text(column)
            if not final:
                return Skipped(key, SkipReason.MISSING_FORMATTED_TEXT, f"reference has no {column} text")

        return Resolved(EffectiveOperation(
            subject_key=key,
            original_text=origin,
            final_text=final,
            mode=mode,
            scope=OperationScope.REFERENCE_SECTION,
            change_type=last.change_type,
            source_ids=tuple(r.id for r in records),
        ))

    @staticmethod
    def _reference_before(record: ChangeRecord, column: str) -> Optional[str]:
        if isinstance(record.metadata, ReferenceEditMetadata):
            old_values = record.metadata.old_values
            return old_values.get(column) or old_values.get(_camel(column)) or None
        return record.before_text or None

    @staticmethod
    def _log_outcome(document_id: str, outcome: Outcome) -> None:
        if isinstance(outcome, Resolved):
            op = outcome.operation
            logger.debug(f"[{document_id}] {op.subject_key}: {op.original_text!r} -> {op.final_text!r}")
        elif outcome.reason in (SkipReason.CHAIN_LIMIT, SkipReason.MISSING_FORMATTED_TEXT,
                                SkipReason.UNKNOWN_STYLE, SkipReason.MISSING_REFERENCE):
            logger.warning(f"[{document_id}] skipping {outcome.subject_key}: {outcome.reason.value} {outcome.detail}")
        else:
            logger.debug(f"[{document_id}] skipping {outcome.subject_key}: {outcome.reason.value} {outcome.detail}")
