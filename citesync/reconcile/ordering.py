"""Bibliography order planning."""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..core.models import ReferenceEntry
from ..core.styles import StyleRegistry
from ..exceptions import ConfigurationError
from ..utils.citation_text import fingerprint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReorderEntry:
    """Target slot of one bibliography entry.

    Attributes:
        target_position: 1-based position in the reordered bibliography
        fingerprint: Normalized text prefix identifying the entry's paragraph
        reference_id: Entry the fingerprint was taken from
    """
    target_position: int
    fingerprint: str
    reference_id: str


@dataclass
class ReferenceOrderPlan:
    """Ordered fingerprints for the bibliography paragraphs."""
    entries: List[ReorderEntry] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)


class ReferenceOrderPlanner:
    """Derives the bibliography order from the current reference entries.

    Example:
        >>> planner = ReferenceOrderPlanner(StyleRegistry.default())
        >>> plan = planner.plan(snapshot.references, order_changed=True, style="APA")
    """

    def __init__(self, style_registry: StyleRegistry, fingerprint_length: int = 40):
        self.style_registry = style_registry
        self.fingerprint_length = fingerprint_length

    def plan(
        self,
        references: Sequence[ReferenceEntry],
        order_changed: bool,
        style: Optional[str] = None,
    ) -> Optional[ReferenceOrderPlan]:
        """Build a reorder plan, or None when the order did not change.

        Args:
            references: Current entries (ordered by ``sort_key`` here)
            order_changed: Whether an active change affects bibliography order
            style: Raw style label of the document

        Returns:
            ReferenceOrderPlan or None
        """
        if not order_changed:
            return None

        try:
            column = self.style_registry.column_for(style)
        except ConfigurationError as e:
            logger.warning(f"Fingerprinting from display text only: {e}")
            column = None

        plan = ReferenceOrderPlan()
        ordered = sorted(references, key=lambda r: (r.sort_key, r.id))
        for entry in ordered:
            text = (entry.formatted_text(column) if column else None) or entry.display_text()
            key = fingerprint(text, self.fingerprint_length) if text else ""
            if not key:
                logger.warning(f"Reference {entry.id} has no text to fingerprint, leaving it out of the reorder")
                continue
            plan.entries.append(ReorderEntry(
                target_position=len(plan.entries) + 1,
                fingerprint=key,
                reference_id=entry.id,
            ))

        logger.debug(f"Planned bibliography order for {len(plan)} of {len(ordered)} references")
        return plan
