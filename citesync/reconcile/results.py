"""Per-subject outcomes of reconciliation."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Union

from ..core.models import EffectiveOperation


class SkipReason(str, Enum):
    """Why an operation was left out of an export."""
    MISSING_FORMATTED_TEXT = "missing_formatted_text"
    UNKNOWN_STYLE = "unknown_style"
    CHAIN_LIMIT = "chain_limit"
    UNMATCHED_INSTANCE = "unmatched_instance"
    MISSING_REFERENCE = "missing_reference"
    MISSING_ORIGINAL_TEXT = "missing_original_text"
    DUPLICATE_ORIGIN = "duplicate_origin"
    NO_CHANGE = "no_change"
    SEARCH_TEXT_ABSENT = "search_text_absent"


@dataclass(frozen=True)
class Resolved:
    """A subject that reconciled to one operation."""
    operation: EffectiveOperation

    @property
    def subject_key(self) -> str:
        return self.operation.subject_key


@dataclass(frozen=True)
class Skipped:
    """A subject that could not be resolved safely."""
    subject_key: str
    reason: SkipReason
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"subject_key": self.subject_key, "reason": self.reason.value, "detail": self.detail}


Outcome = Union[Resolved, Skipped]


@dataclass
class ReconciliationResult:
    """Operations and skips for one document, plus the reorder flag."""
    document_id: str
    operations: List[EffectiveOperation] = field(default_factory=list)
    skipped: List[Skipped] = field(default_factory=list)
    order_changed: bool = False

    def add(self, outcome: Outcome) -> None:
        if isinstance(outcome, Resolved):
            self.operations.append(outcome.operation)
        else:
            self.skipped.append(outcome)

    @property
    def subject_keys(self) -> List[str]:
        return [op.subject_key for op in self.operations]
