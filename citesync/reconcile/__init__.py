"""Change log reconciliation."""
from .engine import ReconciliationEngine
from .ordering import ReferenceOrderPlan, ReferenceOrderPlanner, ReorderEntry
from .results import ReconciliationResult, Resolved, Skipped, SkipReason

__all__ = [
    "ReconciliationEngine",
    "ReconciliationResult",
    "ReferenceOrderPlan",
    "ReferenceOrderPlanner",
    "ReorderEntry",
    "Resolved",
    "Skipped",
    "SkipReason",
]
