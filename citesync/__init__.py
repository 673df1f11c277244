"""Citesync - Citation change tracking for DOCX manuscripts.

A Python library that keeps an append-only log of citation and bibliography
edits and writes them back into the original document:
- Reconciliation of superseded and reverted edits
- Run-spanning text substitution that keeps formatting intact
- Clean or tracked-changes output
- Bibliography reordering
"""

from .config import Config
from .exceptions import (
    CitesyncError,
    ConfigurationError,
    ValidationError,
    ChangeLogError,
    StorageError,
    ApplyError,
)
from .core.models import (
    ChangeRecord,
    ChangeType,
    CitationInstance,
    ReferenceEntry,
    DocumentSnapshot,
    EffectiveOperation,
    ExportResult,
    PatchMode,
)
from .core.changelog import InMemoryChangeLog, JsonFileChangeLog
from .core.styles import StyleRegistry
from .citesync import Citesync

__version__ = "0.1.0"
__all__ = [
    "Citesync",
    "Config",
    "ChangeRecord",
    "ChangeType",
    "CitationInstance",
    "ReferenceEntry",
    "DocumentSnapshot",
    "EffectiveOperation",
    "ExportResult",
    "PatchMode",
    "InMemoryChangeLog",
    "JsonFileChangeLog",
    "StyleRegistry",
    "CitesyncError",
    "ConfigurationError",
    "ValidationError",
    "ChangeLogError",
    "StorageError",
    "ApplyError",
]
