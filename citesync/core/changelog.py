"""Append-only change log of citation and bibliography edits.

The log is the single source of truth for exports: records are appended,
never physically deleted, and undo only flips ``is_reverted``.
"""
import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .models import ChangeRecord, ChangeType, METADATA_TYPES
from ..exceptions import ChangeLogError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_TEXT_LENGTH = 5000


def validate_record(record: ChangeRecord, max_text_length: int = DEFAULT_MAX_TEXT_LENGTH) -> None:
    """Check a record before it enters the log.

    Args:
        record: Record to check
        max_text_length: Longest before/after text accepted

    Raises:
        ValidationError: If the record is malformed or oversized
    """
    if not record.id:
        raise ValidationError("Change record has no id")
    if not record.document_id:
        raise ValidationError(f"Change record {record.id} has no document id")

    expected = METADATA_TYPES[record.change_type]
    if not isinstance(record.metadata, expected):
        raise ValidationError(
            f"Change record {record.id}: {record.change_type.value} expects "
            f"{expected.__name__}, got {type(record.metadata).__name__}"
        )

    for label, text in (("before_text", record.before_text), ("after_text", record.after_text)):
        if text is not None and len(text) > max_text_length:
            raise ValidationError(
                f"Change record {record.id}: {label} is {len(text)} chars "
                f"(limit {max_text_length})"
            )


class ChangeLogStore(ABC):
    """Storage interface for the change log."""

    def __init__(self, max_text_length: int = DEFAULT_MAX_TEXT_LENGTH):
        self.max_text_length = max_text_length
        self._lock = threading.Lock()

    @abstractmethod
    def _load(self) -> Dict[str, ChangeRecord]:
        """Return all records keyed by id."""
        pass

    @abstractmethod
    def _save(self, record: ChangeRecord) -> None:
        """Persist a new or replaced record."""
        pass

    def append(self, record: ChangeRecord) -> ChangeRecord:
        """Append a record, assigning its position in the log.

        Args:
            record: Record to append (``applied_at`` is assigned when missing)

        Returns:
            The stored record

        Raises:
            ValidationError: If the record fails validation
            ChangeLogError: If a record with the same id already exists
        """
        validate_record(record, self.max_text_length)

        with self._lock:
            records = self._load()
            if record.id in records:
                raise ChangeLogError(f"Change {record.id} already recorded")

            last = max((r.applied_at or 0 for r in records.values()), default=0)
            if record.applied_at is None or record.applied_at <= last:
                record = replace(record, applied_at=last + 1)

            self._save(record)

        logger.debug(
            f"Recorded {record.change_type.value} {record.id} for document "
            f"{record.document_id} at #{record.applied_at}"
        )
        return record

    def get(self, change_id: str) -> ChangeRecord:
        """Fetch one record by id.

        Raises:
            ChangeLogError: If no such record exists
        """
        record = self._load().get(change_id)
        if record is None:
            raise ChangeLogError(f"Change {change_id} not found")
        return record

    def revert(self, change_id: str) -> ChangeRecord:
        """Mark a record as reverted.

        Raises:
            ChangeLogError: If the record is missing or already reverted
        """
        with self._lock:
            record = self._load().get(change_id)
            if record is None:
                raise ChangeLogError(f"Change {change_id} not found")
            if record.is_reverted:
                raise ChangeLogError(f"Change {change_id} already reverted")
            record = record.reverted()
            self._save(record)

        logger.info(f"Reverted {record.change_type.value} {change_id}")
        return record

    def list_active(self, document_id: str) -> List[ChangeRecord]:
        """Active records of a document in log order."""
        return self._ordered(
            r for r in self._load().values()
            if r.document_id == document_id and not r.is_reverted
        )

    def list_reverted(
        self,
        document_id: str,
        types: Optional[Iterable[ChangeType]] = None,
    ) -> List[ChangeRecord]:
        """Reverted records of a document in log order.

        Args:
            document_id: Document to list
            types: Restrict to these change types (all when None)
        """
        wanted = set(ChangeType(t) for t in types) if types is not None else None
        return self._ordered(
            r for r in self._load().values()
            if r.document_id == document_id
            and r.is_reverted
            and (wanted is None or r.change_type in wanted)
        )

    @staticmethod
    def _ordered(records: Iterable[ChangeRecord]) -> List[ChangeRecord]:
        return sorted(records, key=lambda r: (r.applied_at or 0, r.id))


class InMemoryChangeLog(ChangeLogStore):
    """Change log held in a dictionary."""

    def __init__(self, records: Optional[Iterable[ChangeRecord]] = None, **kwargs):
        super().__init__(**kwargs)
        self._records: Dict[str, ChangeRecord] = {}
        for record in records or []:
            self.append(record)

    def _load(self) -> Dict[str, ChangeRecord]:
        return dict(self._records)

    def _save(self, record: ChangeRecord) -> None:
        self._records[record.id] = record


class JsonFileChangeLog(ChangeLogStore):
    """Change log persisted as a JSON-lines file.

    Every append or revert writes one line; when the same id appears more
    than once the last line wins, so reverts never rewrite earlier lines.
    """

    def __init__(self, path: Union[str, Path], **kwargs):
        super().__init__(**kwargs)
        self.path = Path(path)

    def _load(self) -> Dict[str, ChangeRecord]:
        records: Dict[str, ChangeRecord] = {}
        if not self.path.exists():
            return records

        with open(self.path, "r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = ChangeRecord.from_dict(json.loads(line))
                except (ValueError, KeyError) as e:
                    raise ChangeLogError(
                        f"Corrupt change log {self.path} at line {line_number}: {e}"
                    ) from e
                records[record.id] = record
        return records

    def _save(self, record: ChangeRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record.to_dict(), ensure_ascii=False) + "\n")
