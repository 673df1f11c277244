"""Data models for citesync.

Persisted records (ChangeRecord), snapshots of the current citation and
bibliography state (CitationInstance, ReferenceEntry, DocumentSnapshot) and
the derived values produced at export time (EffectiveOperation,
ExportResult).
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class ChangeType(str, Enum):
    """Kinds of edits recorded in the change log."""
    RENUMBER = "RENUMBER"
    INTEXT_STYLE_CONVERSION = "INTEXT_STYLE_CONVERSION"
    REFERENCE_STYLE_CONVERSION = "REFERENCE_STYLE_CONVERSION"
    DELETE = "DELETE"
    REFERENCE_EDIT = "REFERENCE_SECTION_EDIT"
    REORDER = "REFERENCE_REORDER"

    @property
    def is_style_conversion(self) -> bool:
        return self in (
            ChangeType.INTEXT_STYLE_CONVERSION,
            ChangeType.REFERENCE_STYLE_CONVERSION,
        )


class CitationType(str, Enum):
    """In-text citation marker kinds."""
    NUMERIC = "NUMERIC"
    PARENTHETICAL = "PARENTHETICAL"
    NARRATIVE = "NARRATIVE"
    FOOTNOTE = "FOOTNOTE"
    ENDNOTE = "ENDNOTE"


class PatchMode(str, Enum):
    """Output form of an export."""
    CLEAN = "clean"  # substitutions accepted in place
    TRACKED = "tracked"  # paired w:del / w:ins revision marks


class OperationScope(str, Enum):
    """Part of the document an operation may touch."""
    IN_TEXT = "in_text"
    REFERENCE_SECTION = "reference_section"


# ---------------------------------------------------------------------------
# Change metadata: one variant per ChangeType
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenumberMetadata:
    """Payload of a RENUMBER change.

    A non-null ``reference_id`` marks a renumber of the bibliography entry
    itself rather than of an in-text marker.
    """
    old_number: Optional[int] = None
    new_number: Optional[int] = None
    reference_id: Optional[str] = None

    @property
    def changes_order(self) -> bool:
        return (
            self.reference_id is not None
            and self.old_number is not None
            and self.new_number is not None
            and self.old_number != self.new_number
        )


@dataclass(frozen=True)
class StyleConversionMetadata:
    """Payload shared by both style-conversion variants."""
    from_style: Optional[str] = None
    to_style: Optional[str] = None
    reference_id: Optional[str] = None


@dataclass(frozen=True)
class DeleteMetadata:
    """Payload of a DELETE change; ``reference_id`` marks a bibliography delete."""
    reference_id: Optional[str] = None
    position: Optional[int] = None
    start_offset: Optional[int] = None
    end_offset: Optional[int] = None


@dataclass(frozen=True)
class ReferenceEditMetadata:
    """Payload of a REFERENCE_SECTION_EDIT change.

    ``old_values`` and ``new_values`` hold the component fields and the
    formatted-text columns that the edit changed.
    """
    reference_id: str = ""
    old_values: Dict[str, Any] = field(default_factory=dict)
    new_values: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ReorderMetadata:
    """Payload of a REFERENCE_REORDER change."""
    reference_id: Optional[str] = None
    old_position: Optional[int] = None
    new_position: Optional[int] = None


ChangeMetadata = Union[
    RenumberMetadata,
    StyleConversionMetadata,
    DeleteMetadata,
    ReferenceEditMetadata,
    ReorderMetadata,
]

METADATA_TYPES = {
    ChangeType.RENUMBER: RenumberMetadata,
    ChangeType.INTEXT_STYLE_CONVERSION: StyleConversionMetadata,
    ChangeType.REFERENCE_STYLE_CONVERSION: StyleConversionMetadata,
    ChangeType.DELETE: DeleteMetadata,
    ChangeType.REFERENCE_EDIT: ReferenceEditMetadata,
    ChangeType.REORDER: ReorderMetadata,
}

# camelCase keys as written by the editing front end
_METADATA_ALIASES = {
    "referenceId": "reference_id",
    "oldNumber": "old_number",
    "newNumber": "new_number",
    "fromStyle": "from_style",
    "toStyle": "to_style",
    "startOffset": "start_offset",
    "endOffset": "end_offset",
    "oldValues": "old_values",
    "newValues": "new_values",
    "oldPosition": "old_position",
    "newPosition": "new_position",
}


def metadata_from_dict(
    change_type: ChangeType, payload: Optional[Dict[str, Any]]
) -> ChangeMetadata:
    """Build the metadata variant for a change type.

    Unknown keys are dropped; a missing payload gives the empty variant.

    Args:
        change_type: Change type selecting the variant
        payload: Raw metadata dictionary (snake_case or camelCase keys)

    Returns:
        Metadata dataclass instance
    """
    metadata_cls = METADATA_TYPES[ChangeType(change_type)]
    payload = payload or {}
    values = {}
    for key, value in payload.items():
        key = _METADATA_ALIASES.get(key, key)
        if key in metadata_cls.__dataclass_fields__:
            values[key] = value
    return metadata_cls(**values)


def metadata_to_dict(metadata: Optional[ChangeMetadata]) -> Dict[str, Any]:
    """Serialize a metadata variant, leaving out empty values."""
    if metadata is None:
        return {}
    result = {}
    for name in metadata.__dataclass_fields__:
        value = getattr(metadata, name)
        if value is not None and value != {}:
            result[name] = value
    return result


def reference_id_of(metadata: Optional[ChangeMetadata]) -> Optional[str]:
    """Reference id carried by a metadata variant, if the variant has one."""
    if isinstance(metadata, (RenumberMetadata, StyleConversionMetadata,
                             DeleteMetadata, ReorderMetadata)):
        return metadata.reference_id
    if isinstance(metadata, ReferenceEditMetadata):
        return metadata.reference_id or None
    return None


# ---------------------------------------------------------------------------
# Change log records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChangeRecord:
    """One committed edit in a document's append-only change log.

    Records are never rewritten: undoing an edit stores the copy returned by
    ``reverted()``, keeping before/after text as they were.

    Attributes:
        id: Unique record identifier
        document_id: Document the edit belongs to
        change_type: Kind of edit
        before_text: Text before the edit
        after_text: Text after the edit (None for a deletion)
        citation_id: Bound citation instance (None for text-based changes)
        metadata: Variant payload for ``change_type``
        is_reverted: Whether the edit was undone
        applied_at: Monotonic position in the log, assigned by the store
        applied_by: User or system label that made the edit
        reverted_at: When the edit was undone
    """
    id: str
    document_id: str
    change_type: ChangeType
    before_text: Optional[str] = None
    after_text: Optional[str] = None
    citation_id: Optional[str] = None
    metadata: Optional[ChangeMetadata] = None
    is_reverted: bool = False
    applied_at: Optional[int] = None
    applied_by: Optional[str] = None
    reverted_at: Optional[datetime] = None

    def __post_init__(self):
        """Coerce the change type and fill in the empty metadata variant."""
        if not isinstance(self.change_type, ChangeType):
            object.__setattr__(self, "change_type", ChangeType(self.change_type))
        if self.metadata is None:
            object.__setattr__(self, "metadata", metadata_from_dict(self.change_type, None))

    @property
    def is_text_based(self) -> bool:
        """True when the change is not bound to a known citation instance."""
        return self.citation_id is None

    @property
    def is_deletion(self) -> bool:
        return self.after_text is None or self.change_type is ChangeType.DELETE

    @property
    def reference_id(self) -> Optional[str]:
        return reference_id_of(self.metadata)

    def reverted(self, when: Optional[datetime] = None) -> "ChangeRecord":
        """Return the undone copy of this record."""
        return replace(self, is_reverted=True, reverted_at=when or datetime.now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to dictionary."""
        return {
            "id": self.id,
            "document_id": self.document_id,
            "change_type": self.change_type.value,
            "before_text": self.before_text,
            "after_text": self.after_text,
            "citation_id": self.citation_id,
            "metadata": metadata_to_dict(self.metadata),
            "is_reverted": self.is_reverted,
            "applied_at": self.applied_at,
            "applied_by": self.applied_by,
            "reverted_at": self.reverted_at.isoformat() if self.reverted_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeRecord":
        """Create record from dictionary."""
        change_type = ChangeType(data["change_type"])
        reverted_at = data.get("reverted_at")
        return cls(
            id=data["id"],
            document_id=data["document_id"],
            change_type=change_type,
            before_text=data.get("before_text"),
            after_text=data.get("after_text"),
            citation_id=data.get("citation_id"),
            metadata=metadata_from_dict(change_type, data.get("metadata")),
            is_reverted=bool(data.get("is_reverted", False)),
            applied_at=data.get("applied_at"),
            applied_by=data.get("applied_by"),
            reverted_at=datetime.fromisoformat(reverted_at) if reverted_at else None,
        )


# ---------------------------------------------------------------------------
# Current-state snapshots
# ---------------------------------------------------------------------------


@dataclass
class CitationInstance:
    """A located in-text citation marker.

    Attributes:
        id: Stable citation identifier
        document_id: Owning document
        raw_text: Present text of the marker
        citation_type: Marker kind
        paragraph_index: Paragraph the marker sits in
        start_offset: Character offset of the marker start
        end_offset: Character offset of the marker end
        reference_ids: Linked bibliography entries
    """
    id: str
    document_id: str
    raw_text: str
    citation_type: CitationType = CitationType.NUMERIC
    paragraph_index: Optional[int] = None
    start_offset: Optional[int] = None
    end_offset: Optional[int] = None
    reference_ids: List[str] = field(default_factory=list)

    def sort_key(self) -> Tuple[int, int, str]:
        return (
            self.paragraph_index if self.paragraph_index is not None else -1,
            self.start_offset if self.start_offset is not None else -1,
            self.id,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CitationInstance":
        """Create citation from dictionary."""
        values = {k: v for k, v in data.items() if k in cls.__annotations__}
        if "citation_type" in values:
            values["citation_type"] = CitationType(str(values["citation_type"]).upper())
        return cls(**values)


@dataclass
class ReferenceEntry:
    """One bibliography entry.

    Attributes:
        id: Stable reference identifier
        document_id: Owning document
        sort_key: Current position key in the bibliography
        formatted: Formatted text per style column (e.g. 'formatted_apa')
        authors: Author names
        year: Publication year
        title: Title
        source: Journal, book or conference title
        volume: Volume (optional)
        issue: Issue (optional)
        pages: Page range (optional)
        doi: DOI (optional)
    """
    id: str
    document_id: str
    sort_key: int = 0
    formatted: Dict[str, str] = field(default_factory=dict)
    authors: List[str] = field(default_factory=list)
    year: Optional[str] = None
    title: Optional[str] = None
    source: Optional[str] = None
    volume: Optional[str] = None
    issue: Optional[str] = None
    pages: Optional[str] = None
    doi: Optional[str] = None

    def formatted_text(self, column: str) -> Optional[str]:
        """Formatted text in a style column, or None when empty."""
        text = self.formatted.get(column)
        return text if text else None

    def display_text(self) -> str:
        """Short 'Authors (year). Title.' string built from component fields."""
        parts = []
        if self.authors:
            parts.append(", ".join(self.authors))
        if self.year:
            parts.append(f"({self.year}).")
        if self.title:
            parts.append(f"{self.title}.")
        return " ".join(parts)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReferenceEntry":
        """Create reference from dictionary.

        Top-level ``formatted_*`` keys are folded into ``formatted``.
        """
        formatted = dict(data.get("formatted") or {})
        for key, value in data.items():
            if key.startswith("formatted_") and value:
                formatted[key] = value
        values = {
            k: v for k, v in data.items()
            if k in cls.__annotations__ and k != "formatted"
        }
        if values.get("year") is not None:
            values["year"] = str(values["year"])
        return cls(formatted=formatted, **values)


@dataclass
class DocumentSnapshot:
    """Current citation and bibliography state of one uploaded document."""
    document_id: str
    filename: str
    storage_path: str
    storage_backend: Optional[str] = None
    style: Optional[str] = None
    citations: List[CitationInstance] = field(default_factory=list)
    references: List[ReferenceEntry] = field(default_factory=list)

    def ordered_references(self) -> List[ReferenceEntry]:
        return sorted(self.references, key=lambda r: (r.sort_key, r.id))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentSnapshot":
        """Create snapshot from dictionary."""
        return cls(
            document_id=data["document_id"],
            filename=data["filename"],
            storage_path=data.get("storage_path", data["filename"]),
            storage_backend=data.get("storage_backend"),
            style=data.get("style"),
            citations=[CitationInstance.from_dict(c) for c in data.get("citations", [])],
            references=[ReferenceEntry.from_dict(r) for r in data.get("references", [])],
        )


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EffectiveOperation:
    """Net original → final substitution for one logical subject.

    Attributes:
        subject_key: Citation id key or stable text key
        original_text: Text as it appears in the pristine container
        final_text: Replacement text (None deletes)
        mode: Output form
        scope: Document part the operation applies to
        change_type: Change type of the latest contributing record
        source_ids: Ids of the change records folded into this operation
        alternates: Equivalent spellings tried when original_text is absent
    """
    subject_key: str
    original_text: str
    final_text: Optional[str]
    mode: PatchMode = PatchMode.TRACKED
    scope: OperationScope = OperationScope.IN_TEXT
    change_type: Optional[ChangeType] = None
    source_ids: Tuple[str, ...] = ()
    alternates: Tuple[str, ...] = ()

    @property
    def is_deletion(self) -> bool:
        return self.final_text is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert operation to dictionary."""
        return {
            "subject_key": self.subject_key,
            "original_text": self.original_text,
            "final_text": self.final_text,
            "mode": self.mode.value,
            "scope": self.scope.value,
            "change_type": self.change_type.value if self.change_type else None,
            "source_ids": list(self.source_ids),
        }


@dataclass
class ExportResult:
    """Outcome of one export request.

    Attributes:
        content: Container bytes (the original bytes when the pass fell back)
        filename: Original document filename
        mode: Output form used
        author: Revision author label
        timestamp: ISO 8601 timestamp of the revision marks
        operations: Operations that were applied
        skipped: Operations left out, with reasons
        fell_back: True when the patch pass failed and the original was returned
    """
    content: bytes
    filename: str
    mode: PatchMode
    author: str
    timestamp: str
    operations: List[EffectiveOperation] = field(default_factory=list)
    skipped: List[Any] = field(default_factory=list)
    fell_back: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Summary of the export without the container bytes."""
        return {
            "filename": self.filename,
            "mode": self.mode.value,
            "author": self.author,
            "timestamp": self.timestamp,
            "size": len(self.content),
            "fell_back": self.fell_back,
            "operations": [op.to_dict() for op in self.operations],
            "skipped": [s.to_dict() for s in self.skipped],
        }
