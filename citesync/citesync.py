"""Main Citesync class - entry point for the library."""
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from .config import Config
from .core.changelog import ChangeLogStore, InMemoryChangeLog
from .core.models import ChangeRecord, ChangeType, DocumentSnapshot, ExportResult, PatchMode
from .core.styles import StyleRegistry
from .document.assembler import DocumentAssembler
from .exceptions import ConfigurationError
from .reconcile.engine import ReconciliationEngine
from .reconcile.ordering import ReferenceOrderPlanner
from .reconcile.results import ReconciliationResult
from .storage import ObjectStorage
from .utils.logging import log_skipped, setup_logging

logger = logging.getLogger(__name__)


class Citesync:
    """Main entry point for citation change tracking and DOCX export.

    Example:
        >>> from citesync import Citesync
        >>> sync = Citesync(config=Config(storage_root="./uploads"))
        >>> sync.record_change(ChangeRecord(id="c1", document_id="doc-1", ...))
        >>> result = sync.export_document(snapshot, mode="tracked")
        >>> open(result.filename, "wb").write(result.content)
    """

    def __init__(
        self,
        change_log: Optional[ChangeLogStore] = None,
        storage: Optional[ObjectStorage] = None,
        style_registry: Optional[StyleRegistry] = None,
        config: Optional[Config] = None,
        log_level: int = logging.INFO,
    ):
        """Initialize Citesync.

        Args:
            change_log: Change log store (in-memory when omitted)
            storage: Object storage for original documents (built from config when omitted)
            style_registry: Style registry (built-in styles when omitted)
            config: Optional Config object (loaded from the environment when omitted)
            log_level: Logging level (default: INFO)
        """
        # Setup logging
        setup_logging(level=log_level)

        # Initialize configuration
        if config is None:
            config = Config.from_env()
        self.config = config

        self.change_log = change_log or InMemoryChangeLog(max_text_length=config.max_text_length)
        self.storage = storage or ObjectStorage.from_config(config)
        self.style_registry = style_registry or StyleRegistry.default(default_style=config.citation_style)

        self.engine = ReconciliationEngine.from_config(config, self.style_registry)
        self.planner = ReferenceOrderPlanner(self.style_registry, config.fingerprint_length)
        self.assembler = DocumentAssembler(config)

        logger.info(
            f"Citesync initialized ({config.export_mode} exports, "
            f"{self.storage.default_backend} storage)"
        )

    # ========== Change Log ==========

    def record_change(self, change: Union[ChangeRecord, Dict[str, Any]]) -> ChangeRecord:
        """Append an edit to the change log.

        Args:
            change: ChangeRecord or its dictionary form

        Returns:
            The stored record (with ``applied_at`` assigned)
        """
        if isinstance(change, dict):
            change = ChangeRecord.from_dict(change)
        return self.change_log.append(change)

    def revert_change(self, change_id: str) -> ChangeRecord:
        """Undo an edit. The record stays in the log, marked reverted."""
        return self.change_log.revert(change_id)

    def preview_changes(self, document_id: str) -> Dict[str, Any]:
        """Summarize the active changes of a document.

        Returns:
            Dictionary with the total, counts per change type and the changes
        """
        active = self.change_log.list_active(document_id)
        counts = Counter(record.change_type.value for record in active)
        return {
            "document_id": document_id,
            "total": len(active),
            "by_type": {change_type.value: counts.get(change_type.value, 0) for change_type in ChangeType},
            "changes": [record.to_dict() for record in active],
        }

    # ========== Export ==========

    def reconcile(
        self,
        snapshot: DocumentSnapshot,
        mode: Optional[Union[str, PatchMode]] = None,
    ) -> ReconciliationResult:
        """Fold the document's change log into effective operations.

        Args:
            snapshot: Current citation and bibliography state
            mode: Output mode (defaults to config.export_mode)

        Returns:
            ReconciliationResult
        """
        document_id = snapshot.document_id
        return self.engine.reconcile(
            document_id,
            self.change_log.list_active(document_id),
            self.change_log.list_reverted(document_id, [ChangeType.RENUMBER]),
            snapshot.citations,
            snapshot.references,
            style=snapshot.style or self.config.citation_style,
            mode=self._mode(mode),
        )

    def export_document(
        self,
        snapshot: DocumentSnapshot,
        mode: Optional[Union[str, PatchMode]] = None,
        original: Optional[bytes] = None,
    ) -> ExportResult:
        """Materialize the change log into a copy of the original document.

        Args:
            snapshot: Current citation and bibliography state
            mode: 'clean' or 'tracked' (defaults to config.export_mode)
            original: Original container bytes (fetched from storage when omitted)

        Returns:
            ExportResult; ``fell_back`` is set when the original was returned unchanged

        Raises:
            StorageError: If the original document cannot be fetched
            ValidationError: If the document exceeds the configured size limit
        """
        mode = self._mode(mode)
        style = snapshot.style or self.config.citation_style
        logger.info(f"Exporting document {snapshot.document_id} ({mode.value})")

        reconciliation = self.reconcile(snapshot, mode)
        plan = self.planner.plan(snapshot.references, reconciliation.order_changed, style)

        if original is None:
            original = self.storage.fetch_original_bytes(
                snapshot.storage_path, snapshot.storage_backend
            )

        timestamp = datetime.now(timezone.utc)
        author = self.config.revision_author
        assembly = self.assembler.assemble(
            original, reconciliation.operations, plan, mode, author=author, timestamp=timestamp
        )

        skipped = reconciliation.skipped + assembly.skipped
        log_skipped(logger, skipped, snapshot.document_id)
        if assembly.fell_back:
            logger.warning(f"Export of {snapshot.document_id} returned the original document unchanged")

        return ExportResult(
            content=assembly.content,
            filename=snapshot.filename,
            mode=mode,
            author=author,
            timestamp=timestamp.isoformat(),
            operations=assembly.applied,
            skipped=skipped,
            fell_back=assembly.fell_back,
        )

    def _mode(self, mode: Optional[Union[str, PatchMode]]) -> PatchMode:
        value = mode or self.config.export_mode
        try:
            return PatchMode(value)
        except ValueError:
            raise ConfigurationError(f"Unknown export mode: {value!r} (use 'clean' or 'tracked')")
