"""Tests for the change log stores."""

import pytest

from citesync.core.changelog import InMemoryChangeLog, JsonFileChangeLog
from citesync.core.models import ChangeRecord, ChangeType, DeleteMetadata
from citesync.exceptions import ChangeLogError, ValidationError


def record(change_id, before="(1)", after="(2)", **kwargs):
    return ChangeRecord(
        id=change_id,
        document_id=kwargs.pop("document_id", "doc-1"),
        change_type=kwargs.pop("change_type", ChangeType.RENUMBER),
        before_text=before,
        after_text=after,
        **kwargs,
    )


class TestInMemoryChangeLog:
    """Append, revert and listing."""

    def test_append_assigns_monotonic_positions(self):
        """Test appended records get increasing positions."""
        log = InMemoryChangeLog()
        first = log.append(record("a"))
        second = log.append(record("b", applied_at=1))
        assert first.applied_at == 1
        assert second.applied_at == 2

    def test_duplicate_id_rejected(self):
        """Test a repeated id is rejected."""
        log = InMemoryChangeLog()
        log.append(record("a"))
        with pytest.raises(ChangeLogError):
            log.append(record("a"))

    def test_oversized_text_rejected(self):
        """Test texts over the length limit are rejected."""
        log = InMemoryChangeLog(max_text_length=10)
        with pytest.raises(ValidationError):
            log.append(record("a", before="x" * 11))

    def test_wrong_metadata_variant_rejected(self):
        """Test metadata must match the change type."""
        log = InMemoryChangeLog()
        with pytest.raises(ValidationError):
            log.append(record("a", metadata=DeleteMetadata()))

    def test_revert_moves_record_between_lists(self):
        """Test reverting moves a record to the reverted list."""
        log = InMemoryChangeLog([record("a"), record("b", "(2)", "[2]",
                                                    change_type=ChangeType.INTEXT_STYLE_CONVERSION)])
        log.revert("a")

        assert [r.id for r in log.list_active("doc-1")] == ["b"]
        assert [r.id for r in log.list_reverted("doc-1")] == ["a"]
        assert log.list_reverted("doc-1", [ChangeType.DELETE]) == []

    def test_revert_twice_fails(self):
        """Test a record cannot be reverted twice."""
        log = InMemoryChangeLog([record("a")])
        log.revert("a")
        with pytest.raises(ChangeLogError):
            log.revert("a")

    def test_unknown_record(self):
        """Test unknown ids raise ChangeLogError."""
        log = InMemoryChangeLog()
        with pytest.raises(ChangeLogError):
            log.get("missing")

    def test_documents_are_separate(self):
        """Test listings are scoped to one document."""
        log = InMemoryChangeLog([record("a"), record("b", document_id="doc-2")])
        assert [r.id for r in log.list_active("doc-2")] == ["b"]


class TestJsonFileChangeLog:
    """JSON-lines persistence."""

    def test_persists_across_instances(self, tmp_path):
        """Test records survive reopening the file."""
        path = tmp_path / "changes.jsonl"
        JsonFileChangeLog(path).append(record("a"))
        JsonFileChangeLog(path).append(record("b", "(2)", "(3)"))
        JsonFileChangeLog(path).revert("a")

        log = JsonFileChangeLog(path)
        assert [r.id for r in log.list_active("doc-1")] == ["b"]
        reverted = log.list_reverted("doc-1")
        assert reverted[0].id == "a" and reverted[0].before_text == "(1)"
        assert len(path.read_text(encoding="utf-8").splitlines()) == 3

    def test_missing_file_is_empty(self, tmp_path):
        """Test a missing file reads as an empty log."""
        assert JsonFileChangeLog(tmp_path / "none.jsonl").list_active("doc-1") == []

    def test_corrupt_line(self, tmp_path):
        """Test a corrupt line raises ChangeLogError."""
        path = tmp_path / "changes.jsonl"
        path.write_text("{not json\n", encoding="utf-8")
        with pytest.raises(ChangeLogError):
            JsonFileChangeLog(path).list_active("doc-1")
