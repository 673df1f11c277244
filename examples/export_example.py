"""Example demonstrating a tracked and a clean export.

This example shows how to:
1. Record citation and bibliography edits in a JSON-lines change log
2. Revert an edit
3. Export the original DOCX with tracked changes and with edits accepted

Requirements:
    - Install: pip install -e .
"""
import logging
from io import BytesIO

from docx import Document

from citesync import (
    ChangeRecord,
    ChangeType,
    Citesync,
    CitationInstance,
    Config,
    DocumentSnapshot,
    JsonFileChangeLog,
    ReferenceEntry,
)
from citesync.core.models import ReorderMetadata


def build_manuscript() -> bytes:
    document = Document()
    paragraph = document.add_paragraph("Earlier studies (1) and later work (")
    paragraph.add_run("2").bold = True
    paragraph.add_run(") disagree.")
    document.add_heading("References", level=1)
    document.add_paragraph("Zhang, L. (2019). Later work. Journal B.")
    document.add_paragraph("Adams, R. (2015). Earlier studies. Journal A.")
    buffer = BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def main():
    sync = Citesync(
        change_log=JsonFileChangeLog("./example_changes.jsonl"),
        config=Config(revision_author="Example Editor"),
        log_level=logging.INFO,
    )

    snapshot = DocumentSnapshot(
        document_id="example",
        filename="manuscript.docx",
        storage_path="manuscript.docx",
        style="APA7",
        citations=[
            CitationInstance(id="c-adams", document_id="example", raw_text="[1]",
                             paragraph_index=0, start_offset=16),
            CitationInstance(id="c-zhang", document_id="example", raw_text="[2]",
                             paragraph_index=0, start_offset=35),
        ],
        references=[
            ReferenceEntry(id="adams", document_id="example", sort_key=1,
                           formatted={"formatted_apa": "Adams, R. (2015). Earlier studies. Journal A."}),
            ReferenceEntry(id="zhang", document_id="example", sort_key=2,
                           formatted={"formatted_apa": "Zhang, L. (2019). Later work. Journal B."}),
        ],
    )

    print("\n" + "=" * 60)
    print("Recording changes")
    print("=" * 60)

    edits = [
        ChangeRecord(id="e1", document_id="example", change_type=ChangeType.INTEXT_STYLE_CONVERSION,
                     before_text="(1)", after_text="[1]", citation_id="c-adams"),
        ChangeRecord(id="e2", document_id="example", change_type=ChangeType.RENUMBER,
                     before_text="(2)", after_text="(3)", citation_id="c-zhang"),
        ChangeRecord(id="e3", document_id="example", change_type=ChangeType.INTEXT_STYLE_CONVERSION,
                     before_text="(2)", after_text="[2]", citation_id="c-zhang"),
        ChangeRecord(id="e4", document_id="example", change_type=ChangeType.REORDER,
                     metadata=ReorderMetadata("adams", 2, 1)),
    ]
    recorded = {
        r.id for r in sync.change_log.list_active("example") + sync.change_log.list_reverted("example")
    }
    for edit in edits:
        if edit.id not in recorded:
            sync.record_change(edit)

    # The renumber was a mistake
    if not sync.change_log.list_reverted("example"):
        sync.revert_change("e2")

    preview = sync.preview_changes("example")
    print(f"Active changes: {preview['total']}")
    for change_type, count in preview["by_type"].items():
        if count:
            print(f"  {change_type}: {count}")

    original = build_manuscript()

    print("\n" + "=" * 60)
    print("Exporting")
    print("=" * 60)

    for mode in ("tracked", "clean"):
        result = sync.export_document(snapshot, mode=mode, original=original)
        output_path = f"./manuscript_{mode}.docx"
        with open(output_path, "wb") as f:
            f.write(result.content)
        print(f"\n{mode}: {len(result.operations)} operations, {len(result.skipped)} skipped")
        print(f"  Saved to {output_path}")


if __name__ == "__main__":
    main()
