#!/usr/bin/env python3
"""Citesync CLI - export tracked citation edits into DOCX documents.

Usage:
    citesync export <snapshot> --changes <log> [options]
    citesync preview <snapshot> --changes <log>
    citesync revert <log> <change_id>
    citesync log <log> <document_id>
    citesync --version
    citesync --help

Commands:
    export   Apply the change log to the original document
    preview  Show the active changes and the operations an export would apply
    revert   Mark a change as reverted
    log      List every change recorded for a document

Examples:
    # Export with tracked changes
    citesync export snapshot.json --changes changes.jsonl -o paper_revised.docx

    # Export with all edits accepted
    citesync export snapshot.json --changes changes.jsonl --mode clean

    # Undo one edit
    citesync revert changes.jsonl chg-42
"""

import argparse
import json
import logging
import sys
from pathlib import Path


def get_version():
    """Get package version."""
    try:
        from citesync import __version__
        return __version__
    except ImportError:
        return "0.1.0"


def _load_snapshot(path):
    from citesync.core.models import DocumentSnapshot

    with open(path, "r", encoding="utf-8") as f:
        return DocumentSnapshot.from_dict(json.load(f))


def _build(args):
    from citesync import Citesync, Config
    from citesync.core.changelog import JsonFileChangeLog

    config = Config.from_env()
    if getattr(args, "storage_root", None):
        config.storage_root = args.storage_root
    change_log = JsonFileChangeLog(args.changes, max_text_length=config.max_text_length)
    level = logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING
    return Citesync(change_log=change_log, config=config, log_level=level)


def cmd_export(args):
    """Apply the change log to the original document."""
    from citesync.exceptions import CitesyncError

    snapshot_path = Path(args.snapshot)
    if not snapshot_path.exists():
        print(f"Error: Snapshot not found: {snapshot_path}")
        return 1

    snapshot = _load_snapshot(snapshot_path)
    sync = _build(args)

    original = None
    if args.original:
        original = Path(args.original).read_bytes()

    print("=" * 60)
    print("Citesync Export")
    print("=" * 60)
    print(f"\nDocument: {snapshot.filename} ({snapshot.document_id})")
    print(f"Mode: {args.mode or sync.config.export_mode}")

    try:
        result = sync.export_document(snapshot, mode=args.mode, original=original)
    except CitesyncError as e:
        print(f"Error: {e}")
        return 1

    if args.output:
        output_path = Path(args.output)
    else:
        name = Path(result.filename)
        output_path = Path.cwd() / f"{name.stem}_{result.mode.value}{name.suffix or '.docx'}"
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(result.content)

    print("\n" + "=" * 60)
    if result.fell_back:
        print("FAILED - original document written unchanged")
    else:
        print("SUCCESS!")
    print(f"  Operations applied: {len(result.operations)}")
    print(f"  Skipped: {len(result.skipped)}")
    print(f"  Author: {result.author}")
    print(f"  Timestamp: {result.timestamp}")
    print(f"  Output: {output_path}")

    if result.skipped and args.verbose:
        print("\nSkipped:")
        for skipped in result.skipped:
            print(f"  - {skipped.subject_key}: {skipped.reason.value} {skipped.detail}")

    print("=" * 60)
    return 1 if result.fell_back else 0


def cmd_preview(args):
    """Show active changes and the operations an export would apply."""
    from citesync.exceptions import ConfigurationError

    snapshot_path = Path(args.snapshot)
    if not snapshot_path.exists():
        print(f"Error: Snapshot not found: {snapshot_path}")
        return 1

    snapshot = _load_snapshot(snapshot_path)
    sync = _build(args)
    summary = sync.preview_changes(snapshot.document_id)
    reconciliation = sync.reconcile(snapshot)

    print("=" * 60)
    print(f"Pending changes: {snapshot.filename}")
    print("=" * 60)

    print(f"\n{'Change type':<32} {'Count':<6}")
    print("-" * 60)
    for change_type, count in summary["by_type"].items():
        if count:
            print(f"{change_type:<32} {count:<6}")
    print("-" * 60)
    print(f"{'TOTAL':<32} {summary['total']:<6}")

    print(f"\nOperations ({len(reconciliation.operations)}):")
    for op in reconciliation.operations:
        final = "<deleted>" if op.final_text is None else op.final_text
        print(f"  {op.original_text[:40]!r} -> {final[:40]!r}")

    if reconciliation.skipped:
        print(f"\nSkipped ({len(reconciliation.skipped)}):")
        for skipped in reconciliation.skipped:
            print(f"  - {skipped.subject_key}: {skipped.reason.value}")

    if reconciliation.order_changed:
        print("\nBibliography order will be rewritten")

    style = snapshot.style or sync.config.citation_style
    try:
        present, missing = sync.style_registry.coverage(snapshot.references, style)
        print(f"\nReferences with {style} text: {present} ({missing} missing)")
    except ConfigurationError as e:
        print(f"\nWarning: {e}")
    return 0


def cmd_revert(args):
    """Mark a change as reverted."""
    from citesync.core.changelog import JsonFileChangeLog
    from citesync.exceptions import ChangeLogError

    change_log = JsonFileChangeLog(args.log)
    try:
        record = change_log.revert(args.change_id)
    except ChangeLogError as e:
        print(f"Error: {e}")
        return 1

    print(f"Reverted {record.change_type.value} {record.id}: "
          f"{record.before_text!r} -> {record.after_text!r}")
    return 0


def cmd_log(args):
    """List every change recorded for a document."""
    from citesync.core.changelog import JsonFileChangeLog

    change_log = JsonFileChangeLog(args.log)
    records = change_log.list_active(args.document_id) + change_log.list_reverted(args.document_id)
    records.sort(key=lambda r: (r.applied_at or 0, r.id))

    if not records:
        print(f"No changes recorded for: {args.document_id}")
        return 1

    print(f"\n{'#':<5} {'Id':<14} {'Type':<28} {'State':<9} Change")
    print("-" * 80)
    for record in records:
        state = "reverted" if record.is_reverted else "active"
        after = "<deleted>" if record.after_text is None else record.after_text
        print(f"{record.applied_at or 0:<5} {record.id[:14]:<14} {record.change_type.value:<28} "
              f"{state:<9} {(record.before_text or '')[:20]!r} -> {after[:20]!r}")
    print(f"\n{len(records)} changes")
    return 0


def main():
    parser = argparse.ArgumentParser(
        prog="citesync",
        description="Citesync - re-materialize citation edits into DOCX documents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  citesync export snapshot.json --changes changes.jsonl -o revised.docx
  citesync preview snapshot.json --changes changes.jsonl
  citesync revert changes.jsonl chg-42
  citesync log changes.jsonl doc-1
        """
    )
    parser.add_argument("--version", action="version", version=f"citesync {get_version()}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # export command
    export_parser = subparsers.add_parser(
        "export",
        help="Apply the change log to the original document",
        description="Reconcile the change log and patch the original DOCX."
    )
    export_parser.add_argument("snapshot", help="Document snapshot (JSON)")
    export_parser.add_argument("--changes", required=True, help="Change log (JSON lines)")
    export_parser.add_argument("--mode", choices=["clean", "tracked"],
                               help="Output form (default: CITESYNC_EXPORT_MODE or tracked)")
    export_parser.add_argument("-o", "--output", help="Output file path")
    export_parser.add_argument("--original", help="Original DOCX (overrides storage lookup)")
    export_parser.add_argument("--storage-root", help="Local storage root directory")
    export_parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    # preview command
    preview_parser = subparsers.add_parser(
        "preview",
        help="Show pending changes",
        description="Summarize active changes and the resulting operations."
    )
    preview_parser.add_argument("snapshot", help="Document snapshot (JSON)")
    preview_parser.add_argument("--changes", required=True, help="Change log (JSON lines)")

    # revert command
    revert_parser = subparsers.add_parser(
        "revert",
        help="Mark a change as reverted",
        description="Undo one change; the record stays in the log."
    )
    revert_parser.add_argument("log", help="Change log (JSON lines)")
    revert_parser.add_argument("change_id", help="Id of the change to revert")

    # log command
    log_parser = subparsers.add_parser(
        "log",
        help="List recorded changes",
        description="List active and reverted changes of a document in log order."
    )
    log_parser.add_argument("log", help="Change log (JSON lines)")
    log_parser.add_argument("document_id", help="Document id")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    # Dispatch to command handler
    commands = {
        "export": cmd_export,
        "preview": cmd_preview,
        "revert": cmd_revert,
        "log": cmd_log,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
