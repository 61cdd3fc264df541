"""
main.py - CLI for the duplicate engine.

Orchestration only; every command delegates to a library module:
    check       fingerprint check of a candidate JSON file
    import-csv  CSV bulk import through the fingerprint check
    review      list duplicate groups
    resolve     keep one receipt of a group, delete the rest
    dismiss     confirm a group exists; keeps every receipt (not persisted)
    summary     spending summary
    export      write a JSON backup
    import      restore a JSON backup
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from extract import build_receipt
from fingerprint import find_fingerprint_match
from ingest import ingest_receipts, receipts_from_csv
from logging_config import get_logger, setup_logging
from models import DuplicateGroup, Receipt, ReceiptSource
from receipt_store import JsonReceiptStore, StoreError
from review import DuplicateReview
from summary import spending_summary

logger = get_logger("spendwise")


def _configure_output_symbols() -> tuple[str, str]:
    """Configure stdout encoding and return safe line/fail symbols."""
    try:
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    except (AttributeError, ValueError):
        pass

    try:
        "═✗".encode(sys.stdout.encoding or "utf-8")
        return "═", "✗"
    except UnicodeEncodeError:
        return "=", "X"


BOX_CHAR, FAIL_CHAR = _configure_output_symbols()


def _read_json(path: str) -> Any:
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"JSON file not found: {path}")
    return json.loads(file_path.read_text(encoding="utf-8"))


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _print_groups(groups: list[DuplicateGroup]) -> None:
    if not groups:
        print("  No suspicious duplicate clusters found.")
        return

    print(BOX_CHAR * 62)
    print(f"  Reviewing {len(groups)} suspicious cluster(s)")
    print(BOX_CHAR * 62)
    for group in groups:
        label = "Exact match" if group.reason.value == "exact" else "Likely duplicate (fuzzy)"
        print(f"\n  {group.id}  [{label}]  {group.size} receipts")
        for index, member in enumerate(group.members, start=1):
            print(
                f"    #{index} {member.id:<12} {member.store_name[:24]:<24} "
                f"{member.date:<10} ${member.total:>9.2f}  "
                f"source={member.source.value} items={len(member.items)}"
            )


def _candidate_from_file(path: str, source: str) -> Receipt:
    data = _read_json(path)
    if isinstance(data, dict) and data.get("id"):
        return Receipt.model_validate(data)
    return build_receipt(data, source=source)


def cmd_check(args: argparse.Namespace, store: JsonReceiptStore) -> int:
    candidate = _candidate_from_file(args.file, args.source)
    match = find_fingerprint_match(candidate, store.get(args.user))
    if args.json:
        _print_json({"duplicate": match is not None, "duplicate_of": match.id if match else None})
    elif match is None:
        print(f"  No stored receipt matches {candidate.store_name} on {candidate.date}.")
    else:
        print(f"  {FAIL_CHAR} Duplicate of stored receipt {match.id} ({match.store_name}, {match.date}).")
    return 1 if match is not None else 0


def cmd_import_csv(args: argparse.Namespace, store: JsonReceiptStore) -> int:
    receipts = receipts_from_csv(args.csv, strict=args.strict)
    report = ingest_receipts(receipts, store, args.user, allow_duplicates=args.force)
    if args.json:
        _print_json(
            {
                "accepted": [receipt.id for receipt in report.accepted],
                "flagged": [
                    {"id": item.receipt.id, "duplicate_of": item.duplicate_of}
                    for item in report.flagged
                ],
            }
        )
    else:
        print(f"  Imported {report.accepted_count} receipt(s), flagged {report.flagged_count} duplicate(s).")
        for item in report.flagged:
            print(
                f"    {FAIL_CHAR} {item.receipt.store_name} {item.receipt.date} "
                f"${item.receipt.total:.2f} matches {item.duplicate_of}"
            )
    return 0


def cmd_review(args: argparse.Namespace, store: JsonReceiptStore) -> int:
    review = DuplicateReview(store.get(args.user))
    if args.json:
        _print_json([group.to_json_dict() for group in review.groups])
    else:
        _print_groups(review.groups)
    return 0


def cmd_resolve(args: argparse.Namespace, store: JsonReceiptStore) -> int:
    review = DuplicateReview(store.get(args.user), store=store, user_id=args.user)
    deleted = review.resolve_group(args.group, args.keep, args.delete or None)
    print(f"  Kept {args.keep}, deleted {len(deleted)} receipt(s): {', '.join(deleted) or '-'}")
    return 0


def cmd_dismiss(args: argparse.Namespace, store: JsonReceiptStore) -> int:
    review = DuplicateReview(store.get(args.user))
    group = review.get_group(args.group)
    print(
        f"  Group {group.id} exists ({group.size} receipts); nothing deleted. "
        "Dismissals only last for one review pass and are not persisted."
    )
    return 0


def cmd_summary(args: argparse.Namespace, store: JsonReceiptStore) -> int:
    summary = spending_summary(store.get(args.user))
    if args.json:
        _print_json(summary)
        return 0
    print(f"  Total spent:     ${summary['total_spent']:.2f}")
    print(f"  This month:      ${summary['this_month']:.2f}")
    print(f"  Receipts:        {summary['receipt_count']}")
    print(f"  Average receipt: ${summary['average_receipt']:.2f}")
    for entry in summary["by_category"]:
        print(f"    {entry['name']:<20} ${entry['value']:.2f}")
    return 0


def cmd_export(args: argparse.Namespace, store: JsonReceiptStore) -> int:
    backup = store.export_backup(args.user)
    Path(args.output).write_text(json.dumps(backup, indent=2, ensure_ascii=False), encoding="utf-8")
    print(f"  Exported {len(backup['receipts'])} receipt(s) to {args.output}")
    return 0


def cmd_import(args: argparse.Namespace, store: JsonReceiptStore) -> int:
    profile, receipts = store.import_backup(_read_json(args.file))
    print(f"  Restored {len(receipts)} receipt(s) for user {profile['id']}")
    return 0


COMMANDS = {
    "check": cmd_check,
    "import-csv": cmd_import_csv,
    "review": cmd_review,
    "resolve": cmd_resolve,
    "dismiss": cmd_dismiss,
    "summary": cmd_summary,
    "export": cmd_export,
    "import": cmd_import,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spendwise",
        description="Duplicate detection and review for SpendWise receipt collections.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  %(prog)s --user alex check candidate.json\n"
            "  %(prog)s --user alex import-csv statement.csv\n"
            "  %(prog)s --user alex review\n"
            "  %(prog)s --user alex resolve group-abc123 --keep abc123\n"
        ),
    )
    parser.add_argument("--user", "-u", default="local", help="User id whose collection to use")
    parser.add_argument("--store-dir", help="Receipts directory (default: $RECEIPTS_DIR or data/receipts)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose (DEBUG-level) logging")
    parser.add_argument("--log-json", action="store_true", help="Output logs as JSON lines")

    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Check a candidate receipt JSON against the store")
    check.add_argument("file", help="Receipt or extraction payload JSON file")
    check.add_argument("--source", choices=[s.value for s in ReceiptSource], default="scan")
    check.add_argument("--json", action="store_true")

    import_csv = sub.add_parser("import-csv", help="Import receipts from a CSV export")
    import_csv.add_argument("csv", help="CSV with store, date and amount columns")
    import_csv.add_argument("--strict", action="store_true", help="Fail on rows missing store/date/amount")
    import_csv.add_argument("--force", action="store_true", help="Store fingerprint duplicates too")
    import_csv.add_argument("--json", action="store_true")

    review = sub.add_parser("review", help="List duplicate groups")
    review.add_argument("--json", action="store_true")

    resolve = sub.add_parser("resolve", help="Keep one receipt of a group and delete the others")
    resolve.add_argument("group", help="Group id, e.g. group-abc123")
    resolve.add_argument("--keep", required=True, help="Receipt id to keep")
    resolve.add_argument("--delete", nargs="*", help="Receipt ids to delete (default: all others)")

    dismiss = sub.add_parser(
        "dismiss",
        help="Check a group id and keep all its receipts (dismissals are per-pass and not persisted)",
    )
    dismiss.add_argument("group")

    summary = sub.add_parser("summary", help="Show spending summary")
    summary.add_argument("--json", action="store_true")

    export = sub.add_parser("export", help="Write a JSON backup")
    export.add_argument("output")

    restore = sub.add_parser("import", help="Restore a JSON backup")
    restore.add_argument("file")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        json_format=args.log_json,
    )

    store = JsonReceiptStore(args.store_dir)
    logger.info("cli_command | command=%s | user=%s | store=%s", args.command, args.user, store.root)
    try:
        return COMMANDS[args.command](args, store)
    except (FileNotFoundError, StoreError, ValueError) as exc:
        print(f"\n  {FAIL_CHAR} {exc}\n", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
