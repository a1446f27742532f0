"""CLI entry point for extragrid.

Usage:
    python -m extragrid pull <table_id> [output.json]
    python -m extragrid preview <file.xlsx|file.csv> [--table table.json]
    python -m extragrid diff <snapshot.json> <current.json>
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from extragrid.client import GridClient, load_table_file
from extragrid.config import get_settings
from extragrid.exceptions import ExtraGridError
from extragrid.importer import ImportAction, read_import_file, suggest_mappings
from extragrid.logging import configure_logging
from extragrid.models import value_to_text
from extragrid.sync import compute_changes
from extragrid.transport import SupabaseTransport


async def cmd_pull(args: argparse.Namespace) -> int:
    """Pull a table to a local JSON file."""
    settings = get_settings()
    if not settings.has_store:
        print(
            "Error: EXTRAGRID_SUPABASE_URL and EXTRAGRID_SUPABASE_KEY must be set",
            file=sys.stderr,
        )
        return 1

    output_path = Path(args.output) if args.output else Path(f"{args.table_id}.json")
    transport = SupabaseTransport(
        settings.supabase_url, settings.supabase_key, timeout=settings.request_timeout
    )
    client = GridClient(transport, settings)

    print(f"Pulling table: {args.table_id}", file=sys.stderr)
    try:
        path = await client.pull(args.table_id, output_path)
        print(f"Wrote {path}")
        return 0
    except ExtraGridError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await client.close()


async def cmd_preview(args: argparse.Namespace) -> int:
    """Show the header, first rows and suggested column mappings of an import file."""
    settings = get_settings()
    try:
        source = read_import_file(
            Path(args.file),
            max_file_bytes=settings.import_max_file_bytes,
            max_rows=settings.import_max_rows,
        )
        columns = load_table_file(Path(args.table)).columns if args.table else []
    except (ExtraGridError, OSError, json.JSONDecodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"# {source.file_name}: {len(source.body_rows)} row(s)")
    print("\t".join(source.headers))
    for row in source.preview:
        print("\t".join(value_to_text(v) for v in row))

    print("\n# Suggested mappings")
    titles = {c.id: c.title for c in columns}
    for mapping in suggest_mappings(source.headers, columns):
        if mapping.action is ImportAction.EXISTING and mapping.existing_column_id:
            target = f"existing column {titles[mapping.existing_column_id]!r}"
        elif mapping.action is ImportAction.NEW:
            target = f"new {mapping.new_column_type.value} column {mapping.new_column_name!r}"
        else:
            target = "ignore"
        print(f"{mapping.source_header} -> {target}")
    return 0


async def cmd_diff(args: argparse.Namespace) -> int:
    """Show the store operations between two table files (dry run)."""
    try:
        snapshot = load_table_file(Path(args.snapshot))
        current = load_table_file(Path(args.current))
    except (OSError, json.JSONDecodeError, KeyError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    changes = compute_changes(snapshot, current)
    if not changes.has_changes:
        print("No changes detected.")
        return 0

    print(json.dumps(changes.to_dict(), indent=2, ensure_ascii=False))
    print(
        f"\n# columns={'replace' if changes.columns else 'unchanged'} "
        f"deletes={len(changes.deletes)} creates={len(changes.creates)} "
        f"updates={len(changes.updates)}",
        file=sys.stderr,
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="extragrid",
        description="Spreadsheet-like tables with import, enrichment and store sync",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # pull subcommand
    pull_parser = subparsers.add_parser(
        "pull",
        help="Pull a table from the store to a JSON file",
    )
    pull_parser.add_argument("table_id", help="Table ID")
    pull_parser.add_argument(
        "output",
        nargs="?",
        default=None,
        help="Output file (defaults to ./<table_id>.json)",
    )
    pull_parser.set_defaults(func=cmd_pull)

    # preview subcommand
    preview_parser = subparsers.add_parser(
        "preview",
        help="Preview an .xlsx or .csv import and suggest column mappings",
    )
    preview_parser.add_argument("file", help="Path to the .xlsx or .csv file")
    preview_parser.add_argument(
        "--table",
        default=None,
        help="Table JSON (from pull) to match headers against",
    )
    preview_parser.set_defaults(func=cmd_preview)

    # diff subcommand
    diff_parser = subparsers.add_parser(
        "diff",
        help="Show store operations between two table files (dry run)",
    )
    diff_parser.add_argument("snapshot", help="Table JSON of the last synced state")
    diff_parser.add_argument("current", help="Table JSON of the edited state")
    diff_parser.set_defaults(func=cmd_diff)

    args = parser.parse_args(argv)
    settings = get_settings()
    configure_logging(is_production=settings.is_production, log_level=settings.log_level)
    result: int = asyncio.run(args.func(args))
    return result


if __name__ == "__main__":
    sys.exit(main())
