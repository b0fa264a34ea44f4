#!/usr/bin/env python3
"""
Export and import FoundryVTT adventures from the command line.

Usage:
    adventure-archive export --select scene:abc123 --select actor:def456 --name "Goblin Cave"
    adventure-archive import output/adventures/Goblin_Cave.fvttadv
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from adventure.exporter import AdventureExporter
from adventure.importer import AdventureImporter
from adventure.models import ExportState, ImportState, Selection
from adventure.progress import LoggingProgressReporter
from config import PROJECT_ROOT
from exceptions import AdventureError
from foundry.client import WorldClient
from foundry.storage import select_storage_backend
from logging_config import setup_logging

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIR = PROJECT_ROOT / "output" / "adventures"
LOGGED_PACKAGES = ("adventure", "foundry")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="adventure-archive",
        description="Export FoundryVTT world documents to an adventure archive, or import one"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log per-asset details"
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Also write logs to this file"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser("export", help="Pack selected documents into an archive")
    export_parser.add_argument(
        "--select",
        dest="selection",
        action="append",
        required=True,
        type=Selection.parse,
        metavar="KIND:ID",
        help="Document to export, e.g. scene:abc123 (repeatable)"
    )
    export_parser.add_argument("--name", help="Adventure name (default: Adventure <timestamp>)")
    export_parser.add_argument("--description", default="", help="Adventure description")
    export_parser.add_argument(
        "--preserve-folders",
        action="store_true",
        help="Recreate the folder tree at top level on import"
    )
    export_parser.add_argument(
        "--output",
        type=Path,
        default=DEFAULT_OUTPUT_DIR,
        help=f"Output directory (default: {DEFAULT_OUTPUT_DIR})"
    )

    import_parser = subparsers.add_parser("import", help="Recreate an archive in the active world")
    import_parser.add_argument("archive", type=Path, help="Path to a .fvttadv file")

    return parser


async def run_export(args: argparse.Namespace, client: WorldClient) -> int:
    exporter = AdventureExporter(client, select_storage_backend(), reporter=LoggingProgressReporter(logger))
    result = await exporter.export(
        args.selection,
        name=args.name,
        description=args.description,
        preserve_folders=args.preserve_folders,
        output_dir=args.output
    )

    for warning in result.warnings:
        logger.warning(warning)
    for failure in result.failures:
        logger.error(f"Skipped {failure.kind} {failure.id}: {failure.error}")

    if result.state != ExportState.DONE:
        logger.error("Export aborted")
        return 1

    logger.info(f"Export complete: {result.output_path}")
    return 0


async def run_import(args: argparse.Namespace, client: WorldClient) -> int:
    world = await client.get_world_info()
    world_id = world.get("id")
    if not world_id:
        logger.error("Could not determine the active world id")
        return 1

    importer = AdventureImporter(
        client, select_storage_backend(), world_id, reporter=LoggingProgressReporter(logger)
    )
    result = await importer.import_archive(args.archive)

    for failure in result.failures:
        logger.error(f"Skipped {failure.kind} {failure.id}: {failure.error}")

    if result.state != ImportState.DONE:
        logger.error("Import aborted")
        return 1

    logger.info(
        f"Import complete: {result.documents_created} created, {result.documents_updated} updated, "
        f"{result.folders_created} folder(s) created"
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the adventure-archive command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    setup_logging(LOGGED_PACKAGES, level=level, log_file=args.log_file)

    try:
        client = WorldClient()
    except ValueError as e:
        logger.error(str(e))
        return 1

    if not client.is_world_active():
        logger.error("No active FoundryVTT world is reachable through the relay")
        return 1

    runner = run_export if args.command == "export" else run_import
    try:
        return asyncio.run(runner(args, client))
    except AdventureError as e:
        logger.error(f"{args.command.capitalize()} aborted: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
