"""
containerd-meta-viewer command line.

Typical usage:
    containerd-meta-viewer buckets
    containerd-meta-viewer -o json snapshots list
    containerd-meta-viewer snapshots search --content-id <cid>
    containerd-meta-viewer -p ./metadata.db devbox lvm-map

The database is opened read-only. When the snapshotter is running and holds
the file locked, a private copy is read instead and removed on exit.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import List, Optional

from meta_viewer.config import DEFAULT_DB_PATH, DEFAULT_OPEN_TIMEOUT, OUTPUT_FORMATS, OUTPUT_TABLE, Settings
from meta_viewer.errors import MetaViewerError, StoreCloseError
from meta_viewer.formatters import new_formatter
from meta_viewer.reader import MetaReader

logger = logging.getLogger("meta_viewer")


# -----------------------------
# Logging + error reporting
# -----------------------------

def configure_logging(verbose: bool) -> None:
    """Log to stderr as `[<utc time>] LEVEL: message`; DEBUG when verbose."""
    handler = logging.StreamHandler(sys.stderr)
    formatter = logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s", datefmt="%Y-%m-%dT%H:%M:%SZ")
    formatter.converter = time.gmtime
    handler.setFormatter(formatter)
    logger.handlers[:] = [handler]
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


def report_error(exc: BaseException, action: str) -> int:
    print(f"Error: failed to {action}: {exc}", file=sys.stderr, flush=True)
    logger.debug(f"{type(exc).__name__} while trying to {action}", exc_info=exc)
    return 1


# -----------------------------
# Commands
# -----------------------------

def run_buckets(reader: MetaReader, args: argparse.Namespace, fmt) -> None:
    fmt.format_buckets(reader.list_buckets())


def run_snapshots_list(reader: MetaReader, args: argparse.Namespace, fmt) -> None:
    fmt.format_snapshots(reader.list_snapshots())


def run_snapshots_get(reader: MetaReader, args: argparse.Namespace, fmt) -> None:
    fmt.format_snapshot(reader.get_snapshot(args.key))


def run_snapshots_search(reader: MetaReader, args: argparse.Namespace, fmt) -> None:
    fmt.format_snapshots(reader.search_snapshots(args.content_id, args.path))


def run_devbox_list(reader: MetaReader, args: argparse.Namespace, fmt) -> None:
    fmt.format_devbox_storage(reader.list_devbox_storage())


def run_devbox_get(reader: MetaReader, args: argparse.Namespace, fmt) -> None:
    fmt.format_devbox_storage_item(reader.get_devbox_storage(args.content_id))


def run_devbox_lvm_map(reader: MetaReader, args: argparse.Namespace, fmt) -> None:
    fmt.format_lvm_map(reader.list_devbox_storage())


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="containerd-meta-viewer",
        description="Inspect the metadata stored by the containerd devbox snapshotter "
                    "(snapshots, storage information and LVM mappings in its bolt database).",
    )
    ap.add_argument("-p", "--db-path", default="", help=f"Path to the containerd metadata.db file (default: {DEFAULT_DB_PATH}).")
    ap.add_argument("-o", "--output", default=OUTPUT_TABLE, help=f"Output format ({'|'.join(OUTPUT_FORMATS)}).")
    ap.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output (debug logging, indented JSON).")
    ap.add_argument("--timeout", type=float, default=DEFAULT_OPEN_TIMEOUT,
                    help=f"Seconds to wait for the database lock before reading a copy (default: {DEFAULT_OPEN_TIMEOUT}).")

    sub = ap.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    p = sub.add_parser("buckets", help="List all top-level buckets in the database.")
    p.set_defaults(handler=run_buckets, action="list buckets")

    snaps = sub.add_parser("snapshots", help="Inspect devbox snapshots.")
    snaps_sub = snaps.add_subparsers(dest="subcommand", metavar="SUBCOMMAND")
    snaps_sub.required = True
    p = snaps_sub.add_parser("list", help="List all snapshots.")
    p.set_defaults(handler=run_snapshots_list, action="list snapshots")
    p = snaps_sub.add_parser("get", help="Show one snapshot, including labels and timestamps.")
    p.add_argument("key", help="Snapshot key.")
    p.set_defaults(handler=run_snapshots_get, action="get snapshot")
    p = snaps_sub.add_parser("search", help="Search snapshots by content ID and/or mount path.")
    p.add_argument("--content-id", default="", help="Search by content ID.")
    p.add_argument("--path", default="", help="Search by mount path.")
    p.set_defaults(handler=run_snapshots_search, action="search snapshots")

    devbox = sub.add_parser("devbox", help="Inspect devbox storage entries (devbox_storage_path bucket).")
    devbox_sub = devbox.add_subparsers(dest="subcommand", metavar="SUBCOMMAND")
    devbox_sub.required = True
    p = devbox_sub.add_parser("list", help="List all devbox storage entries.")
    p.set_defaults(handler=run_devbox_list, action="list devbox storage")
    p = devbox_sub.add_parser("get", help="Show one devbox storage entry.")
    p.add_argument("content_id", help="Content ID.")
    p.set_defaults(handler=run_devbox_get, action="get devbox storage")
    p = devbox_sub.add_parser("lvm-map", help="Show LVM volume to mount path mappings.")
    p.set_defaults(handler=run_devbox_lvm_map, action="list devbox storage")

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings(
        db_path=args.db_path or DEFAULT_DB_PATH,
        output=args.output,
        verbose=args.verbose,
        timeout=args.timeout,
    )
    configure_logging(settings.verbose)
    if not args.db_path:
        logger.info(f"Using default database path: {settings.db_path}")

    try:
        settings.validate()
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr, flush=True)
        return 1

    try:
        reader = MetaReader.open(settings.db_path, timeout=settings.timeout)
    except MetaViewerError as exc:
        return report_error(exc, "create database reader")

    fmt = new_formatter(settings.output, pretty=settings.verbose)
    try:
        with reader:
            args.handler(reader, args, fmt)
    except StoreCloseError as exc:
        return report_error(exc, "close database reader")
    except MetaViewerError as exc:
        return report_error(exc, args.action)
    return 0
