"""CLI entry point for stockbot.

Sub-commands:
- search:   query Freepik for every scene of a stock plan and write
            _meta/candidates.json and _meta/selection.json
- download: download the clips listed in _meta/selection.json
- errors:   show (or clear) the error journal of an output directory

Each run holds the output directory's run lock for its whole duration.
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

from stockapi.core.config import get_api_key, get_config
from stockapi.freepik_api import FreepikApiError, FreepikClient

from .artifacts import SelectionValidationError, load_selection
from .download_runner import DownloadCancelled, DownloadError, DownloadRunner
from .error_journal import ErrorJournal
from .plan import PlanError, load_plan
from .progress import LoggingProgressSink
from .run_lock import LockConflictError, RunLock
from .search_runner import SearchRunner

logger = logging.getLogger("stockbot")


def create_cli_parser() -> argparse.ArgumentParser:
    """Create argument parser.

    Returns:
        Configured ArgumentParser with search/download/errors sub-commands
    """
    parser = argparse.ArgumentParser(
        prog="stockbot",
        description="stockbot - Automated stock video downloader from Freepik",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Search and select clips for every scene
  stockbot search stockplan.json -o ./output

  # Download the selected clips (safe to re-run after an interruption)
  stockbot download stockplan.json -o ./output --max-concurrent 4

  # Inspect failures recorded during previous runs
  stockbot errors -o ./output
        """,
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to JSON config file (default: $STOCKBOT_CONFIG_PATH or config.json).",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="Search for videos matching the stock plan")
    search.add_argument("plan", help="Path to stockplan.json")
    search.add_argument("-o", "--output", default="./output", help="Output directory")

    download = sub.add_parser("download", help="Download the selected videos")
    download.add_argument("plan", help="Path to stockplan.json")
    download.add_argument("-o", "--output", default="./output", help="Output directory")
    download.add_argument("--max-concurrent", type=int, default=None, help="Simultaneous downloads")

    errors = sub.add_parser("errors", help="Show the error journal")
    errors.add_argument("-o", "--output", default="./output", help="Output directory")
    errors.add_argument("--clear", action="store_true", help="Delete the journal")

    return parser


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    # Reduce noisy connection logs from urllib3
    logging.getLogger("urllib3").setLevel(logging.ERROR)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.ERROR)


def _make_client() -> Optional[FreepikClient]:
    api_key = get_api_key()
    if not api_key:
        logger.error("FREEPIK_API_KEY environment variable not set")
        logger.error("Please create a .env file with your Freepik API key")
        return None
    return FreepikClient(api_key)


def _acquire(lock: RunLock, phase: str, journal: ErrorJournal) -> bool:
    try:
        lock.acquire(phase)
    except LockConflictError as e:
        journal.log_lock_conflict(str(e), pid=e.pid, started_at=e.started_at)
        logger.error("%s", e)
        return False
    return True


def run_search(args: argparse.Namespace) -> int:
    try:
        plan = load_plan(args.plan)
    except PlanError as e:
        logger.error("Invalid plan: %s", e)
        return 1

    client = _make_client()
    if client is None:
        return 1

    journal = ErrorJournal(args.output)
    lock = RunLock(args.output)
    if not _acquire(lock, "search", journal):
        return 1

    try:
        runner = SearchRunner(client, args.output, journal=journal, progress=LoggingProgressSink(logger))
        results = runner.run(plan)
    except FreepikApiError as e:
        logger.error("Search failed: %s", e)
        return 1
    finally:
        lock.release()

    counts = results.status_counts()
    logger.info("Search completed!")
    logger.info("  - Total scenes: %d", len(results.selection))
    logger.info("  - Fulfilled: %d", counts["fulfilled"])
    logger.info("  - Partial: %d", counts["partial"])
    logger.info("  - Unfulfilled: %d", counts["unfulfilled"])
    logger.info("Results saved to: %s", os.path.join(args.output, "_meta"))
    stats = client.cache_stats()
    if stats:
        logger.debug("Cache stats: %s", stats)
    return 0


def run_download(args: argparse.Namespace) -> int:
    try:
        plan = load_plan(args.plan)
    except PlanError as e:
        logger.error("Invalid plan: %s", e)
        return 1

    journal = ErrorJournal(args.output)
    try:
        selection = load_selection(args.output)
    except SelectionValidationError as e:
        journal.log_validation_error(str(e), {"output_dir": args.output})
        logger.error("Invalid selection: %s", e)
        return 1

    client = _make_client()
    if client is None:
        return 1

    lock = RunLock(args.output)
    if not _acquire(lock, "download", journal):
        return 1

    runner = DownloadRunner(
        client,
        args.output,
        max_concurrent=args.max_concurrent,
        progress=LoggingProgressSink(logger),
        journal=journal,
    )
    lock.on_shutdown(runner.cancel)

    try:
        manifests = runner.run(plan, selection)
    except DownloadCancelled:
        logger.warning("Download cancelled; re-run the command to resume.")
        return 1
    except DownloadError as e:
        logger.error("Download failed: %s", e)
        return 1
    finally:
        lock.release()

    total = sum(len(m.downloads) for m in manifests)
    logger.info("Download completed: %d file(s) in %d scene(s) under %s", total, len(manifests), args.output)
    return 0


def run_errors(args: argparse.Namespace) -> int:
    journal = ErrorJournal(args.output)
    if args.clear:
        journal.clear()
        print(f"Cleared {journal.path}")
        return 0

    records = journal.read()
    if not records:
        print("No errors recorded.")
        return 0

    for rec in records:
        ctx = ", ".join(f"{k}={v}" for k, v in rec.context.items())
        print(f"{rec.timestamp} [{rec.kind}] {rec.message}" + (f" ({ctx})" if ctx else ""))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()
    parser = create_cli_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)

    if args.config:
        os.environ["STOCKBOT_CONFIG_PATH"] = args.config
    get_config(force_reload=True)

    handlers = {"search": run_search, "download": run_download, "errors": run_errors}
    try:
        return handlers[args.command](args)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
