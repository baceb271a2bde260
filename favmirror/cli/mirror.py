"""Command-line entry point for the favorites mirror.

Usage:
    favmirror                 # run ticks forever on the configured cadence
    favmirror --once          # run one tick and exit
    favmirror --once --full   # force a full pass
    favmirror --dry-run       # show what the next reconciliation would push
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import TYPE_CHECKING

from favmirror import __version__
from favmirror.config import load_config
from favmirror.core.logging_utils import setup_json_logging
from favmirror.di.container import Container
from favmirror.domain.exceptions import FavMirrorError

if TYPE_CHECKING:
    from favmirror.config import AppConfig
    from favmirror.services.orchestrator import PreviewResult, TickResult

logger = logging.getLogger("favmirror")

PREVIEW_LIMIT = 10


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="favmirror",
        description="Mirror Gelbooru favorites and their tags into Szurubooru",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single tick and exit instead of scheduling forever",
    )
    parser.add_argument(
        "--full",
        action="store_true",
        help="Force a full pass regardless of when the last one ran",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be pushed to the destination without making changes",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def print_preview(preview: PreviewResult) -> None:
    print("\n=== Favorites Mirror Preview (DRY RUN) ===\n")
    print(f"Stored items: {preview.items_total}")
    if preview.favorites_count is not None:
        print(f"Favorites on source at last sync: {preview.favorites_count}")
    print(f"Last full sync: {preview.last_full_sync_at or 'never'}")
    print(f"Full pass due: {'yes' if preview.full_due else 'no'}")
    print()
    print(f"Would create: {len(preview.to_create)} posts")
    print(f"Would update: {len(preview.to_update)} posts")
    print(f"Unchanged: {preview.unchanged}")
    print(f"Tags to push: {len(preview.pending_tags)}")

    for label, ids in (("created", preview.to_create), ("updated", preview.to_update)):
        if not ids:
            continue
        print(f"\n  Posts that would be {label}:")
        for post_id in ids[:PREVIEW_LIMIT]:
            print(f"    - #{post_id}")
        if len(ids) > PREVIEW_LIMIT:
            print(f"    ... and {len(ids) - PREVIEW_LIMIT} more")

    print("\n=== End of Preview ===")
    print("Run without --dry-run to execute the sync.")


def print_summary(result: TickResult) -> None:
    print(f"\n=== Favorites Mirror Tick ({result.mode}) ===")
    print(f"Discovered: {result.discovered}, new favorites: {result.new_favorites}")
    if result.ingest:
        print(
            f"Ingest: {result.ingest.created} created, {result.ingest.updated} updated, "
            f"{result.ingest.unchanged} unchanged, {result.ingest.failed} failed"
        )
    for sync in (result.tag_sync, result.item_sync):
        if sync is None:
            continue
        print(
            f"{sync.phase}: {sync.items_synced} synced, {sync.items_skipped} skipped, "
            f"{sync.items_unchanged} unchanged, {sync.items_failed} failed"
        )
        for err in sync.errors[:PREVIEW_LIMIT]:
            print(f"  - {err}")
    if result.destination_error:
        print(f"Destination unavailable: {result.destination_error}")
    if result.cancelled:
        print("Tick cancelled before completion")
    print(f"Duration: {result.duration_seconds:.1f}s")


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform's event loop.
            logger.debug("signal_handler_unavailable", extra={"signal": sig.name})


async def run(cfg: AppConfig, *, once: bool, full: bool, dry_run: bool) -> int:
    """Run the mirror.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)
    container = Container(cfg, stop_event=stop_event)

    try:
        orchestrator = container.orchestrator()

        if dry_run:
            logger.info("dry_run_preview")
            print_preview(await orchestrator.preview())
            return 0

        if once:
            result = await orchestrator.run_tick(force_full=True if full else None)
            print_summary(result)
            failed = (result.item_sync.items_failed if result.item_sync else 0) + (
                result.tag_sync.items_failed if result.tag_sync else 0
            )
            return 0 if not failed and not result.destination_error else 1

        scheduler = container.scheduler()
        if full:
            logger.info("full_pass_requested")
        await scheduler.start(force_full=full)
        await scheduler.wait_stopped()
        logger.info("shutdown_requested")
        await scheduler.stop()
        return 0

    except FavMirrorError as e:
        logger.exception("favmirror_failed", extra={"error": str(e)})
        print(f"\nERROR: {e}")
        return 1
    finally:
        await container.aclose()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        cfg = load_config()
    except RuntimeError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    setup_json_logging(
        args.log_level or cfg.runtime.log_level,
        use_loguru=cfg.runtime.log_use_loguru,
        log_file=cfg.runtime.log_file,
    )
    return asyncio.run(run(cfg, once=args.once, full=args.full, dry_run=args.dry_run))


if __name__ == "__main__":
    sys.exit(main())
