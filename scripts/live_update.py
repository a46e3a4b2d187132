#!/usr/bin/env python
"""
Live match sync for FPL player and fixture data.

Run every few minutes by the scheduler. Does nothing unless a fixture in
the current gameweek is in progress; then syncs reference data and
overwrites each player's live gameweek stats.

Usage:
    python -m scripts.live_update                # Run the live sync
    python -m scripts.live_update --check-live   # Only report whether a match is live
    python -m scripts.live_update --status       # Show when the last update ran

Exit code is 0 when the update succeeded or was skipped (no live game),
1 on any failure.
"""

import argparse
import asyncio
import logging
import sys

import asyncpg
from dotenv import load_dotenv
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from fpl_live.config import Settings, get_settings
from fpl_live.db import connect
from fpl_live.errors import LiveSyncError
from fpl_live.services.fpl_client import FplApiClient
from fpl_live.services.live_state import LiveStateDetector
from fpl_live.services.orchestrator import LiveSyncOrchestrator, SyncOutcome, SyncResult
from fpl_live.services.upsert import LAST_UPDATE_KEY

# Load environment
load_dotenv(".env.local")
load_dotenv(".env")

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )


def _return_last_result(retry_state) -> SyncResult:
    """Hand back the final failed result once attempts are exhausted."""
    return retry_state.outcome.result()


async def run_live_update(settings: Settings) -> SyncResult:
    """Run the pipeline, re-running it when the FPL API was unreachable.

    A source outage fails the run before anything is written, so running
    the whole pipeline again is safe.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(settings.run_attempts, 1)),
        wait=wait_exponential(multiplier=settings.run_retry_backoff, max=60),
        retry=retry_if_result(lambda result: result.retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        retry_error_callback=_return_last_result,
    )

    async def attempt() -> SyncResult:
        return await LiveSyncOrchestrator(settings).run()

    return await retrying(attempt)


async def check_live(settings: Settings) -> int:
    """Report whether a match is live without writing anything."""
    async with FplApiClient(
        base_url=settings.fpl_api_base_url, timeout=settings.request_timeout
    ) as client:
        detector = LiveStateDetector(client, stale_fixture_hours=settings.stale_fixture_hours)
        try:
            check = await detector.detect()
        except LiveSyncError as e:
            print(f"✗ Live check failed: {e}", file=sys.stderr)
            return 1

    if check.gameweek_id is None:
        print("No current gameweek")
    elif check.is_live:
        ids = ", ".join(str(f.get("id")) for f in check.live_fixtures)
        print(f"GW{check.gameweek_id}: {len(check.live_fixtures)} live fixture(s) ({ids})")
    else:
        print(f"GW{check.gameweek_id}: no live fixtures")
    return 0


async def show_status(settings: Settings) -> int:
    """Show when the last successful live update ran."""
    try:
        async with connect(settings) as conn:
            row = await conn.fetchrow(
                "SELECT value_int, value_datetime FROM metadata WHERE key_name = $1",
                LAST_UPDATE_KEY,
            )
    except (LiveSyncError, asyncpg.PostgresError) as e:
        print(f"\nError: Could not read update status - {e}", file=sys.stderr)
        return 1

    print("\nLive Update Status")
    print("-" * 40)
    if row and row["value_datetime"]:
        print(f"Last Update:         {row['value_datetime']}")
        print(f"Gameweek:            {row['value_int']}")
    else:
        print("No live updates have run yet")
    print("-" * 40)
    return 0


def report(result: SyncResult) -> None:
    """Print the final line of a run to stdout or stderr."""
    if result.outcome is SyncOutcome.SKIPPED:
        print(f"Skipped: {result.message}")
    elif result.outcome is SyncOutcome.UPDATED:
        counts = ", ".join(f"{n} {t}" for t, n in result.batch.reference_counts.items())
        print(f"\n✓ {result.message} in {result.elapsed:.1f}s")
        if counts:
            print(f"  - Reference data: {counts}")
    else:
        batch = result.batch
        print(f"\n✗ Live update failed: {result.message}", file=sys.stderr)
        if batch.live_result is not None:
            print(
                f"  - Player stats: {batch.rows_updated} updated, {batch.rows_failed} failed",
                file=sys.stderr,
            )


async def main(argv: list[str] | None = None) -> int:
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(description="Live FPL data sync")
    parser.add_argument(
        "--check-live",
        action="store_true",
        help="Only check whether a match is live (no database writes)",
    )
    parser.add_argument(
        "--status", action="store_true", help="Show when the last update ran"
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings)

    if args.check_live:
        return await check_live(settings)
    if args.status:
        return await show_status(settings)

    try:
        result = await run_live_update(settings)
    except Exception as e:
        logger.error(f"Live update crashed: {e}", exc_info=True)
        print(f"\n✗ Live update failed: {e}", file=sys.stderr)
        return 1

    report(result)
    return result.exit_code


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
