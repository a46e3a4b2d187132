"""Sequences one live sync run: detect, fetch, validate, persist.

States:
    IDLE -> DETECTING_LIVE -> NO_LIVE_GAMES -> SUCCEEDED
                           -> FETCHING_DATA -> VALIDATING -> SKIPPED -> FAILED
                                                          -> PERSISTING -> SUCCEEDED | FAILED

Any fetch error fails the run before a single write. A validation failure
skips the write path entirely. Reference writes abort on the first storage
error; live stat rows are best effort but any failed row fails the run.
"""

import logging
import time
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import asyncpg

from fpl_live.config import Settings
from fpl_live.db import connect as connect_db
from fpl_live.errors import (
    LiveSyncError,
    MalformedResponse,
    PartialBatchFailure,
    SourceUnavailable,
    ValidationFailed,
)
from fpl_live.services.fpl_client import FplApiClient, LiveSnapshot, ReferenceSnapshot
from fpl_live.services.live_state import LiveStateDetector
from fpl_live.services.upsert import BatchResult, UpsertEngine
from fpl_live.services.validator import ValidationResult, validate

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], AbstractAsyncContextManager[asyncpg.Connection]]


class SyncState(str, Enum):
    IDLE = "idle"
    DETECTING_LIVE = "detecting_live"
    NO_LIVE_GAMES = "no_live_games"
    FETCHING_DATA = "fetching_data"
    VALIDATING = "validating"
    SKIPPED = "skipped"
    PERSISTING = "persisting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SyncOutcome(str, Enum):
    UPDATED = "updated"
    SKIPPED = "skipped"  # no live game, nothing to do
    FAILED = "failed"


@dataclass
class SyncBatch:
    """Everything fetched and written during one run (never persisted)."""

    gameweek_id: int | None = None
    reference: ReferenceSnapshot | None = None
    fixtures: list[dict[str, Any]] = field(default_factory=list)
    live: LiveSnapshot | None = None
    validation: ValidationResult | None = None
    reference_counts: dict[str, int] = field(default_factory=dict)
    live_result: BatchResult | None = None

    @property
    def rows_updated(self) -> int:
        return self.live_result.succeeded if self.live_result else 0

    @property
    def rows_failed(self) -> int:
        return self.live_result.failed if self.live_result else 0


@dataclass
class SyncResult:
    """Final state of a run and how the process should exit."""

    state: SyncState
    outcome: SyncOutcome
    message: str
    batch: SyncBatch
    error: LiveSyncError | None = None
    states: list[SyncState] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def exit_code(self) -> int:
        return 1 if self.outcome is SyncOutcome.FAILED else 0

    @property
    def retryable(self) -> bool:
        """Failed before any write because the API could not be reached."""
        return isinstance(self.error, SourceUnavailable) and not isinstance(
            self.error, MalformedResponse
        )


class LiveSyncOrchestrator:
    """
    Runs the live sync pipeline once.

    Configuration is passed in explicitly. The API client and the
    connection factory can be injected; otherwise they are built from the
    settings and the client is closed when the run ends.
    """

    def __init__(
        self,
        settings: Settings,
        client: FplApiClient | None = None,
        connect: ConnectionFactory | None = None,
    ):
        self.settings = settings
        self._owns_client = client is None
        self.client = client or FplApiClient(
            base_url=settings.fpl_api_base_url, timeout=settings.request_timeout
        )
        self._connect = connect or (lambda: connect_db(settings))
        self.detector = LiveStateDetector(
            self.client, stale_fixture_hours=settings.stale_fixture_hours
        )
        self.state = SyncState.IDLE
        self._states: list[SyncState] = [SyncState.IDLE]

    def _transition(self, state: SyncState) -> None:
        logger.debug(f"Sync state: {self.state.value} -> {state.value}")
        self.state = state
        self._states.append(state)

    def _finish(
        self,
        outcome: SyncOutcome,
        message: str,
        batch: SyncBatch,
        start: float,
        error: LiveSyncError | None = None,
    ) -> SyncResult:
        self._transition(
            SyncState.FAILED if outcome is SyncOutcome.FAILED else SyncState.SUCCEEDED
        )
        return SyncResult(
            state=self.state,
            outcome=outcome,
            message=message,
            batch=batch,
            error=error,
            states=list(self._states),
            elapsed=time.monotonic() - start,
        )

    async def run(self) -> SyncResult:
        """Run detection and, if a match is live, the full update."""
        start = time.monotonic()
        self.state = SyncState.IDLE
        self._states = [SyncState.IDLE]
        logger.info(f"Live update started at {datetime.now(UTC).isoformat()}")
        try:
            return await self._run(start)
        finally:
            if self._owns_client:
                await self.client.close()

    async def _run(self, start: float) -> SyncResult:
        batch = SyncBatch()

        # 1. Is anything live?
        self._transition(SyncState.DETECTING_LIVE)
        try:
            check = await self.detector.detect()
        except SourceUnavailable as e:
            logger.error(f"Live check failed: {e}")
            return self._finish(SyncOutcome.FAILED, str(e), batch, start, e)

        batch.reference = check.reference
        batch.gameweek_id = check.gameweek_id
        batch.fixtures = check.fixtures

        if not check.is_live:
            self._transition(SyncState.NO_LIVE_GAMES)
            logger.info("No live games. Skipping update.")
            return self._finish(
                SyncOutcome.SKIPPED, "No live games. Skipping update.", batch, start
            )

        # 2. Fetch live stats (reference data and fixtures came with the check)
        self._transition(SyncState.FETCHING_DATA)
        logger.info("Live game detected! Updating database...")
        try:
            batch.live = await self.client.fetch_live_stats(check.gameweek_id)
        except SourceUnavailable as e:
            logger.error(f"Error fetching gameweek data: {e}")
            return self._finish(SyncOutcome.FAILED, str(e), batch, start, e)

        # 3. Validate everything before touching storage
        self._transition(SyncState.VALIDATING)
        batch.validation = validate(
            batch.reference,
            batch.live,
            batch.fixtures,
            min_players=self.settings.min_player_count,
            expected_teams=self.settings.expected_team_count,
            expected_gameweeks=self.settings.expected_gameweek_count,
        )
        if not batch.validation.ok:
            self._transition(SyncState.SKIPPED)
            error = ValidationFailed(batch.validation.reasons)
            logger.error(f"{error} - skipping database update")
            return self._finish(SyncOutcome.FAILED, str(error), batch, start, error)

        # 4. Persist: reference data in FK order, then live stats
        self._transition(SyncState.PERSISTING)
        try:
            async with self._connect() as conn:
                engine = UpsertEngine(conn)
                batch.reference_counts = await engine.apply_reference(
                    batch.reference, batch.fixtures
                )
                try:
                    batch.live_result = await engine.apply_live_stats(batch.live)
                except PartialBatchFailure as e:
                    batch.live_result = e.batch
                    raise
                await engine.record_last_update(batch.gameweek_id)
        except LiveSyncError as e:
            logger.error(f"Database update failed: {e}")
            return self._finish(SyncOutcome.FAILED, str(e), batch, start, e)

        message = (
            f"Database update completed successfully: {batch.rows_updated} players "
            f"updated for GW{batch.gameweek_id}"
        )
        logger.info(message)
        return self._finish(SyncOutcome.UPDATED, message, batch, start)
