"""Decide whether any Premier League match is currently in progress."""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from fpl_live.errors import MalformedResponse
from fpl_live.services.fpl_client import FplApiClient, ReferenceSnapshot, parse_fpl_datetime

logger = logging.getLogger(__name__)


def find_current_gameweek(events: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Return the single event flagged is_current, or None off-season.

    Raises:
        MalformedResponse: more than one event is flagged current
    """
    current = [event for event in events if event.get("is_current") is True]
    if len(current) > 1:
        ids = ", ".join(str(event.get("id")) for event in current)
        raise MalformedResponse(
            "bootstrap-static", f"multiple current gameweeks flagged ({ids})"
        )
    return current[0] if current else None


def is_fixture_live(fixture: dict[str, Any]) -> bool:
    """A fixture is live once it has started and until it has finished."""
    return fixture.get("started") is True and fixture.get("finished") is False


def is_fixture_stale(
    fixture: dict[str, Any], max_age_hours: float, now: datetime | None = None
) -> bool:
    """Check whether a live-flagged fixture kicked off implausibly long ago."""
    kickoff = parse_fpl_datetime(fixture.get("kickoff_time"))
    if kickoff is None:
        return False
    now = now or datetime.now(UTC)
    return now - kickoff > timedelta(hours=max_age_hours)


@dataclass
class LiveCheck:
    """Outcome of a live-state check, with the data fetched to decide it."""

    is_live: bool
    reference: ReferenceSnapshot
    gameweek_id: int | None = None
    fixtures: list[dict[str, Any]] = field(default_factory=list)
    live_fixtures: list[dict[str, Any]] = field(default_factory=list)


class LiveStateDetector:
    """Checks the current gameweek's fixtures for a match in progress."""

    def __init__(self, client: FplApiClient, stale_fixture_hours: float | None = None):
        self.client = client
        self.stale_fixture_hours = stale_fixture_hours

    async def is_live(self) -> bool:
        """True iff at least one fixture of the current gameweek is live."""
        return (await self.detect()).is_live

    async def detect(self) -> LiveCheck:
        """
        Fetch the reference snapshot and current gameweek fixtures and
        decide whether a match is in progress.

        No current gameweek (off-season) is a valid state and yields
        is_live=False rather than an error.
        """
        reference = await self.client.fetch_reference_snapshot()

        current = find_current_gameweek(reference.gameweeks)
        if current is None:
            logger.info("No current gameweek found")
            return LiveCheck(is_live=False, reference=reference)

        gameweek_id = current.get("id")
        logger.info(f"Current gameweek: {gameweek_id}")

        fixtures = await self.client.fetch_fixtures(gameweek_id)
        live_fixtures = [f for f in fixtures if is_fixture_live(f)]

        if self.stale_fixture_hours is not None:
            fresh = []
            for fixture in live_fixtures:
                if is_fixture_stale(fixture, self.stale_fixture_hours):
                    logger.warning(
                        f"Fixture {fixture.get('id')} is flagged live but kicked off at "
                        f"{fixture.get('kickoff_time')} - ignoring as stale"
                    )
                    continue
                fresh.append(fixture)
            live_fixtures = fresh

        if live_fixtures:
            logger.info(f"Found {len(live_fixtures)} live fixture(s)")
        else:
            logger.info("No live fixtures at this time")

        return LiveCheck(
            is_live=bool(live_fixtures),
            reference=reference,
            gameweek_id=gameweek_id,
            fixtures=fixtures,
            live_fixtures=live_fixtures,
        )
