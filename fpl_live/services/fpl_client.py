"""FPL API client for the live sync pipeline."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from fpl_live.errors import MalformedResponse, SourceUnavailable

logger = logging.getLogger(__name__)

FPL_BASE_URL = "https://fantasy.premierleague.com/api"

# Top-level lists the bootstrap-static payload must carry
BOOTSTRAP_FIELDS = ("elements", "teams", "events", "element_types")


def safe_int(val: Any, default: int | None = 0) -> int | None:
    """Safely convert API value to int, handling None and empty strings."""
    if val is None or val == "":
        return default
    try:
        return int(val)
    except (ValueError, TypeError):
        return default


def safe_decimal(val: Any, default: Decimal | None = Decimal("0")) -> Decimal | None:
    """Safely convert API value to Decimal (FPL sends most decimals as strings)."""
    if val is None or val == "" or isinstance(val, bool):
        return default
    try:
        result = Decimal(str(val))
    except (InvalidOperation, ValueError, TypeError):
        return default
    return result if result.is_finite() else default


def parse_fpl_datetime(value: Any) -> datetime | None:
    """Parse an FPL ISO timestamp ("2024-08-16T19:00:00Z"), None if unparseable.

    Timestamps without an offset are taken as UTC.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


@dataclass
class ReferenceSnapshot:
    """Reference data from the bootstrap-static endpoint."""

    teams: list[dict[str, Any]]
    players: list[dict[str, Any]]
    gameweeks: list[dict[str, Any]]
    position_types: list[dict[str, Any]]


@dataclass
class LiveSnapshot:
    """Per-player stats for one gameweek from the event live endpoint."""

    gameweek_id: int
    player_stats: list[dict[str, Any]]


class FplApiClient:
    """
    Read-only client for the three FPL endpoints the live sync needs.

    Every call is a single request with a bounded timeout. Anything other
    than HTTP 200 fails with SourceUnavailable; there are no retries here,
    the scheduler that runs the process decides whether to try again.
    """

    def __init__(self, base_url: str = FPL_BASE_URL, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._lock = asyncio.Lock()
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client (lazy initialization, coroutine-safe)."""
        if self._client is None:
            async with self._lock:
                if self._client is None:  # Double-check after acquiring lock
                    self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources (coroutine-safe)."""
        async with self._lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None

    async def __aenter__(self) -> "FplApiClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit async context manager and close client."""
        await self.close()

    async def _get(self, url: str) -> Any:
        """Make a single GET request and return the decoded JSON body."""
        client = await self._get_client()
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            raise SourceUnavailable(url, None, f"{type(e).__name__}: {e}") from e

        if response.status_code != 200:
            raise SourceUnavailable(url, response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponse(url, "response body is not valid JSON") from e

    async def fetch_reference_snapshot(self) -> ReferenceSnapshot:
        """
        Fetch bootstrap-static data (teams, players, gameweeks, positions).

        Raises:
            SourceUnavailable: request failed or returned a non-200 status
            MalformedResponse: one of the expected top-level lists is missing
        """
        url = f"{self.base_url}/bootstrap-static/"
        data = await self._get(url)

        if not isinstance(data, dict):
            raise MalformedResponse(url, "expected a JSON object")
        for field in BOOTSTRAP_FIELDS:
            if not isinstance(data.get(field), list):
                raise MalformedResponse(url, f"missing '{field}' list")

        return ReferenceSnapshot(
            teams=data["teams"],
            players=data["elements"],
            gameweeks=data["events"],
            position_types=data["element_types"],
        )

    async def fetch_fixtures(self, gameweek_id: int | None = None) -> list[dict[str, Any]]:
        """Fetch fixtures for the season, or for one gameweek when given."""
        url = f"{self.base_url}/fixtures/"
        if gameweek_id is not None:
            url += f"?event={gameweek_id}"

        data = await self._get(url)
        if not isinstance(data, list):
            raise MalformedResponse(url, "expected a JSON array of fixtures")
        return data

    async def fetch_live_stats(self, gameweek_id: int) -> LiveSnapshot:
        """
        Fetch live per-player stats for a gameweek.

        The values are cumulative for the gameweek, so each sync overwrites
        the previous numbers rather than adding to them.
        """
        url = f"{self.base_url}/event/{gameweek_id}/live/"
        data = await self._get(url)

        if not isinstance(data, dict) or not isinstance(data.get("elements"), list):
            raise MalformedResponse(url, "missing 'elements' list")

        logger.info(
            f"Retrieved live data for {len(data['elements'])} players in GW{gameweek_id}"
        )
        return LiveSnapshot(gameweek_id=gameweek_id, player_stats=data["elements"])
