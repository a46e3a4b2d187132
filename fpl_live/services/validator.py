"""Plausibility checks for fetched snapshots before they reach storage.

A payload that fails any hard rule never gets written, not even in part.
Soft rules cover legitimate early-season or off-season shapes and only
produce warnings.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from fpl_live.services.fpl_client import LiveSnapshot, ReferenceSnapshot

logger = logging.getLogger(__name__)

MIN_PLAYER_COUNT = 400
EXPECTED_TEAM_COUNT = 20
EXPECTED_GAMEWEEK_COUNT = 38


@dataclass
class ValidationResult:
    """Hard failure reasons plus non-blocking warnings."""

    reasons: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.reasons


def _collection(source: Any, attr: str) -> list[Any] | None:
    value = getattr(source, attr, None) if source is not None else None
    return value if isinstance(value, list) else None


def validate(
    reference: ReferenceSnapshot | None,
    live: LiveSnapshot | None,
    fixtures: list[dict[str, Any]] | None,
    *,
    min_players: int = MIN_PLAYER_COUNT,
    expected_teams: int = EXPECTED_TEAM_COUNT,
    expected_gameweeks: int = EXPECTED_GAMEWEEK_COUNT,
) -> ValidationResult:
    """
    Validate reference, live and fixture snapshots together.

    Every rule is evaluated, so the result lists all problems at once.

    Args:
        reference: bootstrap-static snapshot
        live: live stats for the current gameweek
        fixtures: fixtures fetched for the current gameweek
        min_players: fewer players than this means a truncated payload
        expected_teams: league size; a mismatch is only a warning
        expected_gameweeks: season length; fewer is only a warning

    Returns:
        ValidationResult whose ok is False when any hard rule failed
    """
    result = ValidationResult()

    teams = _collection(reference, "teams")
    players = _collection(reference, "players")
    gameweeks = _collection(reference, "gameweeks")
    position_types = _collection(reference, "position_types")

    for name, items in (
        ("teams", teams),
        ("players", players),
        ("gameweeks", gameweeks),
        ("position types", position_types),
        ("fixtures", fixtures if isinstance(fixtures, list) else None),
    ):
        if not items:
            result.reasons.append(f"No {name} in fetched data")

    gameweek_id = getattr(live, "gameweek_id", None)
    if not isinstance(gameweek_id, int) or isinstance(gameweek_id, bool):
        result.reasons.append(f"Live data has no numeric gameweek id (got {gameweek_id!r})")
    if not _collection(live, "player_stats"):
        result.reasons.append("No player stats in live data")

    if players and len(players) < min_players:
        result.reasons.append(
            f"Only {len(players)} players in bootstrap data (expected at least {min_players})"
        )

    if teams and len(teams) != expected_teams:
        result.warnings.append(f"Unexpected team count: {len(teams)} (expected {expected_teams})")
    if gameweeks and len(gameweeks) < expected_gameweeks:
        result.warnings.append(
            f"Unexpected gameweek count: {len(gameweeks)} (expected {expected_gameweeks})"
        )

    for warning in result.warnings:
        logger.warning(warning)
    for reason in result.reasons:
        logger.error(f"Validation failed: {reason}")

    if result.ok:
        logger.info(
            f"Validation passed: {len(teams or [])} teams, {len(players or [])} players, "
            f"{len(gameweeks or [])} gameweeks, {len(fixtures or [])} fixtures"
        )
    return result
