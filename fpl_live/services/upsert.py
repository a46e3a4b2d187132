"""Write FPL snapshots to the database.

Two write modes:

- merge-upsert for reference data (teams, positions, gameweeks, fixtures,
  players): one INSERT ... ON CONFLICT statement per record type, safe to
  re-run with the same snapshot.
- targeted UPDATE of the live stat columns of existing player rows, one
  row at a time, where a bad row is logged and counted but never stops
  the rest of the batch.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import asyncpg

from fpl_live.errors import PartialBatchFailure, UnexpectedStorageError
from fpl_live.services.fpl_client import (
    LiveSnapshot,
    ReferenceSnapshot,
    parse_fpl_datetime,
    safe_decimal,
    safe_int,
)

logger = logging.getLogger(__name__)

# Database errors that fail a single write without being programming errors
STORAGE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, TimeoutError)

LAST_UPDATE_KEY = "last_fpl_update"


def _flag(val: Any) -> bool:
    return bool(val) if val is not None else False


def _text(val: Any) -> str | None:
    if val is None:
        return None
    return str(val)


def _json(val: Any) -> str | None:
    """Serialize nested API structures for JSONB columns."""
    if val is None:
        return None
    return json.dumps(val)


def _stat_int(val: Any) -> int:
    """Integer stat for the live update: absent means 0, garbage is an error."""
    if val is None or val == "":
        return 0
    if isinstance(val, bool):
        raise ValueError(f"invalid integer stat value {val!r}")
    if isinstance(val, float) and not val.is_integer():
        raise ValueError(f"non-integral stat value {val!r}")
    return int(val)


@dataclass(frozen=True)
class RecordType:
    """A reference table written by merge-upsert.

    The first column is the primary key; to_row maps one API record to the
    column values in the same order.
    """

    name: str
    table: str
    columns: tuple[str, ...]
    to_row: Callable[[dict[str, Any]], tuple[Any, ...]]

    @property
    def key(self) -> str:
        return self.columns[0]


def build_merge_sql(record_type: RecordType) -> str:
    """Render the INSERT ... ON CONFLICT statement for a record type."""
    columns = record_type.columns
    placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
    updates = ",\n            ".join(f"{col} = EXCLUDED.{col}" for col in columns[1:])
    return f"""
        INSERT INTO {record_type.table} ({", ".join(columns)}, last_updated)
        VALUES ({placeholders}, NOW())
        ON CONFLICT ({record_type.key}) DO UPDATE SET
            {updates},
            last_updated = NOW()
    """


# =============================================================================
# Reference record types
# =============================================================================


def _team_row(t: dict[str, Any]) -> tuple[Any, ...]:
    return (
        int(t["id"]),
        safe_int(t.get("code")),
        t.get("name", "Unknown"),
        t.get("short_name", "UNK"),
        safe_int(t.get("position"), None),
        safe_int(t.get("strength"), None),
        safe_int(t.get("strength_overall_home"), None),
        safe_int(t.get("strength_overall_away"), None),
        safe_int(t.get("strength_attack_home"), None),
        safe_int(t.get("strength_attack_away"), None),
        safe_int(t.get("strength_defence_home"), None),
        safe_int(t.get("strength_defence_away"), None),
        safe_int(t.get("pulse_id"), None),
    )


TEAMS = RecordType(
    name="teams",
    table="teams",
    columns=(
        "id", "code", "name", "short_name", "position", "strength",
        "strength_overall_home", "strength_overall_away",
        "strength_attack_home", "strength_attack_away",
        "strength_defence_home", "strength_defence_away", "pulse_id",
    ),
    to_row=_team_row,
)


def _position_type_row(p: dict[str, Any]) -> tuple[Any, ...]:
    return (
        int(p["id"]),
        p.get("plural_name", ""),
        p.get("plural_name_short", ""),
        p.get("singular_name", ""),
        p.get("singular_name_short", ""),
        safe_int(p.get("squad_select"), None),
        safe_int(p.get("squad_min_play"), None),
        safe_int(p.get("squad_max_play"), None),
    )


POSITION_TYPES = RecordType(
    name="position types",
    table="position_types",
    columns=(
        "id", "plural_name", "plural_name_short", "singular_name",
        "singular_name_short", "squad_select", "squad_min_play", "squad_max_play",
    ),
    to_row=_position_type_row,
)


def _gameweek_row(e: dict[str, Any]) -> tuple[Any, ...]:
    gw_id = int(e["id"])
    return (
        gw_id,
        e.get("name") or f"Gameweek {gw_id}",
        parse_fpl_datetime(e.get("deadline_time")),
        safe_int(e.get("average_entry_score"), None),
        _flag(e.get("finished")),
        _flag(e.get("data_checked")),
        safe_int(e.get("highest_scoring_entry"), None),
        safe_int(e.get("highest_score"), None),
        _flag(e.get("is_previous")),
        _flag(e.get("is_current")),
        _flag(e.get("is_next")),
        _json(e.get("chip_plays")),
        safe_int(e.get("most_selected"), None),
        safe_int(e.get("most_transferred_in"), None),
        safe_int(e.get("top_element"), None),
        _json(e.get("top_element_info")),
        safe_int(e.get("transfers_made"), None),
        safe_int(e.get("most_captained"), None),
        safe_int(e.get("most_vice_captained"), None),
    )


GAMEWEEKS = RecordType(
    name="gameweeks",
    table="gameweeks",
    columns=(
        "id", "name", "deadline_time", "average_entry_score", "finished",
        "data_checked", "highest_scoring_entry", "highest_score", "is_previous",
        "is_current", "is_next", "chip_plays", "most_selected",
        "most_transferred_in", "top_element", "top_element_info",
        "transfers_made", "most_captained", "most_vice_captained",
    ),
    to_row=_gameweek_row,
)


def _fixture_row(f: dict[str, Any]) -> tuple[Any, ...]:
    return (
        int(f["id"]),
        safe_int(f.get("code")),
        safe_int(f.get("event"), None),  # NULL until the fixture is scheduled
        _flag(f.get("finished")),
        _flag(f.get("finished_provisional")),
        parse_fpl_datetime(f.get("kickoff_time")),
        safe_int(f.get("minutes")),
        _flag(f.get("provisional_start_time")),
        _flag(f.get("started")),
        int(f["team_a"]),
        int(f["team_h"]),
        safe_int(f.get("team_a_score"), None),
        safe_int(f.get("team_h_score"), None),
        safe_int(f.get("team_a_difficulty"), None),
        safe_int(f.get("team_h_difficulty"), None),
        json.dumps(f.get("stats") or []),
        safe_int(f.get("pulse_id"), None),
    )


FIXTURES = RecordType(
    name="fixtures",
    table="fixtures",
    columns=(
        "id", "code", "event", "finished", "finished_provisional",
        "kickoff_time", "minutes", "provisional_start_time", "started",
        "team_a", "team_h", "team_a_score", "team_h_score",
        "team_a_difficulty", "team_h_difficulty", "stats", "pulse_id",
    ),
    to_row=_fixture_row,
)


def _player_row(p: dict[str, Any]) -> tuple[Any, ...]:
    # Live stat columns (minutes, goals, ...) are owned by the live update
    return (
        int(p["id"]),
        p.get("web_name") or "Unknown",
        _text(p.get("first_name")),
        _text(p.get("second_name")),
        int(p["team"]),
        int(p["element_type"]),
        safe_int(p.get("code")),
        safe_int(p.get("now_cost")),
        safe_int(p.get("cost_change_event")),
        safe_int(p.get("cost_change_start")),
        safe_int(p.get("total_points")),
        safe_decimal(p.get("form")),
        safe_decimal(p.get("points_per_game")),
        safe_decimal(p.get("selected_by_percent")),
        _text(p.get("status")),
        _text(p.get("news")),
        parse_fpl_datetime(p.get("news_added")),
        safe_int(p.get("chance_of_playing_next_round"), None),
        safe_int(p.get("chance_of_playing_this_round"), None),
        safe_decimal(p.get("expected_goals")),
        safe_decimal(p.get("expected_assists")),
        safe_decimal(p.get("expected_goal_involvements")),
        safe_decimal(p.get("expected_goals_conceded")),
        safe_int(p.get("starts")),
        _text(p.get("photo")),
    )


PLAYERS = RecordType(
    name="players",
    table="players",
    columns=(
        "id", "web_name", "first_name", "second_name", "team", "element_type",
        "code", "now_cost", "cost_change_event", "cost_change_start",
        "total_points", "form", "points_per_game", "selected_by_percent",
        "status", "news", "news_added", "chance_of_playing_next_round",
        "chance_of_playing_this_round", "expected_goals", "expected_assists",
        "expected_goal_involvements", "expected_goals_conceded", "starts", "photo",
    ),
    to_row=_player_row,
)


# =============================================================================
# Live stats
# =============================================================================

# (column, key in the live "stats" object, is_decimal)
LIVE_STAT_COLUMNS: tuple[tuple[str, str, bool], ...] = (
    ("event_points", "total_points", False),
    ("minutes", "minutes", False),
    ("goals_scored", "goals_scored", False),
    ("assists", "assists", False),
    ("clean_sheets", "clean_sheets", False),
    ("goals_conceded", "goals_conceded", False),
    ("own_goals", "own_goals", False),
    ("penalties_saved", "penalties_saved", False),
    ("penalties_missed", "penalties_missed", False),
    ("yellow_cards", "yellow_cards", False),
    ("red_cards", "red_cards", False),
    ("saves", "saves", False),
    ("bonus", "bonus", False),
    ("bps", "bps", False),
    ("influence", "influence", True),
    ("creativity", "creativity", True),
    ("threat", "threat", True),
    ("ict_index", "ict_index", True),
)

LIVE_UPDATE_SQL = (
    "UPDATE players SET "
    + ", ".join(f"{col} = ${i}" for i, (col, _, _) in enumerate(LIVE_STAT_COLUMNS, start=2))
    + ", last_updated = NOW() WHERE id = $1"
)


def live_stat_args(element: dict[str, Any]) -> tuple[Any, ...]:
    """Map one live element to (player_id, *stat values).

    Raises:
        KeyError, TypeError, ValueError: the element is malformed
    """
    player_id = int(element["id"])
    stats = element.get("stats") or {}
    if not isinstance(stats, dict):
        raise TypeError(f"stats is {type(stats).__name__}, expected an object")

    values: list[Any] = [player_id]
    for _, key, is_decimal in LIVE_STAT_COLUMNS:
        if is_decimal:
            values.append(safe_decimal(stats.get(key)))
        else:
            values.append(_stat_int(stats.get(key)))
    return tuple(values)


def _rows_affected(status: Any) -> int | None:
    """Parse the row count from an asyncpg status string like 'UPDATE 1'."""
    try:
        return int(str(status).rsplit(" ", 1)[-1])
    except (ValueError, IndexError):
        return None


@dataclass
class RowError:
    """A single record that could not be written."""

    record_id: Any
    message: str


@dataclass
class BatchResult:
    """Outcome of a best-effort batch."""

    name: str
    attempted: int = 0
    succeeded: int = 0
    errors: list[RowError] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)


class UpsertEngine:
    """Applies snapshots to one database connection, sequentially."""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def merge_upsert(
        self, record_type: RecordType, records: list[dict[str, Any]]
    ) -> int:
        """Insert or update every record of one type by primary key.

        Returns:
            Number of records written

        Raises:
            UnexpectedStorageError: a record could not be mapped or the
                statement failed; later record types must not be written
        """
        if not records:
            logger.warning(f"No {record_type.name} to sync")
            return 0

        rows = []
        for record in records:
            try:
                rows.append(record_type.to_row(record))
            except (KeyError, TypeError, ValueError) as e:
                record_id = record.get("id") if isinstance(record, dict) else None
                raise UnexpectedStorageError(
                    record_type.name,
                    f"record {record_id} is malformed ({type(e).__name__}: {e})",
                ) from e

        try:
            await self.conn.executemany(build_merge_sql(record_type), rows)
        except STORAGE_ERRORS as e:
            raise UnexpectedStorageError(record_type.name, str(e)) from e

        logger.info(f"Synced {len(rows)} {record_type.name}")
        return len(rows)

    async def apply_reference(
        self, reference: ReferenceSnapshot, fixtures: list[dict[str, Any]]
    ) -> dict[str, int]:
        """Merge-upsert reference data in foreign key order.

        Teams and position types before players, gameweeks and teams
        before fixtures.
        """
        counts: dict[str, int] = {}
        for record_type, records in (
            (TEAMS, reference.teams),
            (POSITION_TYPES, reference.position_types),
            (GAMEWEEKS, reference.gameweeks),
            (FIXTURES, fixtures),
            (PLAYERS, reference.players),
        ):
            counts[record_type.table] = await self.merge_upsert(record_type, records)
        return counts

    async def apply_live_stats(self, live: LiveSnapshot) -> BatchResult:
        """Overwrite the live stat columns of each player in the snapshot.

        Every row is attempted. Failures are logged with the player id and
        collected; once the whole batch has run, any failure raises
        PartialBatchFailure carrying the result.
        """
        elements = live.player_stats
        result = BatchResult(name="player stats", attempted=len(elements))

        if not elements:
            logger.info("No player data to update")
            return result

        logger.info(f"Updating {len(elements)} players for GW{live.gameweek_id}...")

        for element in elements:
            player_id = element.get("id") if isinstance(element, dict) else None
            try:
                args = live_stat_args(element)
                status = await self.conn.execute(LIVE_UPDATE_SQL, *args)
            except (KeyError, TypeError, ValueError, AttributeError, *STORAGE_ERRORS) as e:
                logger.error(f"Error updating player {player_id}: {e}")
                result.errors.append(RowError(player_id, str(e)))
                continue

            if _rows_affected(status) == 0:
                logger.error(f"Error updating player {player_id}: no player row to update")
                result.errors.append(RowError(player_id, "no player row to update"))
                continue

            result.succeeded += 1
            if result.succeeded % 100 == 0:
                logger.info(f"Progress: {result.succeeded}/{len(elements)} players updated")

        logger.info(
            f"Update complete: {result.succeeded} successful, {result.failed} errors"
        )
        if result.failed:
            raise PartialBatchFailure(result)
        return result

    async def record_last_update(self, gameweek_id: int | None) -> None:
        """Stamp the metadata table with the time of the last successful sync."""
        try:
            await self.conn.execute(
                """
                INSERT INTO metadata (key_name, value_int, value_datetime, last_updated)
                VALUES ($1, $2, NOW(), NOW())
                ON CONFLICT (key_name) DO UPDATE SET
                    value_int = EXCLUDED.value_int,
                    value_datetime = EXCLUDED.value_datetime,
                    last_updated = NOW()
                """,
                LAST_UPDATE_KEY,
                gameweek_id,
            )
        except STORAGE_ERRORS as e:
            raise UnexpectedStorageError("metadata", str(e)) from e
