"""Tests for snapshot validation rules."""

import logging

import pytest

from fpl_live.services.fpl_client import LiveSnapshot, ReferenceSnapshot
from fpl_live.services.validator import validate
from tests.conftest import make_bootstrap, make_fixture, make_live_element


def _reference(**kwargs) -> ReferenceSnapshot:
    data = make_bootstrap(**kwargs)
    return ReferenceSnapshot(
        teams=data["teams"],
        players=data["elements"],
        gameweeks=data["events"],
        position_types=data["element_types"],
    )


@pytest.fixture
def live() -> LiveSnapshot:
    return LiveSnapshot(gameweek_id=5, player_stats=[make_live_element(i) for i in range(1, 12)])


@pytest.fixture
def fixtures() -> list[dict]:
    return [make_fixture(1), make_fixture(2, started=False)]


class TestValidate:
    """Tests for validate()."""

    def test_complete_snapshot_passes(self, live, fixtures):
        result = validate(_reference(), live, fixtures)

        assert result.ok is True
        assert result.reasons == []
        assert result.warnings == []

    def test_too_few_players_is_hard_failure(self, live, fixtures):
        result = validate(_reference(players=399), live, fixtures)

        assert result.ok is False
        assert any("399 players" in r for r in result.reasons)

    def test_player_threshold_is_inclusive(self, live, fixtures):
        assert validate(_reference(players=400), live, fixtures).ok is True

    def test_custom_player_threshold(self, live, fixtures):
        result = validate(_reference(players=50), live, fixtures, min_players=10)

        assert result.ok is True

    def test_unexpected_team_count_is_warning_only(self, live, fixtures, caplog):
        with caplog.at_level(logging.WARNING):
            result = validate(_reference(teams=18), live, fixtures)

        assert result.ok is True
        assert result.warnings == ["Unexpected team count: 18 (expected 20)"]
        assert "Unexpected team count" in caplog.text

    def test_short_season_is_warning_only(self, live, fixtures):
        result = validate(_reference(gameweeks=10), live, fixtures)

        assert result.ok is True
        assert any("gameweek count: 10" in w for w in result.warnings)

    @pytest.mark.parametrize(
        ("field", "label"),
        [
            ("teams", "teams"),
            ("players", "players"),
            ("gameweeks", "gameweeks"),
            ("position_types", "position types"),
        ],
    )
    def test_empty_reference_collection_is_hard_failure(self, live, fixtures, field, label):
        reference = _reference()
        setattr(reference, field, [])

        result = validate(reference, live, fixtures)

        assert result.ok is False
        assert f"No {label} in fetched data" in result.reasons

    def test_missing_reference_snapshot(self, live, fixtures):
        result = validate(None, live, fixtures)

        assert result.ok is False
        assert len([r for r in result.reasons if r.startswith("No ")]) == 4

    def test_empty_fixtures_is_hard_failure(self, live):
        result = validate(_reference(), live, [])

        assert "No fixtures in fetched data" in result.reasons

    def test_live_without_gameweek_id(self, fixtures):
        live = LiveSnapshot(gameweek_id=None, player_stats=[make_live_element(1)])

        result = validate(_reference(), live, fixtures)

        assert result.ok is False
        assert any("gameweek id" in r for r in result.reasons)

    def test_boolean_gameweek_id_rejected(self, fixtures):
        live = LiveSnapshot(gameweek_id=True, player_stats=[make_live_element(1)])

        assert validate(_reference(), live, fixtures).ok is False

    def test_live_without_player_stats(self, fixtures):
        live = LiveSnapshot(gameweek_id=5, player_stats=[])

        result = validate(_reference(), live, fixtures)

        assert "No player stats in live data" in result.reasons

    def test_all_reasons_collected(self):
        """Rules are independent; every failure is reported at once."""
        reference = _reference(players=10, teams=0)
        live = LiveSnapshot(gameweek_id=None, player_stats=[])

        result = validate(reference, live, [])

        assert result.ok is False
        assert len(result.reasons) == 5  # teams, fixtures, gameweek id, stats, player count
