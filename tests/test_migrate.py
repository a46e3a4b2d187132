"""Tests for the migration runner."""

from unittest.mock import AsyncMock, MagicMock

from scripts.migrate import (
    MIGRATIONS_DIR,
    REQUIRED_TABLES,
    check_schema,
    get_pending_migrations,
    run_all_pending,
    show_status,
)


def _transaction_conn(mock_conn: AsyncMock) -> AsyncMock:
    """Give the mock connection a usable conn.transaction() context manager."""
    transaction = MagicMock()
    transaction.__aenter__ = AsyncMock(return_value=None)
    transaction.__aexit__ = AsyncMock(return_value=False)
    mock_conn.transaction = MagicMock(return_value=transaction)
    return mock_conn


class TestCheckSchema:
    """Tests for the --check table verification."""

    async def test_all_tables_present(self, mock_conn: AsyncMock, capsys):
        mock_conn.fetch.return_value = [{"tablename": t} for t in (*REQUIRED_TABLES, "_migrations")]

        missing = await check_schema(mock_conn)

        assert missing == []
        assert "Database ready" in capsys.readouterr().out

    async def test_reports_missing_tables(self, mock_conn: AsyncMock, capsys):
        mock_conn.fetch.return_value = [{"tablename": "teams"}, {"tablename": "gameweeks"}]

        missing = await check_schema(mock_conn)

        assert missing == ["position_types", "fixtures", "players", "metadata"]
        assert "missing table(s): position_types" in capsys.readouterr().out


class TestMigrations:
    """Tests for pending migration discovery and application."""

    def test_schema_migration_ships(self):
        names = [p.name for p in sorted(MIGRATIONS_DIR.glob("*.sql"))]

        assert names[0] == "001_initial_schema.sql"

    def test_initial_schema_creates_required_tables(self):
        sql = (MIGRATIONS_DIR / "001_initial_schema.sql").read_text()

        for table in REQUIRED_TABLES:
            assert f"CREATE TABLE IF NOT EXISTS {table} (" in sql

    async def test_applied_migrations_skipped(self, mock_conn: AsyncMock):
        mock_conn.fetch.return_value = [{"name": "001_initial_schema.sql"}]

        pending = await get_pending_migrations(mock_conn)

        assert "001_initial_schema.sql" not in [p.name for p in pending]

    async def test_runs_pending_in_transaction(self, mock_conn: AsyncMock, capsys):
        conn = _transaction_conn(mock_conn)
        conn.fetch.return_value = []

        applied = await run_all_pending(conn)

        assert applied >= 1
        recorded = [
            c.args[1] for c in conn.execute.call_args_list if "INSERT INTO _migrations" in c.args[0]
        ]
        assert recorded[0] == "001_initial_schema.sql"
        assert conn.transaction.call_count == applied
        assert "Migrations complete" in capsys.readouterr().out

    async def test_nothing_pending(self, mock_conn: AsyncMock, capsys):
        mock_conn.fetch.return_value = [
            {"name": p.name} for p in MIGRATIONS_DIR.glob("*.sql")
        ]

        assert await run_all_pending(mock_conn) == 0
        assert "No pending migrations." in capsys.readouterr().out


class TestShowStatus:
    """Tests for the --status report."""

    async def test_lists_migrations_and_tables(self, mock_conn: AsyncMock, capsys):
        mock_conn.fetch.side_effect = [
            [{"name": "001_initial_schema.sql"}],
            [{"tablename": "teams"}, {"tablename": "players"}],
        ]

        await show_status(mock_conn)

        out = capsys.readouterr().out
        assert "✓ applied  001_initial_schema.sql" in out
        assert "Pending: 0" in out
        assert "✓ teams" in out
        assert "✓ players" in out
        assert "✗ metadata" in out
