#!/usr/bin/env python
"""
Run SQL migrations in order.

Usage:
    python -m scripts.migrate           # Run pending migrations
    python -m scripts.migrate --status  # Show migration status
    python -m scripts.migrate --check   # Verify the live sync tables exist
"""
import argparse
import asyncio
import sys
from pathlib import Path

import asyncpg
from dotenv import load_dotenv

from fpl_live.config import get_settings

# Load local environment
load_dotenv(".env.local")
load_dotenv(".env")

MIGRATIONS_DIR = Path(__file__).parent.parent / "migrations"

# Tables the live sync writes to
REQUIRED_TABLES = ("teams", "position_types", "gameweeks", "fixtures", "players", "metadata")


async def get_connection() -> asyncpg.Connection:
    """Get database connection from settings."""
    settings = get_settings()
    db_url = settings.db_connection_string
    if not db_url:
        raise RuntimeError(
            "Database not configured. Set DATABASE_URL or SQL_SERVER and SQL_DATABASE."
        )
    return await asyncpg.connect(
        db_url,
        timeout=settings.db_connect_timeout,
        ssl="require" if settings.sql_encrypt else None,
    )


async def ensure_migrations_table(conn: asyncpg.Connection) -> None:
    """Create migrations tracking table if it doesn't exist."""
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS _migrations (
            name TEXT PRIMARY KEY,
            applied_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)


async def get_applied_migrations(conn: asyncpg.Connection) -> set[str]:
    """Get set of already applied migration names."""
    rows = await conn.fetch("SELECT name FROM _migrations ORDER BY name")
    return {row["name"] for row in rows}


async def get_pending_migrations(conn: asyncpg.Connection) -> list[Path]:
    """Get list of migration files that haven't been applied."""
    applied = await get_applied_migrations(conn)
    all_migrations = sorted(MIGRATIONS_DIR.glob("*.sql"))
    return [m for m in all_migrations if m.name not in applied]


async def run_migration(conn: asyncpg.Connection, migration_file: Path) -> None:
    """Execute a single migration file."""
    sql = migration_file.read_text()

    # Execute migration in a transaction
    async with conn.transaction():
        await conn.execute(sql)
        await conn.execute(
            "INSERT INTO _migrations (name) VALUES ($1)", migration_file.name
        )


async def run_all_pending(conn: asyncpg.Connection) -> int:
    """Run all pending migrations. Returns count of migrations run."""
    await ensure_migrations_table(conn)
    pending = await get_pending_migrations(conn)

    if not pending:
        print("No pending migrations.")
        return 0

    print(f"Found {len(pending)} pending migration(s):")
    for migration_file in pending:
        print(f"  Applying {migration_file.name}...")
        try:
            await run_migration(conn, migration_file)
            print(f"  ✓ {migration_file.name}")
        except asyncpg.PostgresError as e:
            print(f"  ✗ {migration_file.name} FAILED: {e}")
            raise

    print(f"\nMigrations complete! Applied {len(pending)} migration(s).")
    return len(pending)


async def get_existing_tables(conn: asyncpg.Connection) -> set[str]:
    """Names of the tables in the public schema."""
    rows = await conn.fetch(
        "SELECT tablename FROM pg_tables WHERE schemaname = 'public'"
    )
    return {row["tablename"] for row in rows}


async def show_status(conn: asyncpg.Connection) -> None:
    """Show applied/pending migrations and which live sync tables exist."""
    await ensure_migrations_table(conn)
    applied = await get_applied_migrations(conn)
    existing = await get_existing_tables(conn)
    all_migrations = sorted(MIGRATIONS_DIR.glob("*.sql"))
    pending = [m.name for m in all_migrations if m.name not in applied]

    print("Migration Status:")
    print("-" * 50)
    for migration_file in all_migrations:
        status = "  pending" if migration_file.name in pending else "✓ applied"
        print(f"  {status}  {migration_file.name}")
    print("-" * 50)
    print(f"Applied: {len(all_migrations) - len(pending)}, Pending: {len(pending)}")

    print("\nLive sync tables:")
    for table in REQUIRED_TABLES:
        print(f"  {'✓' if table in existing else '✗'} {table}")


async def check_schema(conn: asyncpg.Connection) -> list[str]:
    """Return the required tables missing from the public schema."""
    existing = await get_existing_tables(conn)
    missing = [table for table in REQUIRED_TABLES if table not in existing]

    if missing:
        print(f"ERROR: missing table(s): {', '.join(missing)}. Run migrations first.")
    else:
        print("Database ready: players table found")
    return missing


async def main() -> int:
    parser = argparse.ArgumentParser(description="Database migration runner")
    parser.add_argument("--status", action="store_true", help="Show migration status")
    parser.add_argument(
        "--check", action="store_true", help="Verify the live sync tables exist"
    )
    args = parser.parse_args()

    try:
        conn = await get_connection()
    except (OSError, TimeoutError, RuntimeError, asyncpg.PostgresError) as e:
        print(f"Failed to connect to database: {e}", file=sys.stderr)
        return 1

    try:
        if args.status:
            await show_status(conn)
        elif args.check:
            if await check_schema(conn):
                return 1
        else:
            await run_all_pending(conn)
    finally:
        await conn.close()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
