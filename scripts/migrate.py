#!/usr/bin/env python
"""
Apply SQL migrations from migrations/ in filename order.

Each migration runs in its own transaction and is recorded in
_schema_migrations together with a checksum of its contents. An applied
migration whose file has since changed is reported, never re-run.

Usage:
    python -m scripts.migrate            # Apply pending migrations
    python -m scripts.migrate --status   # Show applied/pending/modified
    python -m scripts.migrate --dry-run  # List what would be applied
"""

import argparse
import asyncio
import hashlib
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

import asyncpg
from dotenv import load_dotenv

# Load environment
load_dotenv(".env.local")
load_dotenv(".env")

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent.parent / "migrations"

_CREATE_TRACKING_SQL = """
    CREATE TABLE IF NOT EXISTS _schema_migrations (
        name TEXT PRIMARY KEY,
        checksum TEXT NOT NULL,
        applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
"""

_APPLIED_SQL = "SELECT name, checksum FROM _schema_migrations ORDER BY name"

_RECORD_SQL = "INSERT INTO _schema_migrations (name, checksum) VALUES ($1, $2)"


@dataclass(slots=True, frozen=True)
class Migration:
    name: str
    sql: str

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.sql.encode("utf-8")).hexdigest()


def load_migrations(directory: Path = MIGRATIONS_DIR) -> list[Migration]:
    """Read every *.sql file, sorted by name."""
    return [Migration(name=path.name, sql=path.read_text()) for path in sorted(directory.glob("*.sql"))]


def plan(
    migrations: list[Migration], applied: dict[str, str]
) -> tuple[list[Migration], list[Migration]]:
    """Split migrations into (pending, modified-since-applied)."""
    pending = [m for m in migrations if m.name not in applied]
    modified = [m for m in migrations if m.name in applied and applied[m.name] != m.checksum]
    return pending, modified


async def get_applied(conn: asyncpg.Connection) -> dict[str, str]:
    await conn.execute(_CREATE_TRACKING_SQL)
    rows = await conn.fetch(_APPLIED_SQL)
    return {row["name"]: row["checksum"] for row in rows}


async def apply_migration(conn: asyncpg.Connection, migration: Migration) -> None:
    async with conn.transaction():
        await conn.execute(migration.sql)
        await conn.execute(_RECORD_SQL, migration.name, migration.checksum)


async def migrate(conn: asyncpg.Connection, dry_run: bool = False) -> int:
    """Apply pending migrations. Returns the number applied (or pending on dry run)."""
    pending, modified = plan(load_migrations(), await get_applied(conn))

    for migration in modified:
        logger.warning(f"{migration.name} changed after it was applied; not re-running")

    if not pending:
        logger.info("No pending migrations")
        return 0

    for migration in pending:
        if dry_run:
            logger.info(f"Would apply {migration.name}")
            continue
        logger.info(f"Applying {migration.name}...")
        await apply_migration(conn, migration)

    logger.info(f"{'Pending' if dry_run else 'Applied'}: {len(pending)} migration(s)")
    return len(pending)


async def show_status(conn: asyncpg.Connection) -> None:
    migrations = load_migrations()
    applied = await get_applied(conn)
    _, modified = plan(migrations, applied)
    modified_names = {m.name for m in modified}

    for migration in migrations:
        if migration.name in modified_names:
            state = "modified"
        elif migration.name in applied:
            state = "applied"
        else:
            state = "pending"
        logger.info(f"  {state:<9} {migration.name}")


async def main() -> None:
    parser = argparse.ArgumentParser(description="Database migration runner")
    parser.add_argument("--status", action="store_true", help="Show migration status")
    parser.add_argument(
        "--dry-run", action="store_true", help="List pending migrations without applying"
    )
    args = parser.parse_args()

    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        logger.error("DATABASE_URL environment variable is required")
        sys.exit(1)

    try:
        conn = await asyncpg.connect(db_url)
    except (OSError, asyncpg.PostgresError) as e:
        logger.error(f"Failed to connect to database: {e}")
        sys.exit(1)

    try:
        if args.status:
            await show_status(conn)
        else:
            await migrate(conn, dry_run=args.dry_run)
    finally:
        await conn.close()


if __name__ == "__main__":
    asyncio.run(main())
