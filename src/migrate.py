"""
State schema migrations for the PostgreSQL state store.

SQL files named ``NNN_description.sql`` in the migrations/ directory are
applied in version order, each inside its own transaction, and recorded in
the state_schema_versions table. Migrations are forward-only.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Set

import asyncpg

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

MIGRATION_PATTERN = re.compile(r"^(\d{3})_.+\.sql$")

VERSION_TABLE = "state_schema_versions"


@dataclass(frozen=True)
class Migration:
    """A single SQL migration file."""

    version: str
    filename: str
    path: Path

    def read_sql(self) -> str:
        return self.path.read_text(encoding="utf-8")


async def ensure_version_table(conn: asyncpg.Connection) -> None:
    """Create the version tracking table if it doesn't exist."""
    await conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {VERSION_TABLE} (
            version VARCHAR(16) PRIMARY KEY,
            filename VARCHAR(255) NOT NULL,
            applied_at TIMESTAMP NOT NULL DEFAULT NOW()
        )
        """)


def discover_migrations(directory: Optional[Path] = None) -> List[Migration]:
    """
    List the migration files of a directory in version order.

    Args:
        directory: Where to look; defaults to MIGRATIONS_DIR.

    Raises:
        FileNotFoundError: If the directory doesn't exist.
    """
    directory = directory or MIGRATIONS_DIR
    if not directory.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {directory}")

    migrations = []
    for entry in sorted(directory.iterdir()):
        if not entry.is_file():
            continue
        match = MIGRATION_PATTERN.match(entry.name)
        if match:
            migrations.append(Migration(match.group(1), entry.name, entry))
    return migrations


async def applied_versions(conn: asyncpg.Connection) -> Set[str]:
    rows = await conn.fetch(f"SELECT version FROM {VERSION_TABLE}")
    return {row["version"] for row in rows}


async def apply_migration(pool: asyncpg.Pool, migration: Migration) -> None:
    """Run one migration and record its version in the same transaction."""
    sql = migration.read_sql()

    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute(sql)
            await conn.execute(
                f"INSERT INTO {VERSION_TABLE} (version, filename) VALUES ($1, $2)",
                migration.version,
                migration.filename,
            )

    logger.info(f"Applied state schema migration {migration.filename}")


async def run_migrations(
    pool: asyncpg.Pool, directory: Optional[Path] = None
) -> List[Migration]:
    """
    Apply every migration that has not been applied yet.

    Args:
        pool: Connected asyncpg pool.
        directory: Migration directory; defaults to MIGRATIONS_DIR.

    Returns:
        The migrations applied by this call, in order.

    Raises:
        FileNotFoundError: If the migrations directory is missing.
        asyncpg.PostgresError: If a migration fails. That migration is rolled
            back; earlier ones stay applied.
    """
    async with pool.acquire() as conn:
        await ensure_version_table(conn)
        done = await applied_versions(conn)

    pending = [m for m in discover_migrations(directory) if m.version not in done]
    if not pending:
        logger.info("State schema is up to date")
        return []

    logger.info(f"Applying {len(pending)} state schema migration(s)")
    for migration in pending:
        await apply_migration(pool, migration)
    return pending
