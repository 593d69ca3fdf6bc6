"""
PostgreSQL State Store - keeps resource state in the resource_states table.

Uses an asyncpg connection pool. The schema is created by the migration
runner (see migrate.py and the migrations/ directory).
"""

import json
import logging
from typing import Any, Dict, List, Optional

import asyncpg

from config import DatabaseConfig
from migrate import run_migrations
from models import ResourceState
from stores.base import StateStore

logger = logging.getLogger(__name__)


class PostgresStateStore(StateStore):
    """State store backed by PostgreSQL."""

    def __init__(self, database: DatabaseConfig):
        self.config = database
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self) -> None:
        """Open the asyncpg pool for the configured database."""
        db = self.config
        self.pool = await asyncpg.create_pool(
            host=db.host,
            port=db.port,
            database=db.database,
            user=db.user,
            password=db.password,
            min_size=db.min_pool_size,
            max_size=db.max_pool_size,
        )
        logger.info(f"Connected to state database {db.database} at {db.host}:{db.port}")

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Closed state database connection")

    def _ensure_connected(self) -> None:
        if self.pool is None:
            raise RuntimeError(
                "Database not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self) -> None:
        self._ensure_connected()
        applied = await run_migrations(self.pool)
        if applied:
            logger.info(f"State schema migrated to version {applied[-1].version}")

    async def load(self, name: str) -> Optional[ResourceState]:
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT existing_hash, resource_id, computed_read_variables,
                       computed_update_variables, computed_delete_variables,
                       extracted_variables, create_mutation_hash, query_response
                FROM resource_states
                WHERE name = $1
                """,
                name,
            )
            if row is None:
                return None
            return ResourceState.from_dict(self._parse_state_row(row))

    async def save(self, name: str, state: ResourceState) -> None:
        self._ensure_connected()
        data = state.to_dict()
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO resource_states (
                    name, existing_hash, resource_id, computed_read_variables,
                    computed_update_variables, computed_delete_variables,
                    query_response, extracted_variables, create_mutation_hash
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (name) DO UPDATE SET
                    existing_hash = EXCLUDED.existing_hash,
                    resource_id = EXCLUDED.resource_id,
                    computed_read_variables = EXCLUDED.computed_read_variables,
                    computed_update_variables = EXCLUDED.computed_update_variables,
                    computed_delete_variables = EXCLUDED.computed_delete_variables,
                    query_response = EXCLUDED.query_response,
                    extracted_variables = EXCLUDED.extracted_variables,
                    create_mutation_hash = EXCLUDED.create_mutation_hash,
                    updated_at = NOW()
                """,
                name,
                data["existing_hash"],
                data["resource_id"],
                json.dumps(data["computed_read_variables"]),
                json.dumps(data["computed_update_variables"]),
                json.dumps(data["computed_delete_variables"]),
                data["query_response"],
                json.dumps(data["extracted_variables"]),
                data["create_mutation_hash"],
            )
        logger.debug(f"Saved state of {name}")

    async def delete(self, name: str) -> bool:
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                "DELETE FROM resource_states WHERE name = $1 RETURNING name",
                name,
            )
        if result:
            logger.info(f"Removed state of {name}")
            return True
        return False

    async def list_names(self) -> List[str]:
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT name FROM resource_states ORDER BY name")
        return [row["name"] for row in rows]

    def _parse_state_row(self, row: asyncpg.Record) -> Dict[str, Any]:
        """
        Convert a resource_states row into the ResourceState.from_dict() form.

        JSONB columns come back from asyncpg as text unless a codec is set.
        """
        result = dict(row)
        for column in (
            "computed_read_variables",
            "computed_update_variables",
            "computed_delete_variables",
            "extracted_variables",
        ):
            value = result.get(column)
            if isinstance(value, str):
                value = json.loads(value)
            result[column] = value or {}
        return result
