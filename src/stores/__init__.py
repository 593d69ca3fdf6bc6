"""
State stores.

Persist ResourceState between reconciler invocations: a JSON file for local
use and PostgreSQL for shared deployments.
"""

from stores.base import StateStore
from stores.file import FileStateStore

__all__ = ["StateStore", "FileStateStore", "create_store"]


async def create_store(state_config) -> StateStore:
    """
    Build and connect the store selected by configuration.

    Args:
        state_config: A config.StateConfig

    Returns:
        A ready-to-use StateStore.
    """
    if state_config.backend == "postgres":
        from stores.postgres import PostgresStateStore

        store = PostgresStateStore(state_config.database)
        await store.connect()
        await store.initialize_schema()
        return store

    return FileStateStore(state_config.path)
