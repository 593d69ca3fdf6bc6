"""
State Store Base - Abstract interface for persisting resource state.

A state store keeps one ResourceState per resource name between invocations
of the reconciler. The lifecycle orchestrator saves state after every
operation, including operations that failed part-way.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from models import ResourceState


class StateStore(ABC):
    """
    Abstract base class for state stores.

    Implementations must return copies from load(); the orchestrator mutates
    the state it is given.
    """

    @abstractmethod
    async def load(self, name: str) -> Optional[ResourceState]:
        """
        Load the state of a resource.

        Args:
            name: The resource name

        Returns:
            The stored ResourceState, or None if nothing is stored.
        """
        pass

    @abstractmethod
    async def save(self, name: str, state: ResourceState) -> None:
        """
        Persist the state of a resource, replacing any previous state.

        Args:
            name: The resource name
            state: The state to store
        """
        pass

    @abstractmethod
    async def delete(self, name: str) -> bool:
        """
        Remove the stored state of a resource.

        Args:
            name: The resource name

        Returns:
            True if state was removed, False if none was stored.
        """
        pass

    @abstractmethod
    async def list_names(self) -> List[str]:
        """List the names of all resources with stored state, sorted."""
        pass

    async def close(self) -> None:
        """Release any resources held by the store."""
        return None
