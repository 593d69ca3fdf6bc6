"""
Lifecycle Orchestrator - create/read/update/delete of a GraphQL-managed object.

Drives a single resource through the two-state machine Absent -> Present:

    create  (Absent)   create mutation, set existence hash, then read
    update  (Present)  update mutation with computed variables, then read
    read    (Present)  read query, store response, refresh computed variables
    delete  (Present)  delete mutation with computed delete variables
    reset   (any)      clear state, Present -> Absent

Any GraphQL error in a response aborts the operation. Fields already set on
the state during that operation are kept and the state is saved to the store
either way.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, List, Mapping, Optional, Tuple

from errors import GraphQLApplicationError, InvalidTransitionError
from executor import GraphQLResponse, QueryExecutor
from identity import Presence, content_hash, presence, response_changed
from models import ResourceSpec, ResourceState
from stores.base import StateStore
from variables import PathMiss, compute_variables, merge, stringify_variables

logger = logging.getLogger(__name__)


class Operation(Enum):
    """Lifecycle operations."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    RESET = "reset"


@dataclass
class LifecycleResult:
    """Outcome of a lifecycle operation."""

    operation: Operation
    resource_id: str = ""
    drift_detected: bool = False
    replaced: bool = False
    misses: List[PathMiss] = field(default_factory=list)


def requires_replacement(previous: ResourceSpec, current: ResourceSpec) -> bool:
    """A changed create mutation means a new object, not an update."""
    return previous.create_mutation != current.create_mutation


def create_mutation_hash(spec: ResourceSpec) -> str:
    return content_hash(spec.create_mutation.encode("utf-8"))


class MutationResource:
    """
    Reconciles one GraphQL-managed object.

    Operations on a single instance must not run concurrently; separate
    instances (different names) are independent.
    """

    def __init__(
        self,
        name: str,
        spec: ResourceSpec,
        executor: QueryExecutor,
        state: Optional[ResourceState] = None,
        store: Optional[StateStore] = None,
    ):
        self.name = name
        self.spec = spec
        self.executor = executor
        self.state = state if state is not None else ResourceState()
        self.store = store
        self.policy = executor.policy.override(
            max_retries=spec.max_retries,
            retry_delay_ms=spec.retry_delay_ms,
            retry_status_codes=spec.retry_status_codes,
        )

    @classmethod
    async def load(
        cls,
        name: str,
        spec: ResourceSpec,
        executor: QueryExecutor,
        store: StateStore,
    ) -> "MutationResource":
        """Create an orchestrator with state loaded from the store (or empty)."""
        state = await store.load(name)
        return cls(name, spec, executor, state=state, store=store)

    @property
    def presence(self) -> Presence:
        return presence(self.state)

    # ==================== Operations ====================

    async def apply(
        self, previous_spec: Optional[ResourceSpec] = None
    ) -> LifecycleResult:
        """
        Converge the remote object to the spec.

        Creates when Absent, updates when Present. When the create mutation
        differs from the one the object was created with, the old object is
        destroyed and a new one is created. previous_spec, when given, decides
        the comparison and supplies the delete mutation; otherwise the hash
        stored at create time is compared and the current spec deletes.
        """
        if self.presence is Presence.ABSENT:
            return await self.create()

        if previous_spec is not None:
            replace = requires_replacement(previous_spec, self.spec)
        else:
            stored = self.state.create_mutation_hash
            replace = stored != "" and stored != create_mutation_hash(self.spec)

        if replace:
            logger.info(f"Create mutation changed for {self.name}, replacing object")
            previous = MutationResource(
                self.name,
                previous_spec or self.spec,
                self.executor,
                self.state,
                self.store,
            )
            await previous.destroy()
            result = await self.create()
            result.replaced = True
            return result

        return await self.update()

    async def create(self) -> LifecycleResult:
        self._require(Presence.ABSENT, Operation.CREATE)
        misses: List[PathMiss] = []

        async with self._persisting():
            _, raw = await self._execute(
                Operation.CREATE,
                self.spec.create_mutation,
                self.spec.mutation_variables,
            )
            self.state.existing_hash = content_hash(raw)
            self.state.resource_id = self.state.existing_hash
            self.state.create_mutation_hash = create_mutation_hash(self.spec)
            logger.info(f"Created {self.name} (id {self.state.resource_id[:12]})")

            if self.spec.compute_from_create:
                misses = self._compute_from(raw)

        read_result = await self.read()
        return LifecycleResult(
            operation=Operation.CREATE,
            resource_id=self.state.resource_id,
            misses=misses + read_result.misses,
        )

    async def update(self) -> LifecycleResult:
        self._require(Presence.PRESENT, Operation.UPDATE)

        async with self._persisting():
            variables = merge(
                self.state.extracted_variables,
                stringify_variables(self.spec.mutation_variables),
            )
            self.state.computed_update_variables = variables

            _, raw = await self._execute(
                Operation.UPDATE, self.spec.update_mutation, variables
            )
            self.state.resource_id = content_hash(raw)
            logger.info(f"Updated {self.name} (id {self.state.resource_id[:12]})")

        read_result = await self.read()
        return LifecycleResult(
            operation=Operation.UPDATE,
            resource_id=self.state.resource_id,
            misses=read_result.misses,
        )

    async def read(self) -> LifecycleResult:
        self._require(Presence.PRESENT, Operation.READ)
        misses: List[PathMiss] = []

        async with self._persisting():
            variables = merge(
                stringify_variables(self.spec.read_query_variables),
                self.state.extracted_variables,
            )
            self.state.computed_read_variables = variables

            _, raw = await self._execute(
                Operation.READ, self.spec.read_query, variables
            )

            drift_detected = response_changed(self.state.last_query_response, raw)
            if drift_detected:
                logger.info(f"Drift detected for {self.name}: read response changed")
            self.state.last_query_response = raw

            if not self.spec.compute_from_create:
                misses = self._compute_from(raw)

        return LifecycleResult(
            operation=Operation.READ,
            resource_id=self.state.resource_id,
            drift_detected=drift_detected,
            misses=misses,
        )

    async def delete(self) -> LifecycleResult:
        """Run the delete mutation. State is left untouched; see reset()."""
        self._require(Presence.PRESENT, Operation.DELETE)

        await self._execute(
            Operation.DELETE,
            self.spec.delete_mutation,
            self.state.computed_delete_variables,
        )
        logger.info(f"Deleted {self.name}")
        return LifecycleResult(
            operation=Operation.DELETE, resource_id=self.state.resource_id
        )

    async def reset(self) -> LifecycleResult:
        """Clear the existence hash and all computed state."""
        resource_id = self.state.resource_id
        async with self._persisting():
            self.state.reset()
        logger.info(f"Reset state of {self.name}")
        return LifecycleResult(operation=Operation.RESET, resource_id=resource_id)

    async def destroy(self) -> LifecycleResult:
        """Delete the remote object, clear state and drop it from the store."""
        result = await self.delete()
        self.state.reset()
        if self.store is not None:
            await self.store.delete(self.name)
        return result

    # ==================== Helpers ====================

    def _require(self, expected: Presence, operation: Operation) -> None:
        current = self.presence
        if current is not expected:
            raise InvalidTransitionError(
                f"Cannot {operation.value} {self.name}: resource is {current.value}"
            )

    async def _execute(
        self,
        operation: Operation,
        query: str,
        variables: Mapping[str, Any],
    ) -> Tuple[GraphQLResponse, bytes]:
        logger.debug(
            f"Executing {operation.value} for {self.name} "
            f"with variables: {', '.join(sorted(variables)) or '(none)'}"
        )
        response, raw = await self.executor.execute(
            query, variables, policy=self.policy
        )
        if response.has_errors:
            logger.error(
                f"GraphQL {operation.value} for {self.name} returned "
                f"{len(response.errors)} error(s)"
            )
            raise GraphQLApplicationError(operation.value, response.diagnostics())
        return response, raw

    def _compute_from(self, raw: bytes) -> List[PathMiss]:
        computed = compute_variables(raw, self.spec)
        for miss in computed.misses:
            logger.warning(
                f"Unable to compute variable '{miss.variable}' from "
                f"'{miss.source_path}' for {self.name}: {miss.reason}"
            )
        self.state.computed_read_variables = computed.read
        self.state.computed_delete_variables = computed.delete
        self.state.computed_update_variables = computed.update
        self.state.extracted_variables = computed.extracted
        return computed.misses

    @asynccontextmanager
    async def _persisting(self) -> AsyncIterator[None]:
        try:
            yield
        finally:
            if self.store is not None:
                await self.store.save(self.name, self.state)
