"""
Resource models - desired spec and persisted state of a GraphQL-managed object.

A ResourceSpec is supplied by the user and never modified by the engine.
A ResourceState is owned by the lifecycle orchestrator and persisted between
invocations through a state store.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from errors import ConfigurationError
from validation import validate_resource_spec


@dataclass(frozen=True)
class ResourceSpec:
    """Desired state of a resource: query templates, variables and policy."""

    read_query: str
    create_mutation: str
    update_mutation: str
    delete_mutation: str
    mutation_variables: Dict[str, Any]
    compute_mutation_keys: Dict[str, str]
    read_query_variables: Dict[str, Any] = field(default_factory=dict)
    delete_mutation_variables: Dict[str, Any] = field(default_factory=dict)
    compute_from_create: bool = False

    # Execution policy; None = fall back to the configured defaults
    max_retries: Optional[int] = None
    retry_delay_ms: Optional[int] = None
    retry_status_codes: Optional[List[int]] = None

    @classmethod
    def from_dict(cls, spec: Dict[str, Any]) -> "ResourceSpec":
        """
        Build a spec from a resource document's ``spec`` section.

        Args:
            spec: Mapping of spec fields (snake_case keys).

        Returns:
            A new ResourceSpec.

        Raises:
            ConfigurationError: If the document does not match the spec schema.
        """
        is_valid, error = validate_resource_spec(spec)
        if not is_valid:
            raise ConfigurationError(f"Invalid resource spec: {error}")

        return cls(
            read_query=spec["read_query"],
            create_mutation=spec["create_mutation"],
            update_mutation=spec["update_mutation"],
            delete_mutation=spec["delete_mutation"],
            mutation_variables=dict(spec["mutation_variables"]),
            compute_mutation_keys=dict(spec["compute_mutation_keys"]),
            read_query_variables=dict(spec.get("read_query_variables") or {}),
            delete_mutation_variables=dict(
                spec.get("delete_mutation_variables") or {}
            ),
            compute_from_create=spec.get("compute_from_create", False),
            max_retries=spec.get("max_retries"),
            retry_delay_ms=spec.get("retry_delay_ms"),
            retry_status_codes=spec.get("retry_status_codes"),
        )


@dataclass
class ResourceState:
    """Persisted state of a resource between invocations."""

    existing_hash: str = ""
    resource_id: str = ""
    computed_read_variables: Dict[str, str] = field(default_factory=dict)
    computed_update_variables: Dict[str, str] = field(default_factory=dict)
    computed_delete_variables: Dict[str, str] = field(default_factory=dict)
    # Values taken from the last extraction, before merging with static variables
    extracted_variables: Dict[str, str] = field(default_factory=dict)
    # content_hash of the create mutation the object was created with
    create_mutation_hash: str = ""
    last_query_response: bytes = b""

    @property
    def exists(self) -> bool:
        """Whether the remote object has been created (existence sentinel set)."""
        return self.existing_hash != ""

    def reset(self) -> None:
        """Forget the remote object entirely."""
        self.existing_hash = ""
        self.resource_id = ""
        self.computed_read_variables = {}
        self.computed_update_variables = {}
        self.computed_delete_variables = {}
        self.extracted_variables = {}
        self.create_mutation_hash = ""
        self.last_query_response = b""

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "existing_hash": self.existing_hash,
            "resource_id": self.resource_id,
            "computed_read_variables": dict(self.computed_read_variables),
            "computed_update_variables": dict(self.computed_update_variables),
            "computed_delete_variables": dict(self.computed_delete_variables),
            "extracted_variables": dict(self.extracted_variables),
            "create_mutation_hash": self.create_mutation_hash,
            "query_response": self.last_query_response.decode("utf-8"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceState":
        """Deserialize from the form produced by to_dict()."""
        return cls(
            existing_hash=data.get("existing_hash", ""),
            resource_id=data.get("resource_id", ""),
            computed_read_variables=dict(data.get("computed_read_variables") or {}),
            computed_update_variables=dict(
                data.get("computed_update_variables") or {}
            ),
            computed_delete_variables=dict(
                data.get("computed_delete_variables") or {}
            ),
            extracted_variables=dict(data.get("extracted_variables") or {}),
            create_mutation_hash=data.get("create_mutation_hash", ""),
            last_query_response=(data.get("query_response") or "").encode("utf-8"),
        )
