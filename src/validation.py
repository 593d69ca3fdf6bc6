"""
Schema Validation - JSON Schema validation of resource documents.

Resource documents are read from YAML/JSON files and must carry a name and a
spec section describing the GraphQL operations of the managed object.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator, ValidationError

logger = logging.getLogger(__name__)

_VARIABLE_MAP = {
    "type": "object",
    "additionalProperties": {
        "type": ["string", "number", "boolean", "object", "array", "null"]
    },
}

RESOURCE_SPEC_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": [
        "read_query",
        "create_mutation",
        "update_mutation",
        "delete_mutation",
        "mutation_variables",
        "compute_mutation_keys",
    ],
    "additionalProperties": False,
    "properties": {
        "read_query": {"type": "string", "minLength": 1},
        "create_mutation": {"type": "string", "minLength": 1},
        "update_mutation": {"type": "string", "minLength": 1},
        "delete_mutation": {"type": "string", "minLength": 1},
        "mutation_variables": _VARIABLE_MAP,
        "read_query_variables": _VARIABLE_MAP,
        "delete_mutation_variables": _VARIABLE_MAP,
        "compute_mutation_keys": {
            "type": "object",
            "additionalProperties": {"type": "string", "minLength": 1},
        },
        "compute_from_create": {"type": "boolean"},
        "max_retries": {"type": "integer", "minimum": 0},
        "retry_delay_ms": {"type": "integer", "minimum": 0},
        "retry_status_codes": {
            "type": "array",
            "items": {"type": "integer", "minimum": 100, "maximum": 599},
        },
    },
}

RESOURCE_DOCUMENT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["name", "spec"],
    "properties": {
        "name": {"type": "string", "pattern": "^[A-Za-z0-9][A-Za-z0-9_.-]*$"},
        "spec": RESOURCE_SPEC_SCHEMA,
    },
}


def _validate(
    document: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    try:
        validator = Draft7Validator(schema)
        errors = sorted(
            validator.iter_errors(document),
            key=lambda e: [str(p) for p in e.absolute_path],
        )

        if not errors:
            return True, None

        # Collect all validation errors
        error_messages = []
        for error in errors:
            path = ".".join(str(p) for p in error.absolute_path) or "(root)"
            error_messages.append(f"{path}: {error.message}")

        logger.debug(f"Document failed validation with {len(errors)} error(s)")
        return False, "; ".join(error_messages)

    except ValidationError as e:
        return False, f"Validation error: {str(e)}"


def validate_resource_spec(spec: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate a resource spec section.

    Args:
        spec: The spec mapping to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    return _validate(spec, RESOURCE_SPEC_SCHEMA)


def validate_resource_document(
    document: Dict[str, Any],
) -> Tuple[bool, Optional[str]]:
    """
    Validate a full resource document (name + spec).

    Args:
        document: The parsed YAML/JSON document

    Returns:
        Tuple of (is_valid, error_message)
    """
    return _validate(document, RESOURCE_DOCUMENT_SCHEMA)
