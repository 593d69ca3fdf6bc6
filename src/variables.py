"""
Variable Pipeline - builds the variable sets of successive GraphQL operations.

Values extracted from one operation's response (located by source paths such
as ``data.createWidget.id`` or ``data.items[0].id``) are merged with the
statically configured variables to produce the variables of the next read,
update and delete. Computed variable maps are always string-valued; values
that are not strings are carried as their JSON text.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Union

from errors import ExtractionError, VariableEncodingError
from models import ResourceSpec

logger = logging.getLogger(__name__)

_INDEX_PATTERN = re.compile(r"^(.*?)((?:\[\d+\])+)$")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def _loads(text: Union[str, bytes]) -> Any:
    """json.loads that rejects NaN/Infinity, which are not JSON."""
    return json.loads(text, parse_constant=_reject_constant)


# ==================== Variable values ====================


@dataclass(frozen=True)
class Scalar:
    """A plain string variable, sent as a GraphQL string."""

    value: str

    @property
    def payload(self) -> Any:
        return self.value


@dataclass(frozen=True)
class Structured:
    """A decoded JSON value, sent as structured GraphQL input."""

    value: Any

    @property
    def payload(self) -> Any:
        return self.value


VariableValue = Union[Scalar, Structured]


def resolve_variable(value: Any) -> VariableValue:
    """
    Classify a configured variable value.

    Strings that parse as JSON become Structured with the decoded value so
    that complex GraphQL inputs can be passed as JSON text. Other strings stay
    Scalar. Non-string values are already structured.
    """
    if not isinstance(value, str):
        return Structured(value)
    try:
        return Structured(_loads(value))
    except ValueError:
        return Scalar(value)


def to_variable_string(value: Any) -> str:
    """
    Convert a variable value to the string form used in computed maps.

    Raises:
        VariableEncodingError: If the value cannot be encoded as JSON.
    """
    if isinstance(value, str):
        return value
    try:
        return json.dumps(
            value, sort_keys=True, separators=(",", ":"), allow_nan=False
        )
    except (TypeError, ValueError) as e:
        raise VariableEncodingError(f"Cannot encode variable value {value!r}: {e}")


def stringify_variables(variables: Mapping[str, Any]) -> Dict[str, str]:
    """Convert every value of a variable map with to_variable_string()."""
    result = {}
    for name, value in variables.items():
        try:
            result[name] = to_variable_string(value)
        except VariableEncodingError as e:
            raise VariableEncodingError(f"Variable '{name}': {e.message}")
    return result


def merge(
    existing: Mapping[str, str], overrides: Mapping[str, str]
) -> Dict[str, str]:
    """Last-write-wins union: keys in overrides replace those in existing."""
    merged = dict(existing)
    merged.update(overrides)
    return merged


# ==================== Extraction ====================


@dataclass(frozen=True)
class PathMiss:
    """A configured source path that did not resolve in a response."""

    variable: str
    source_path: str
    reason: str


@dataclass
class ExtractionResult:
    """Values extracted from a response plus the paths that did not resolve."""

    values: Dict[str, str] = field(default_factory=dict)
    misses: List[PathMiss] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.misses


def parse_source_path(source_path: str) -> List[Union[str, int]]:
    """
    Split a source path into key and index segments.

    ``data.items[0].id`` and ``data.items.0.id`` both yield
    ``["data", "items", 0, "id"]``; numeric dot segments are only treated as
    indexes when the value at that point is a list (see resolve_path).
    """
    segments: List[Union[str, int]] = []
    for part in source_path.split("."):
        match = _INDEX_PATTERN.match(part)
        if match:
            key, indexes = match.groups()
            if key:
                segments.append(key)
            segments.extend(int(i) for i in re.findall(r"\d+", indexes))
        else:
            segments.append(part)
    return segments


def resolve_path(document: Any, source_path: str) -> Any:
    """
    Walk a decoded JSON document along source_path.

    Raises:
        KeyError: If any segment does not resolve; the message names it.
    """
    current = document
    walked: List[str] = []
    for segment in parse_source_path(source_path):
        walked.append(str(segment))
        if isinstance(current, dict):
            key = str(segment)
            if key not in current:
                raise KeyError(f"key '{'.'.join(walked)}' not found")
            current = current[key]
        elif isinstance(current, list):
            try:
                index = int(segment)
            except ValueError:
                parent = ".".join(walked[:-1])
                raise KeyError(f"'{parent}' is a list, not an object")
            if not 0 <= index < len(current):
                raise KeyError(f"index {index} out of range at '{'.'.join(walked)}'")
            current = current[index]
        else:
            raise KeyError(f"'{'.'.join(walked[:-1])}' is not an object or list")
    return current


def _decode_object(response_bytes: bytes) -> Dict[str, Any]:
    try:
        document = _loads(response_bytes)
    except ValueError as e:
        raise ExtractionError(
            f"Unable to parse response for variable extraction: {e}"
        )
    if not isinstance(document, dict):
        raise ExtractionError(
            "Unable to parse response for variable extraction: "
            f"expected a JSON object, got {type(document).__name__}"
        )
    return document


def extract(response_bytes: bytes, key_map: Mapping[str, str]) -> ExtractionResult:
    """
    Extract variable values from a response.

    Args:
        response_bytes: Raw JSON response body.
        key_map: Mapping of target variable name -> source path.

    Returns:
        ExtractionResult with the resolved values and any path misses.

    Raises:
        ExtractionError: If the response is not a JSON object.
    """
    document = _decode_object(response_bytes)
    result = ExtractionResult()

    for variable, source_path in key_map.items():
        try:
            value = resolve_path(document, source_path)
        except KeyError as e:
            result.misses.append(
                PathMiss(variable=variable, source_path=source_path, reason=e.args[0])
            )
            continue
        result.values[variable] = to_variable_string(value)

    logger.debug(f"Extracted {len(result.values)} of {len(key_map)} variable(s)")
    return result


# ==================== Computed variable sets ====================


@dataclass
class ComputedVariables:
    """Variables for the next read, update and delete of a resource."""

    read: Dict[str, str]
    update: Dict[str, str]
    delete: Dict[str, str]
    extracted: Dict[str, str] = field(default_factory=dict)
    misses: List[PathMiss] = field(default_factory=list)


def compute_variables(response_bytes: bytes, spec: ResourceSpec) -> ComputedVariables:
    """
    Compute the next operations' variables from a response.

    Extracted values win over static read and delete variables. Static
    mutation variables win over extracted values for updates.
    """
    extraction = extract(response_bytes, spec.compute_mutation_keys)
    extracted = extraction.values

    return ComputedVariables(
        read=merge(stringify_variables(spec.read_query_variables), extracted),
        delete=merge(stringify_variables(spec.delete_mutation_variables), extracted),
        update=merge(extracted, stringify_variables(spec.mutation_variables)),
        extracted=dict(extracted),
        misses=extraction.misses,
    )
