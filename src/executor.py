"""
Query Executor - sends GraphQL operations over HTTP with retry and backoff.

Builds the ``{"query": ..., "variables": ...}`` request body, POSTs it to the
configured endpoint and parses the JSON envelope. Transient failures
(connection errors and retryable status codes) are retried with a
deterministic exponential backoff. GraphQL application errors inside the
envelope are returned to the caller, not raised.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

import aiohttp
from multidict import CIMultiDict

from config import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_MS,
    Config,
    RetryConfig,
    ServerConfig,
)
from errors import (
    ConfigurationError,
    Diagnostic,
    ResponseParseError,
    RetriesExhaustedError,
    TransportError,
)
from variables import resolve_variable

logger = logging.getLogger(__name__)

DEFAULT_RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({429, 503, 504, 500})

JSON_CONTENT_TYPE = "application/json; charset=utf-8"


def exponential_backoff(attempt: int, multiplier_ms: int) -> float:
    """Seconds to wait after a failed attempt: 2**attempt * multiplier_ms ms."""
    return (2**attempt) * multiplier_ms / 1000.0


@dataclass
class RetryPolicy:
    """How many times, how long between, and on which statuses to retry."""

    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    # Empty = DEFAULT_RETRYABLE_STATUS_CODES
    retry_status_codes: Sequence[int] = ()

    @property
    def retryable_status_codes(self) -> FrozenSet[int]:
        return frozenset(self.retry_status_codes) or DEFAULT_RETRYABLE_STATUS_CODES

    def backoff(self, attempt: int) -> float:
        return exponential_backoff(attempt, self.retry_delay_ms)

    def override(
        self,
        max_retries: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
        retry_status_codes: Optional[Sequence[int]] = None,
    ) -> "RetryPolicy":
        """Return a copy with the given non-None values replaced."""
        return RetryPolicy(
            max_retries=self.max_retries if max_retries is None else max_retries,
            retry_delay_ms=(
                self.retry_delay_ms if retry_delay_ms is None else retry_delay_ms
            ),
            retry_status_codes=(
                self.retry_status_codes
                if retry_status_codes is None
                else tuple(retry_status_codes)
            ),
        )

    @classmethod
    def from_config(cls, retry: RetryConfig) -> "RetryPolicy":
        return cls(
            max_retries=retry.max_retries,
            retry_delay_ms=retry.retry_delay_ms,
            retry_status_codes=tuple(retry.retry_status_codes),
        )


def layer_headers(
    base: Mapping[str, str], layer: Mapping[str, str]
) -> CIMultiDict:
    """Return a new header set with layer applied on top of base."""
    headers: CIMultiDict = CIMultiDict(base)
    headers.update(layer)
    return headers


@dataclass
class HTTPTarget:
    """Endpoint and static headers of the GraphQL server."""

    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    # Never log authorization headers
    authorization_headers: Dict[str, str] = field(default_factory=dict, repr=False)
    request_timeout: Optional[float] = None

    @classmethod
    def from_config(cls, server: ServerConfig) -> "HTTPTarget":
        if not server.url:
            raise ConfigurationError(
                "GraphQL server URL is not configured. Set GRAPHQL_URL."
            )
        return cls(
            url=server.url,
            headers=dict(server.headers),
            authorization_headers=dict(server.authorization_headers),
            request_timeout=server.request_timeout,
        )

    def header_layers(self) -> List[Mapping[str, str]]:
        """Header sets in application order; later layers win on collisions."""
        return [
            {"Content-Type": JSON_CONTENT_TYPE, "Accept": JSON_CONTENT_TYPE},
            self.authorization_headers,
            self.headers,
        ]

    def build_headers(self) -> CIMultiDict:
        headers: CIMultiDict = CIMultiDict()
        for layer in self.header_layers():
            headers = layer_headers(headers, layer)
        return headers


# ==================== Envelope ====================


@dataclass
class GraphQLError:
    """One entry of the envelope's errors list."""

    message: str
    path: List[Any] = field(default_factory=list)
    locations: List[Dict[str, Any]] = field(default_factory=list)
    extensions: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Any) -> "GraphQLError":
        if not isinstance(raw, dict):
            return cls(message=str(raw))
        return cls(
            message=str(raw.get("message", "")),
            path=list(raw.get("path") or []),
            locations=list(raw.get("locations") or []),
            extensions=dict(raw.get("extensions") or {}),
        )

    def to_diagnostic(self) -> Diagnostic:
        details = []
        if self.path:
            details.append("path: " + ".".join(str(p) for p in self.path))
        for location in self.locations:
            details.append(
                f"line {location.get('line', '?')}, "
                f"column {location.get('column', '?')}"
            )
        return Diagnostic(
            summary=self.message,
            detail="; ".join(details),
            path=list(self.path),
        )


@dataclass
class GraphQLResponse:
    """Parsed GraphQL response envelope."""

    data: Any = None
    errors: List[GraphQLError] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def diagnostics(self) -> List[Diagnostic]:
        """One diagnostic per GraphQL error."""
        return [error.to_diagnostic() for error in self.errors]

    @classmethod
    def parse(cls, body: bytes) -> "GraphQLResponse":
        """
        Parse a raw response body.

        Raises:
            ResponseParseError: If the body is not UTF-8 encoded or not a JSON
                object. The raw body is included in the message.
        """
        text = body.decode("utf-8", errors="replace")
        try:
            body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ResponseParseError(
                f"unable to parse graphql server response: body is not UTF-8: {e} "
                f"---> {text}",
                body,
            )
        try:
            document = json.loads(body)
        except ValueError as e:
            raise ResponseParseError(
                f"unable to parse graphql server response: {e} ---> {text}", body
            )
        if not isinstance(document, dict):
            raise ResponseParseError(
                "unable to parse graphql server response: "
                f"expected a JSON object ---> {text}",
                body,
            )

        errors = document.get("errors") or []
        if not isinstance(errors, list):
            errors = [errors]

        return cls(
            data=document.get("data"),
            errors=[GraphQLError.from_dict(e) for e in errors],
        )


# ==================== Request ====================


def encode_variables(variables: Mapping[str, Any]) -> Dict[str, Any]:
    """Resolve each variable to its JSON payload (decoding JSON strings)."""
    return {name: resolve_variable(value).payload for name, value in variables.items()}


def build_request_body(query: str, variables: Mapping[str, Any]) -> Dict[str, Any]:
    """The query template is sent verbatim."""
    return {"query": query, "variables": encode_variables(variables)}


class QueryExecutor:
    """
    Executes GraphQL operations against a single endpoint.

    A new aiohttp session is opened per execute() call and shared by all
    attempts of that call.
    """

    def __init__(self, target: HTTPTarget, policy: Optional[RetryPolicy] = None):
        self.target = target
        self.policy = policy or RetryPolicy()

    @classmethod
    def from_config(cls, config: Config) -> "QueryExecutor":
        return cls(
            target=HTTPTarget.from_config(config.server),
            policy=RetryPolicy.from_config(config.retry),
        )

    async def execute(
        self,
        query: str,
        variables: Mapping[str, Any],
        policy: Optional[RetryPolicy] = None,
    ) -> Tuple[GraphQLResponse, bytes]:
        """
        Execute a query or mutation.

        Args:
            query: The GraphQL document, sent verbatim.
            variables: Variable map; JSON strings are sent as structured values.
            policy: Retry policy for this call; defaults to the executor's.

        Returns:
            Tuple of (parsed envelope, raw response body).

        Raises:
            TransportError: If every attempt failed at the transport level.
            RetriesExhaustedError: If the final attempt got a retryable status.
            ResponseParseError: If the body is not a JSON envelope.
            asyncio.CancelledError: If the calling task is cancelled.
        """
        policy = policy or self.policy
        body = json.dumps(build_request_body(query, variables)).encode("utf-8")
        retryable = policy.retryable_status_codes
        timeout = aiohttp.ClientTimeout(total=self.target.request_timeout)

        status: Optional[int] = None
        raw = b""
        last_error: Optional[Exception] = None
        attempts = 0

        async with aiohttp.ClientSession(timeout=timeout) as session:
            for attempt in range(policy.max_retries + 1):
                attempts = attempt + 1
                status = None
                last_error = None

                try:
                    async with session.post(
                        self.target.url,
                        data=body,
                        headers=self.target.build_headers(),
                    ) as response:
                        status = response.status
                        raw = await response.read()
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    last_error = e
                    logger.debug(f"GraphQL request attempt {attempts} failed: {e}")

                if last_error is None and status not in retryable:
                    break

                if attempt < policy.max_retries:
                    wait = policy.backoff(attempt)
                    logger.debug(
                        f"Retry attempt {attempt + 1}/{policy.max_retries}, "
                        f"waiting {wait:.3f}s before next attempt"
                    )
                    await asyncio.sleep(wait)

        if last_error is not None:
            logger.warning(
                f"GraphQL request to {self.target.url} failed after "
                f"{attempts} attempt(s): {last_error}"
            )
            raise TransportError(
                f"GraphQL request to {self.target.url} failed after "
                f"{attempts} attempt(s): {last_error}"
            ) from last_error

        if status in retryable:
            logger.warning(
                f"GraphQL server kept returning HTTP {status} after "
                f"{attempts} attempt(s)"
            )
            raise RetriesExhaustedError(
                f"GraphQL server at {self.target.url} returned HTTP {status} "
                f"after {attempts} attempt(s)",
                status=status,
                body=raw,
            )

        return GraphQLResponse.parse(raw), raw
