"""Unit tests for executor.py - GraphQL query executor."""

import asyncio
import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp

from config import Config, RetryConfig, ServerConfig
from errors import (
    ConfigurationError,
    ResponseParseError,
    RetriesExhaustedError,
    TransportError,
)
from executor import (
    DEFAULT_RETRYABLE_STATUS_CODES,
    GraphQLError,
    GraphQLResponse,
    HTTPTarget,
    QueryExecutor,
    RetryPolicy,
    build_request_body,
    exponential_backoff,
    layer_headers,
)

URL = "https://api.example.com/graphql"


def make_response(status: int, body: bytes):
    """Build the async context manager returned by session.post()."""
    response = MagicMock()
    response.status = status
    response.read = AsyncMock(return_value=body)
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return ctx


def make_session(*outcomes):
    """Build a ClientSession class mock whose post() yields the outcomes in order."""
    session = MagicMock()
    session.post = MagicMock(side_effect=list(outcomes))
    session_cls = MagicMock()
    session_cls.return_value.__aenter__ = AsyncMock(return_value=session)
    session_cls.return_value.__aexit__ = AsyncMock(return_value=False)
    return session_cls, session


OK_BODY = b'{"data":{"widget":{"id":"42"}}}'


class TestRetryPolicy:
    """Tests for RetryPolicy class."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_retries == 3
        assert policy.retry_delay_ms == 100
        assert policy.retryable_status_codes == DEFAULT_RETRYABLE_STATUS_CODES

    def test_default_status_codes(self):
        assert DEFAULT_RETRYABLE_STATUS_CODES == {429, 500, 503, 504}

    def test_custom_status_codes_replace_defaults(self):
        policy = RetryPolicy(retry_status_codes=(502,))
        assert policy.retryable_status_codes == {502}

    def test_backoff_doubles(self):
        policy = RetryPolicy(retry_delay_ms=10)
        assert [policy.backoff(a) for a in range(3)] == [0.01, 0.02, 0.04]

    def test_exponential_backoff(self):
        assert exponential_backoff(3, 100) == 0.8

    def test_override_keeps_unset_values(self):
        policy = RetryPolicy(max_retries=5, retry_delay_ms=20)
        overridden = policy.override(max_retries=0)
        assert overridden.max_retries == 0
        assert overridden.retry_delay_ms == 20
        assert policy.max_retries == 5

    def test_from_config(self):
        policy = RetryPolicy.from_config(
            RetryConfig(max_retries=1, retry_delay_ms=5, retry_status_codes=[502])
        )
        assert policy.max_retries == 1
        assert policy.retry_delay_ms == 5
        assert policy.retryable_status_codes == {502}


class TestHeaders:
    """Tests for header layering."""

    def test_layer_returns_new_set(self):
        base = {"Accept": "a"}
        layered = layer_headers(base, {"X-Other": "b"})
        assert base == {"Accept": "a"}
        assert layered["Accept"] == "a"
        assert layered["X-Other"] == "b"

    def test_layer_is_case_insensitive(self):
        layered = layer_headers({"Authorization": "one"}, {"authorization": "two"})
        assert layered["AUTHORIZATION"] == "two"
        assert len(layered.getall("Authorization")) == 1

    def test_general_headers_win_over_authorization(self):
        target = HTTPTarget(
            url=URL,
            headers={"authorization": "from-headers"},
            authorization_headers={"Authorization": "from-auth"},
        )
        headers = target.build_headers()
        assert headers["Authorization"] == "from-headers"

    def test_json_content_type_by_default(self):
        headers = HTTPTarget(url=URL).build_headers()
        assert headers["Content-Type"] == "application/json; charset=utf-8"
        assert headers["Accept"] == "application/json; charset=utf-8"

    def test_authorization_headers_not_in_repr(self):
        target = HTTPTarget(url=URL, authorization_headers={"Authorization": "s3cr3t"})
        assert "s3cr3t" not in repr(target)

    def test_from_config_requires_url(self):
        with pytest.raises(ConfigurationError, match="GRAPHQL_URL"):
            HTTPTarget.from_config(ServerConfig())


class TestGraphQLResponse:
    """Tests for envelope parsing."""

    def test_parse_data(self):
        response = GraphQLResponse.parse(OK_BODY)
        assert response.data == {"widget": {"id": "42"}}
        assert response.has_errors is False

    def test_parse_errors(self):
        body = json.dumps(
            {
                "data": None,
                "errors": [
                    {
                        "message": "not found",
                        "path": ["widget", 0],
                        "locations": [{"line": 1, "column": 3}],
                    }
                ],
            }
        ).encode()
        response = GraphQLResponse.parse(body)
        assert response.has_errors
        diagnostic = response.diagnostics()[0]
        assert diagnostic.summary == "not found"
        assert "path: widget.0" in diagnostic.detail
        assert "line 1, column 3" in diagnostic.detail

    def test_parse_invalid_json_includes_body(self):
        with pytest.raises(ResponseParseError) as exc_info:
            GraphQLResponse.parse(b"<html>Bad Gateway</html>")
        assert "unable to parse graphql server response" in str(exc_info.value)
        assert "<html>Bad Gateway</html>" in str(exc_info.value)
        assert exc_info.value.body == b"<html>Bad Gateway</html>"

    def test_parse_non_object(self):
        with pytest.raises(ResponseParseError):
            GraphQLResponse.parse(b"null")

    def test_parse_non_utf8_body(self):
        body = json.dumps({"data": {"id": "42"}}).encode("utf-16")
        with pytest.raises(ResponseParseError) as exc_info:
            GraphQLResponse.parse(body)
        assert "not UTF-8" in str(exc_info.value)
        assert exc_info.value.body == body

    def test_error_entry_not_an_object(self):
        error = GraphQLError.from_dict("boom")
        assert error.message == "boom"


class TestBuildRequestBody:
    """Tests for request body construction."""

    def test_query_sent_verbatim(self):
        query = "query { widget(id: 1) { id } }"
        assert build_request_body(query, {})["query"] == query

    def test_json_string_variable_is_structured(self):
        body = build_request_body("q", {"x": '{"a":1}'})
        assert body["variables"]["x"] == {"a": 1}

    def test_plain_string_variable_passes_through(self):
        body = build_request_body("q", {"x": "hello"})
        assert body["variables"]["x"] == "hello"


@pytest.mark.asyncio
class TestQueryExecutor:
    """Tests for QueryExecutor.execute."""

    @pytest.fixture
    def executor(self):
        return QueryExecutor(
            HTTPTarget(url=URL, authorization_headers={"Authorization": "Bearer t"}),
            RetryPolicy(max_retries=3, retry_delay_ms=10),
        )

    async def test_success(self, executor):
        """Test a single successful call."""
        session_cls, session = make_session(make_response(200, OK_BODY))

        with patch("executor.aiohttp.ClientSession", session_cls):
            response, raw = await executor.execute("query { widget }", {})

        assert raw == OK_BODY
        assert response.data == {"widget": {"id": "42"}}
        assert session.post.call_count == 1
        args, kwargs = session.post.call_args
        assert args[0] == URL
        assert kwargs["headers"]["Authorization"] == "Bearer t"

    async def test_request_body(self, executor):
        """Test that the body carries the query and decoded variables."""
        session_cls, session = make_session(make_response(200, OK_BODY))

        with patch("executor.aiohttp.ClientSession", session_cls):
            await executor.execute("mutation { x }", {"input": '{"a":1}', "n": "foo"})

        sent = json.loads(session.post.call_args.kwargs["data"])
        assert sent == {
            "query": "mutation { x }",
            "variables": {"input": {"a": 1}, "n": "foo"},
        }

    async def test_retries_then_succeeds(self, executor):
        """Test 503, 503, 200 succeeds on the third attempt."""
        session_cls, session = make_session(
            make_response(503, b"unavailable"),
            make_response(503, b"unavailable"),
            make_response(200, OK_BODY),
        )

        with patch("executor.aiohttp.ClientSession", session_cls), patch(
            "executor.asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            response, _ = await executor.execute("query { widget }", {})

        assert response.data == {"widget": {"id": "42"}}
        assert session.post.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.01, 0.02]

    async def test_retries_exhausted(self, executor):
        """Test that at most max_retries + 1 attempts are made."""
        session_cls, session = make_session(
            *[make_response(503, b"unavailable") for _ in range(4)]
        )

        with patch("executor.aiohttp.ClientSession", session_cls), patch(
            "executor.asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            with pytest.raises(RetriesExhaustedError) as exc_info:
                await executor.execute("query { widget }", {})

        assert session.post.call_count == 4
        assert mock_sleep.call_count == 3
        assert exc_info.value.status == 503
        assert exc_info.value.body == b"unavailable"

    async def test_non_retryable_status_stops(self, executor):
        """Test that a 400 is not retried and its envelope is parsed."""
        body = b'{"errors":[{"message":"bad query"}]}'
        session_cls, session = make_session(make_response(400, body))

        with patch("executor.aiohttp.ClientSession", session_cls), patch(
            "executor.asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            response, _ = await executor.execute("query { widget }", {})

        assert session.post.call_count == 1
        mock_sleep.assert_not_called()

    async def test_cancellation_during_backoff(self, executor):
        """Test that cancelling while waiting to retry stops the loop."""
        session_cls, session = make_session(make_response(503, b""))

        with patch("executor.aiohttp.ClientSession", session_cls), patch(
            "executor.asyncio.sleep",
            new_callable=AsyncMock,
            side_effect=asyncio.CancelledError(),
        ) as mock_sleep:
            with pytest.raises(asyncio.CancelledError):
                await executor.execute("query { widget }", {})

        assert session.post.call_count == 1
        mock_sleep.assert_called_once()
        assert response.errors[0].message == "bad query"

    async def test_transport_error_retried(self, executor):
        """Test that connection errors are retried."""
        session_cls, session = make_session(
            aiohttp.ClientConnectionError("connection refused"),
            make_response(200, OK_BODY),
        )

        with patch("executor.aiohttp.ClientSession", session_cls), patch(
            "executor.asyncio.sleep", new_callable=AsyncMock
        ):
            response, _ = await executor.execute("query { widget }", {})

        assert session.post.call_count == 2
        assert response.data is not None

    async def test_transport_error_exhausted(self):
        """Test that the last transport error is chained."""
        executor = QueryExecutor(HTTPTarget(url=URL), RetryPolicy(max_retries=1))
        error = aiohttp.ClientConnectionError("connection refused")
        session_cls, session = make_session(error, error)

        with patch("executor.aiohttp.ClientSession", session_cls), patch(
            "executor.asyncio.sleep", new_callable=AsyncMock
        ):
            with pytest.raises(TransportError) as exc_info:
                await executor.execute("query { widget }", {})

        assert not isinstance(exc_info.value, RetriesExhaustedError)
        assert exc_info.value.__cause__ is error
        assert "connection refused" in exc_info.value.message
        assert session.post.call_count == 2

    async def test_zero_retries(self):
        """Test that max_retries=0 makes a single attempt."""
        executor = QueryExecutor(HTTPTarget(url=URL), RetryPolicy(max_retries=0))
        session_cls, session = make_session(make_response(503, b""))

        with patch("executor.aiohttp.ClientSession", session_cls), patch(
            "executor.asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            with pytest.raises(RetriesExhaustedError):
                await executor.execute("query { widget }", {})

        assert session.post.call_count == 1
        mock_sleep.assert_not_called()

    async def test_policy_argument_overrides_default(self, executor):
        """Test a per-call policy with its own status codes."""
        session_cls, session = make_session(make_response(503, b"{}"))

        with patch("executor.aiohttp.ClientSession", session_cls):
            response, _ = await executor.execute(
                "query { widget }", {}, policy=RetryPolicy(retry_status_codes=(502,))
            )

        assert session.post.call_count == 1
        assert response.data is None

    async def test_unparseable_body(self, executor):
        session_cls, _ = make_session(make_response(200, b"not json"))

        with patch("executor.aiohttp.ClientSession", session_cls):
            with pytest.raises(ResponseParseError) as exc_info:
                await executor.execute("query { widget }", {})

        assert "not json" in exc_info.value.message

    async def test_cancellation_propagates(self, executor):
        """Test that cancellation is not swallowed by the retry loop."""
        session_cls, session = make_session(asyncio.CancelledError())

        with patch("executor.aiohttp.ClientSession", session_cls), patch(
            "executor.asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            with pytest.raises(asyncio.CancelledError):
                await executor.execute("query { widget }", {})

        assert session.post.call_count == 1
        mock_sleep.assert_not_called()

    async def test_request_timeout_passed_to_session(self):
        executor = QueryExecutor(HTTPTarget(url=URL, request_timeout=2.5))
        session_cls, _ = make_session(make_response(200, OK_BODY))

        with patch("executor.aiohttp.ClientSession", session_cls):
            await executor.execute("query { widget }", {})

        timeout = session_cls.call_args.kwargs["timeout"]
        assert timeout.total == 2.5

    async def test_from_config(self):
        cfg = Config.default()
        cfg.server.url = URL
        cfg.retry.max_retries = 7

        executor = QueryExecutor.from_config(cfg)

        assert executor.target.url == URL
        assert executor.policy.max_retries == 7
