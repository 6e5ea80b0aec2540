"""Unit tests for retry, status mapping and the JSON/text request helpers."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from docs_harvester.core.errors import (
    ApiRateLimitError,
    ErrorKind,
    ExternalApiError,
    NetworkError,
    ParsingError,
    PermissionDeniedError,
    RequestTimeoutError,
    ResourceNotFoundError,
    ValidationError,
)
from docs_harvester.core.network import (
    fetch_json,
    fetch_text,
    is_rate_limited,
    raise_for_status,
    retry_with_backoff,
)


class MockAsyncContextManager:
    """Mock async context manager for aiohttp responses."""

    def __init__(self, mock_response):
        self.mock_response = mock_response

    async def __aenter__(self):
        return self.mock_response

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None


def _response(status=200, json_data=None, text="", headers=None):
    response = MagicMock()
    response.status = status
    response.headers = headers or {}
    response.json = AsyncMock(return_value=json_data)
    response.text = AsyncMock(return_value=text)
    return response


class TestRetryWithBackoff:
    """Test bounded exponential backoff."""

    @pytest.mark.asyncio
    async def test_two_failures_then_success(self):
        func = AsyncMock(side_effect=[NetworkError("down"), NetworkError("down"), "ok"])

        with patch("docs_harvester.core.network.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await retry_with_backoff(func, max_retries=3, initial_delay=1.0, backoff_factor=2.0)

        assert result == "ok"
        assert func.call_count == 3
        delays = [call.args[0] for call in sleep.call_args_list]
        assert delays == [1.0, 2.0]
        assert sum(delays) >= 1.0 + 1.0 * 2.0

    @pytest.mark.asyncio
    async def test_non_retryable_error_raised_immediately(self):
        func = AsyncMock(side_effect=ValidationError("bad input"))

        with patch("docs_harvester.core.network.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ValidationError):
                await retry_with_backoff(func, max_retries=3)

        assert func.call_count == 1
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        func = AsyncMock(side_effect=NetworkError("down"))

        with patch("docs_harvester.core.network.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(NetworkError):
                await retry_with_backoff(func, max_retries=2, initial_delay=0.5)

        assert func.call_count == 3

    @pytest.mark.asyncio
    async def test_rate_limit_waits_longer(self):
        func = AsyncMock(side_effect=[ApiRateLimitError("slow down"), "ok"])

        with patch("docs_harvester.core.network.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await retry_with_backoff(func, initial_delay=1.0)

        sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_rate_limit_not_retried_when_excluded(self):
        func = AsyncMock(side_effect=ApiRateLimitError("slow down"))

        with pytest.raises(ApiRateLimitError):
            await retry_with_backoff(func, include_rate_limit=False)

        assert func.call_count == 1

    @pytest.mark.asyncio
    async def test_unclassified_errors_are_retried_as_network_errors(self):
        func = AsyncMock(side_effect=[RuntimeError("boom"), "ok"])

        with patch("docs_harvester.core.network.asyncio.sleep", new_callable=AsyncMock):
            assert await retry_with_backoff(func) == "ok"

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self):
        func = AsyncMock(side_effect=[ExternalApiError("oops", status=502), "ok"])

        with patch("docs_harvester.core.network.asyncio.sleep", new_callable=AsyncMock):
            assert await retry_with_backoff(func) == "ok"


class TestStatusMapping:
    """Test HTTP status to error mapping."""

    def test_success_statuses_pass(self):
        raise_for_status(200, "https://example.com")
        raise_for_status(304, "https://example.com")

    @pytest.mark.parametrize(
        "status,headers,error_class",
        [
            (404, {}, ResourceNotFoundError),
            (429, {}, ApiRateLimitError),
            (403, {"x-ratelimit-remaining": "0"}, ApiRateLimitError),
            (403, {"x-ratelimit-remaining": "10"}, PermissionDeniedError),
            (401, {}, PermissionDeniedError),
            (400, {}, ExternalApiError),
            (503, {}, ExternalApiError),
        ],
    )
    def test_error_statuses(self, status, headers, error_class):
        with pytest.raises(error_class) as exc_info:
            raise_for_status(status, "https://api.github.com/x", headers, provider="github")

        assert exc_info.value.status == status
        assert exc_info.value.provider == "github"

    def test_retryability_by_status(self):
        with pytest.raises(ExternalApiError) as server_error:
            raise_for_status(503, "https://example.com")
        with pytest.raises(ExternalApiError) as client_error:
            raise_for_status(400, "https://example.com")

        assert server_error.value.retryable is True
        assert client_error.value.retryable is False

    def test_is_rate_limited(self):
        assert is_rate_limited(429)
        assert is_rate_limited(403, {"X-RateLimit-Remaining": "0"})
        assert not is_rate_limited(403, {})
        assert not is_rate_limited(500)


class TestRequestHelpers:
    """Test fetch_json and fetch_text against a mocked session."""

    @pytest.mark.asyncio
    async def test_fetch_json_returns_payload(self):
        session = MagicMock()
        session.request.return_value = MockAsyncContextManager(_response(json_data={"id": "job-1"}))

        data = await fetch_json(session, "https://api.example.com/crawl", method="POST", json_body={"url": "x"})

        assert data == {"id": "job-1"}
        args, kwargs = session.request.call_args
        assert args == ("POST", "https://api.example.com/crawl")
        assert kwargs["json"] == {"url": "x"}

    @pytest.mark.asyncio
    async def test_fetch_json_maps_404(self):
        session = MagicMock()
        session.request.return_value = MockAsyncContextManager(_response(status=404, text="missing"))

        with pytest.raises(ResourceNotFoundError) as exc_info:
            await fetch_json(session, "https://api.github.com/repos/a/b/contents/docs", provider="github")

        assert exc_info.value.context["body"] == "missing"
        assert session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_fetch_json_invalid_payload(self):
        response = _response()
        response.json = AsyncMock(side_effect=ValueError("not json"))
        session = MagicMock()
        session.request.return_value = MockAsyncContextManager(response)

        with pytest.raises(ParsingError):
            await fetch_json(session, "https://api.example.com/x")

    @pytest.mark.asyncio
    async def test_fetch_text_retries_connection_errors(self):
        session = MagicMock()
        session.request.side_effect = [
            aiohttp.ClientConnectionError("reset"),
            MockAsyncContextManager(_response(text="<html>ok</html>")),
        ]

        with patch("docs_harvester.core.network.asyncio.sleep", new_callable=AsyncMock) as sleep:
            text = await fetch_text(session, "https://docs.example.com", initial_delay=0.5)

        assert text == "<html>ok</html>"
        sleep.assert_awaited_once_with(0.5)
        assert session.request.call_args.kwargs["max_redirects"] == 5

    @pytest.mark.asyncio
    async def test_timeout_is_classified(self):
        session = MagicMock()
        session.request.side_effect = asyncio.TimeoutError()

        with patch("docs_harvester.core.network.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(RequestTimeoutError) as exc_info:
                await fetch_text(session, "https://docs.example.com", max_retries=1)

        assert exc_info.value.kind == ErrorKind.REQUEST_TIMEOUT
