"""HTTP helpers with bounded exponential backoff."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

import aiohttp

from .errors import (
    ApiRateLimitError,
    DocumentProcessingError,
    ErrorKind,
    ExternalApiError,
    ParsingError,
    PermissionDeniedError,
    ResourceNotFoundError,
    wrap_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_HTTP_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; DocsHarvester/1.0)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}


def is_rate_limited(status: int, headers: Optional[Mapping[str, str]] = None) -> bool:
    """Return True for 429, or 403 with an exhausted rate-limit header."""
    if status == 429:
        return True
    if status == 403 and headers is not None:
        remaining = headers.get("x-ratelimit-remaining") or headers.get("X-RateLimit-Remaining")
        return remaining == "0"
    return False


def raise_for_status(
    status: int,
    url: str,
    headers: Optional[Mapping[str, str]] = None,
    provider: Optional[str] = None,
    body: str = "",
) -> None:
    """Map an HTTP status to the error taxonomy. 2xx/3xx return silently."""
    if status < 400:
        return

    context = {"url": url}
    if body:
        context["body"] = body[:500]

    if is_rate_limited(status, headers):
        raise ApiRateLimitError(
            f"Rate limit exceeded for {url}", provider=provider, status=status, context=context
        )
    if status in (401, 403):
        raise PermissionDeniedError(
            f"Access denied for {url}", provider=provider, status=status, context=context
        )
    if status == 404:
        raise ResourceNotFoundError(
            f"Resource not found: {url}", provider=provider, status=status, context=context
        )
    # 5xx are retryable by status, other 4xx are not
    raise ExternalApiError(
        f"HTTP {status} for {url}", provider=provider, status=status, context=context
    )


def _reraise(error: DocumentProcessingError, original: BaseException) -> None:
    if error is original:
        raise error
    raise error from original


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    include_rate_limit: bool = True,
    operation: str = "request",
) -> T:
    """
    Retry an async callable with exponential backoff.

    Args:
        func: Async callable to retry
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds
        backoff_factor: Multiplier for delay between retries
        include_rate_limit: Whether rate-limit errors are retried
        operation: Label used in log messages

    Returns:
        Function result on success

    Raises:
        The first non-retryable error, or the last error once retries run out
    """
    delay = initial_delay

    for attempt in range(max_retries + 1):  # +1 for initial attempt
        try:
            return await func()
        except Exception as e:
            error = wrap_error(e, ErrorKind.NETWORK_ERROR, context={"operation": operation})
            rate_limited = error.kind == ErrorKind.API_RATE_LIMIT

            if not error.retryable or (rate_limited and not include_rate_limit):
                _reraise(error, e)

            if attempt == max_retries:
                logger.error(f"All {max_retries + 1} attempts failed for {operation}: {error}")
                _reraise(error, e)

            # Rate limits get a longer wait
            wait = delay * 2 if rate_limited else delay
            logger.warning(
                f"Attempt {attempt + 1} for {operation} failed: {error}. Retrying in {wait:.1f}s..."
            )
            await asyncio.sleep(wait)
            delay *= backoff_factor

    raise RuntimeError("unreachable")  # pragma: no cover


async def _request(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    *,
    as_json: bool,
    provider: Optional[str],
    headers: Optional[Dict[str, str]],
    params: Optional[Dict[str, Any]],
    json_body: Optional[Dict[str, Any]],
    max_redirects: int,
) -> Any:
    async with session.request(
        method,
        url,
        headers=headers,
        params=params,
        json=json_body,
        max_redirects=max_redirects,
    ) as response:
        if response.status >= 400:
            body = await response.text()
            raise_for_status(response.status, url, response.headers, provider, body)
        if not as_json:
            return await response.text()
        try:
            return await response.json(content_type=None)
        except ValueError as e:
            raise ParsingError(
                f"Invalid JSON from {url}", provider=provider, cause=e, context={"url": url}
            ) from e


async def fetch_json(
    session: aiohttp.ClientSession,
    url: str,
    *,
    method: str = "GET",
    provider: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    json_body: Optional[Dict[str, Any]] = None,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    max_redirects: int = 5,
) -> Any:
    """Perform a JSON request with retries and mapped errors."""

    async def _call():
        return await _request(
            session,
            method,
            url,
            as_json=True,
            provider=provider,
            headers=headers,
            params=params,
            json_body=json_body,
            max_redirects=max_redirects,
        )

    return await retry_with_backoff(
        _call,
        max_retries=max_retries,
        initial_delay=initial_delay,
        backoff_factor=backoff_factor,
        operation=f"{method} {url}",
    )


async def fetch_text(
    session: aiohttp.ClientSession,
    url: str,
    *,
    provider: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    max_redirects: int = 5,
) -> str:
    """GET a text resource with retries and mapped errors."""

    async def _call():
        return await _request(
            session,
            "GET",
            url,
            as_json=False,
            provider=provider,
            headers=headers,
            params=None,
            json_body=None,
            max_redirects=max_redirects,
        )

    return await retry_with_backoff(
        _call,
        max_retries=max_retries,
        initial_delay=initial_delay,
        backoff_factor=backoff_factor,
        operation=f"GET {url}",
    )
