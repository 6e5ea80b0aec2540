"""Error taxonomy for the ingestion pipeline.

All pipeline exceptions inherit from :class:`DocumentProcessingError`, which
carries a machine-readable :class:`ErrorKind`, the external provider that
triggered the failure (``"github"``, ``"crawl"``, ``"redis"``...), the HTTP
status when there was one, and free-form context for logs.

    DocumentProcessingError
    +-- NetworkError            (connection failures, retryable)
    +-- RequestTimeoutError     (timeouts, retryable)
    +-- ApiRateLimitError       (429 / exhausted quota, retryable with longer backoff)
    +-- ParsingError            (malformed payloads, undecodable content)
    +-- ValidationError         (bad input such as a non-repository URL)
    +-- ResourceNotFoundError   (404)
    +-- PermissionDeniedError   (401 / 403)
    +-- ConfigurationError      (missing credentials, unknown source)
    +-- ExternalApiError        (crawl or repository API failures; 5xx are retryable)
    +-- StorageError            (vector index / embedding failures)
    +-- InternalError
    +-- UnknownError

Scrapers catch these and report them in a failed ``ScrapingResult``;
initialization code lets them propagate.
"""

import asyncio
import json
from enum import Enum
from typing import Any, Dict, Optional

import aiohttp


class ErrorKind(str, Enum):
    """Machine-readable error classification."""

    NETWORK_ERROR = "network_error"
    REQUEST_TIMEOUT = "request_timeout"
    API_RATE_LIMIT = "api_rate_limit"
    PARSING_ERROR = "parsing_error"
    VALIDATION_ERROR = "validation_error"
    RESOURCE_NOT_FOUND = "resource_not_found"
    PERMISSION_DENIED = "permission_denied"
    CONFIGURATION_ERROR = "configuration_error"
    EXTERNAL_API_ERROR = "external_api_error"
    STORAGE_ERROR = "storage_error"
    INTERNAL_ERROR = "internal_error"
    UNKNOWN_ERROR = "unknown_error"


RETRYABLE_KINDS = {
    ErrorKind.NETWORK_ERROR,
    ErrorKind.REQUEST_TIMEOUT,
    ErrorKind.API_RATE_LIMIT,
}


class DocumentProcessingError(Exception):
    """Base exception for all pipeline errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN_ERROR

    def __init__(
        self,
        message: str = "Document processing failed",
        *,
        provider: Optional[str] = None,
        status: Optional[int] = None,
        cause: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        self.message = message
        self.provider = provider
        self.status = status
        self.cause = cause
        self.context = context or {}
        self._retryable = retryable
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        if self._retryable is not None:
            return self._retryable
        if self.status is not None and self.status >= 500:
            return True
        return self.kind in RETRYABLE_KINDS

    def __str__(self) -> str:
        if self.provider:
            return f"[{self.provider}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for result payloads and logs."""
        data: Dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.provider:
            data["provider"] = self.provider
        if self.status is not None:
            data["status"] = self.status
        if self.cause is not None:
            data["cause"] = repr(self.cause)
        if self.context:
            data["context"] = self.context
        return data


class NetworkError(DocumentProcessingError):
    """Raised when a remote endpoint cannot be reached."""

    kind = ErrorKind.NETWORK_ERROR


class RequestTimeoutError(DocumentProcessingError):
    """Raised when a remote call exceeds its timeout."""

    kind = ErrorKind.REQUEST_TIMEOUT


class ApiRateLimitError(DocumentProcessingError):
    """Raised when a provider reports an exhausted rate limit."""

    kind = ErrorKind.API_RATE_LIMIT


class ParsingError(DocumentProcessingError):
    kind = ErrorKind.PARSING_ERROR


class ValidationError(DocumentProcessingError):
    kind = ErrorKind.VALIDATION_ERROR


class ResourceNotFoundError(DocumentProcessingError):
    kind = ErrorKind.RESOURCE_NOT_FOUND


class PermissionDeniedError(DocumentProcessingError):
    kind = ErrorKind.PERMISSION_DENIED


class ConfigurationError(DocumentProcessingError):
    """Raised for missing credentials or invalid source configuration."""

    kind = ErrorKind.CONFIGURATION_ERROR


class ExternalApiError(DocumentProcessingError):
    """Raised when the crawl service or repository API returns an error."""

    kind = ErrorKind.EXTERNAL_API_ERROR


class StorageError(DocumentProcessingError):
    """Raised when the vector index or the embedding call fails."""

    kind = ErrorKind.STORAGE_ERROR


class InternalError(DocumentProcessingError):
    kind = ErrorKind.INTERNAL_ERROR


class UnknownError(DocumentProcessingError):
    kind = ErrorKind.UNKNOWN_ERROR


_KIND_TO_CLASS = {
    ErrorKind.NETWORK_ERROR: NetworkError,
    ErrorKind.REQUEST_TIMEOUT: RequestTimeoutError,
    ErrorKind.API_RATE_LIMIT: ApiRateLimitError,
    ErrorKind.PARSING_ERROR: ParsingError,
    ErrorKind.VALIDATION_ERROR: ValidationError,
    ErrorKind.RESOURCE_NOT_FOUND: ResourceNotFoundError,
    ErrorKind.PERMISSION_DENIED: PermissionDeniedError,
    ErrorKind.CONFIGURATION_ERROR: ConfigurationError,
    ErrorKind.EXTERNAL_API_ERROR: ExternalApiError,
    ErrorKind.STORAGE_ERROR: StorageError,
    ErrorKind.INTERNAL_ERROR: InternalError,
    ErrorKind.UNKNOWN_ERROR: UnknownError,
}


def error_for_kind(kind: ErrorKind) -> type:
    """Return the exception class for an error kind."""
    return _KIND_TO_CLASS[kind]


def wrap_error(
    exc: BaseException,
    kind: ErrorKind = ErrorKind.UNKNOWN_ERROR,
    *,
    provider: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> DocumentProcessingError:
    """Convert any exception into the pipeline taxonomy.

    Taxonomy errors are returned unchanged (with extra context merged in).
    Known library exceptions are classified; everything else becomes ``kind``.
    """
    if isinstance(exc, DocumentProcessingError):
        if context:
            exc.context.update(context)
        return exc

    if isinstance(exc, asyncio.TimeoutError):
        kind = ErrorKind.REQUEST_TIMEOUT
    elif isinstance(exc, aiohttp.TooManyRedirects):
        kind = ErrorKind.EXTERNAL_API_ERROR
    elif isinstance(exc, aiohttp.ClientConnectionError):
        kind = ErrorKind.NETWORK_ERROR
    elif isinstance(exc, json.JSONDecodeError):
        kind = ErrorKind.PARSING_ERROR
    elif isinstance(exc, (FileNotFoundError, NotADirectoryError)):
        kind = ErrorKind.RESOURCE_NOT_FOUND
    elif isinstance(exc, PermissionError):
        kind = ErrorKind.PERMISSION_DENIED

    message = str(exc) or exc.__class__.__name__
    return error_for_kind(kind)(message, provider=provider, cause=exc, context=context)
