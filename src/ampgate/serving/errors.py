"""Gateway error taxonomy and helpers for JSON error responses."""

from __future__ import annotations

from dataclasses import dataclass

from ampgate.serving.models import ErrorDetail

HTTP_BAD_REQUEST = 400
HTTP_FORBIDDEN = 403
HTTP_PAYLOAD_TOO_LARGE = 413
HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_ERROR = 500
HTTP_BAD_GATEWAY = 502
HTTP_SERVICE_UNAVAILABLE = 503


@dataclass
class GatewayError(Exception):
    """Base gateway error carrying an ErrorDetail payload."""

    detail: ErrorDetail

    def __str__(self) -> str:
        """
        Return a concise string for logging/diagnostics.

        Returns
        -------
        str
            The human-readable error message.
        """
        return self.detail.error

    @property
    def code(self) -> str:
        """Stable machine-readable error code."""
        return self.detail.code

    @property
    def status(self) -> int:
        """HTTP status the error maps to."""
        return self.detail.status


@dataclass
class UpstreamError(GatewayError):
    """The indexer or its admin API was unreachable or answered with a failure."""

    upstream_status: int | None = None
    upstream_body: str = ""


def _error(message: str, *, code: str, status: int) -> GatewayError:
    return GatewayError(detail=ErrorDetail(error=message, code=code, status=status))


def invalid_argument(message: str) -> GatewayError:
    """
    Construct a malformed-input error.

    Returns
    -------
    GatewayError
        Error mapped to HTTP 400.
    """
    return _error(message, code="invalid_argument", status=HTTP_BAD_REQUEST)


def invalid_dataset(dataset: str) -> GatewayError:
    """
    Construct an error for a dataset identifier with disallowed characters.

    Returns
    -------
    GatewayError
        Error mapped to HTTP 400.
    """
    return _error(
        f"Invalid dataset identifier: {dataset}",
        code="invalid_dataset",
        status=HTTP_BAD_REQUEST,
    )


def unknown_dataset(dataset: str, available: list[str]) -> GatewayError:
    """
    Construct an error for a dataset missing from the admin listing.

    Returns
    -------
    GatewayError
        Error mapped to HTTP 400.
    """
    return _error(
        f"Unknown dataset: {dataset}. Available: {', '.join(available)}",
        code="unknown_dataset",
        status=HTTP_BAD_REQUEST,
    )


def empty_query() -> GatewayError:
    """
    Construct an error for a missing or blank SQL body.

    Returns
    -------
    GatewayError
        Error mapped to HTTP 400.
    """
    return _error(
        'Missing SQL query. Send as text/plain body or JSON { "sql": "..." }',
        code="empty_query",
        status=HTTP_BAD_REQUEST,
    )


def query_too_large(size: int, maximum: int) -> GatewayError:
    """
    Construct an error for SQL exceeding the configured size.

    Returns
    -------
    GatewayError
        Error mapped to HTTP 413.
    """
    return _error(
        f"Query too large ({size} bytes). Max: {maximum}",
        code="query_too_large",
        status=HTTP_PAYLOAD_TOO_LARGE,
    )


def not_read_only() -> GatewayError:
    """
    Construct an error for statements other than SELECT/WITH/EXPLAIN.

    Returns
    -------
    GatewayError
        Error mapped to HTTP 403.
    """
    return _error(
        "Only SELECT, WITH (CTE), and EXPLAIN queries are allowed",
        code="not_read_only",
        status=HTTP_FORBIDDEN,
    )


def rate_limited(max_requests: int, window_seconds: float) -> GatewayError:
    """
    Construct a rate-limit error.

    Returns
    -------
    GatewayError
        Error mapped to HTTP 429.
    """
    return _error(
        f"Rate limit exceeded. Max {max_requests} requests per {window_seconds:g} seconds.",
        code="rate_limited",
        status=HTTP_TOO_MANY_REQUESTS,
    )


def upstream_failure(
    message: str,
    *,
    upstream_status: int | None = None,
    upstream_body: str = "",
) -> UpstreamError:
    """
    Construct an upstream failure.

    Returns
    -------
    UpstreamError
        Error mapped to HTTP 502 carrying the upstream status and body.
    """
    return UpstreamError(
        detail=ErrorDetail(error=message, code="upstream_failure", status=HTTP_BAD_GATEWAY),
        upstream_status=upstream_status,
        upstream_body=upstream_body,
    )


def directory_unavailable(message: str) -> GatewayError:
    """
    Construct an error for a dataset directory that could never be populated.

    Returns
    -------
    GatewayError
        Error mapped to HTTP 503.
    """
    return _error(message, code="directory_unavailable", status=HTTP_SERVICE_UNAVAILABLE)


def backend_failure(message: str) -> GatewayError:
    """
    Construct a backend-failure error.

    Returns
    -------
    GatewayError
        Error mapped to HTTP 500.
    """
    return _error(message, code="backend_failure", status=HTTP_INTERNAL_ERROR)
