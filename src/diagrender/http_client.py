"""Shared HTTP client construction and error formatting.

Every HTTP-speaking component builds its client here so timeouts, redirect
limits, pooling and the User-Agent stay consistent. Tests pass an
``httpx.MockTransport`` through ``transport``.
"""

from __future__ import annotations

import httpx

from diagrender import __version__

DEFAULT_TIMEOUT = 30.0
MAX_REDIRECTS = 5
USER_AGENT = f"diagrender/{__version__}"


def async_client(
    *,
    timeout: float = DEFAULT_TIMEOUT,
    follow_redirects: bool = True,
    headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an AsyncClient with diagrender defaults.

    Args:
        timeout: Overall request timeout in seconds
        follow_redirects: Let httpx follow redirects (capped at MAX_REDIRECTS)
        headers: Extra default headers
        transport: Custom transport (mock transports in tests)

    Returns:
        A new httpx.AsyncClient; the caller owns and closes it
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        follow_redirects=follow_redirects,
        max_redirects=MAX_REDIRECTS,
        headers={"User-Agent": USER_AGENT, **(headers or {})},
        limits=httpx.Limits(
            max_keepalive_connections=10,
            max_connections=50,
            keepalive_expiry=30.0,
        ),
        transport=transport,
    )


def describe_http_error(exc: Exception) -> str:
    """Format an httpx exception into a short user-facing message."""
    if isinstance(exc, httpx.TooManyRedirects):
        return f"Too many redirects (more than {MAX_REDIRECTS})"
    if isinstance(exc, httpx.TimeoutException):
        return "Request timed out"
    if isinstance(exc, httpx.ConnectError):
        return f"Connection error: {exc}"
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}: {exc.response.reason_phrase}"
    if isinstance(exc, httpx.RequestError):
        return f"Request failed: {exc}"
    return str(exc)
