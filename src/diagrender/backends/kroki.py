"""Kroki rendering-as-a-service backend.

Renders any Kroki-supported DSL with a GET request whose path carries the
deflate + base64url encoded source:

    GET {endpoint}/{diagram_type}/{format}/{encoded}

Redirects are followed manually so the hop limit is enforced here, and every
request passes through this backend's own rate limiter.
"""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING

import httpx

from diagrender.backends.base import RenderBackend, check_image
from diagrender.backends.encoding import encode_kroki
from diagrender.config.loader import KrokiConfig
from diagrender.errors import BackendError, BackendHTTPError
from diagrender.http_client import MAX_REDIRECTS, async_client, describe_http_error
from diagrender.logging import log
from diagrender.models import (
    BackendAvailability,
    DiagramFile,
    DiagramType,
    Lane,
    RenderOutput,
)
from diagrender.ratelimit import RateLimiter

if TYPE_CHECKING:
    from loguru import Logger

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
AVAILABILITY_TIMEOUT = 5.0

# Kroki endpoint path per diagram type
KROKI_PATHS: dict[DiagramType, str] = {t: t.value for t in DiagramType}


def auth_headers(auth_type: str, credentials: str) -> dict[str, str]:
    """Build the Authorization header for basic or bearer auth.

    Basic credentials given as ``user:password`` are base64-encoded; anything
    else is assumed to be pre-encoded.
    """
    if not credentials or auth_type == "none":
        return {}
    if auth_type == "bearer":
        return {"Authorization": f"Bearer {credentials}"}
    if ":" in credentials:
        credentials = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {credentials}"}


class KrokiBackend(RenderBackend):
    """Remote rendering service supporting many diagram types."""

    name = "kroki"

    def __init__(
        self,
        config: KrokiConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.config = config or KrokiConfig()
        super().__init__(
            lane=Lane.CONCURRENT,
            supported_types=frozenset(self.config.types),
            logger=logger,
        )
        self.endpoint = self.config.endpoint.rstrip("/")
        self.format = self.config.output_format
        self.rate_limiter = RateLimiter(self.config.rate_limit_ms)
        self._headers = auth_headers(self.config.auth.type, self.config.auth.credentials)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = async_client(
                timeout=self.config.timeout,
                follow_redirects=False,
                headers=self._headers,
                transport=self._transport,
            )
        return self._client

    def build_url(self, diagram_type: DiagramType, content: str) -> str:
        path = KROKI_PATHS[diagram_type]
        return f"{self.endpoint}/{path}/{self.format.value}/{encode_kroki(content)}"

    async def is_available(self) -> BackendAvailability:
        try:
            response = await self._get_client().get(
                f"{self.endpoint}/", timeout=AVAILABILITY_TIMEOUT
            )
        except httpx.HTTPError as e:
            message = f"Kroki unreachable at {self.endpoint}: {describe_http_error(e)}"
            self._log.debug(message)
            return self._availability(False, message)
        if response.status_code >= 500:
            return self._availability(False, f"Kroki returned {response.status_code}")
        return self._availability(True, f"Kroki at {self.endpoint}")

    async def render(self, file: DiagramFile, content: str) -> RenderOutput:
        url = self.build_url(file.type, content)
        return await self.rate_limiter.throttle(lambda: self._request(file, url))

    async def _request(self, file: DiagramFile, url: str) -> RenderOutput:
        kind = file.type.value
        with log("kroki.render", sink=self._log, type=kind, file=file.display_name) as span:
            response = await self._get_following_redirects(url, kind)
            span.add(status=response.status_code, bytes=len(response.content))

            if not response.is_success:
                raise BackendHTTPError(
                    response.status_code,
                    _error_detail(response),
                    backend=self.name,
                    diagram_type=kind,
                )
            return check_image(response.content, self.format, backend=self.name, diagram_type=kind)

    async def _get_following_redirects(self, url: str, kind: str) -> httpx.Response:
        client = self._get_client()
        for _ in range(MAX_REDIRECTS + 1):
            try:
                response = await client.get(url)
            except httpx.HTTPError as e:
                raise BackendError(
                    describe_http_error(e), backend=self.name, diagram_type=kind
                ) from e
            if response.status_code not in REDIRECT_STATUSES:
                return response
            location = response.headers.get("location")
            if not location:
                raise BackendError(
                    f"Redirect ({response.status_code}) without Location header",
                    backend=self.name,
                    diagram_type=kind,
                )
            url = str(response.url.join(location))
            self._log.debug(f"Following redirect to {url}")
        raise BackendError(
            f"Too many redirects (more than {MAX_REDIRECTS})",
            backend=self.name,
            diagram_type=kind,
        )

    async def cleanup(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _error_detail(response: httpx.Response) -> str:
    text = response.text.strip()
    if len(text) > 300:
        text = text[:300] + "..."
    return text or response.reason_phrase

