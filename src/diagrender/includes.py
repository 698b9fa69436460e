"""Resolution of remote ``!include https://...`` directives in PlantUML sources."""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Callable
from functools import partial
from typing import TYPE_CHECKING

import httpx

from diagrender.errors import IncludeResolutionError
from diagrender.http_client import async_client, describe_http_error
from diagrender.logging import component_logger, log

if TYPE_CHECKING:
    from loguru import Logger

INCLUDE_PATTERN = re.compile(r"!include\s+(https://\S+)")

DEFAULT_INCLUDE_TIMEOUT = 10.0


class IncludeCache:
    """Process-lifetime store of fetched include bodies.

    Entries are never evicted. Concurrent requests for the same URL share a
    single in-flight fetch. Failed fetches are not stored.
    """

    def __init__(self) -> None:
        self._content: dict[str, str] = {}
        self._inflight: dict[str, asyncio.Future[str]] = {}

    def get(self, url: str) -> str | None:
        return self._content.get(url)

    def has(self, url: str) -> bool:
        return url in self._content

    def clear(self) -> None:
        self._content.clear()

    def __len__(self) -> int:
        return len(self._content)

    async def get_or_fetch(self, url: str, fetch: Callable[[str], Awaitable[str]]) -> str:
        cached = self._content.get(url)
        if cached is not None:
            return cached

        pending = self._inflight.get(url)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch_and_store(url, fetch))
            self._inflight[url] = pending
            pending.add_done_callback(lambda _f: self._inflight.pop(url, None))
        return await pending

    async def _fetch_and_store(self, url: str, fetch: Callable[[str], Awaitable[str]]) -> str:
        content = await fetch(url)
        self._content[url] = content
        return content


class IncludeResolver:
    """Inline remote includes, fetching every URL before substituting any."""

    def __init__(
        self,
        cache: IncludeCache | None = None,
        *,
        timeout: float = DEFAULT_INCLUDE_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.cache = cache if cache is not None else IncludeCache()
        self.timeout = timeout
        self._transport = transport
        self._log = logger or component_logger("includes")

    @staticmethod
    def find_includes(content: str) -> list[str]:
        """Unique include URLs in order of first appearance."""
        return list(dict.fromkeys(INCLUDE_PATTERN.findall(content)))

    async def resolve(self, content: str) -> str:
        """Return ``content`` with each include directive replaced by its body.

        Raises:
            IncludeResolutionError: If any include cannot be fetched. No
                partially resolved content is returned.
        """
        urls = self.find_includes(content)
        if not urls:
            return content

        async with async_client(
            timeout=self.timeout, follow_redirects=True, transport=self._transport
        ) as client:
            fetch = partial(self._fetch, client)
            outcomes = await asyncio.gather(
                *(self.cache.get_or_fetch(url, fetch) for url in urls),
                return_exceptions=True,
            )

        resolved: dict[str, str] = {}
        for url, outcome in zip(urls, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, IncludeResolutionError):
                    raise outcome
                raise IncludeResolutionError(url, str(outcome)) from outcome
            resolved[url] = outcome

        self._log.debug(f"Resolved {len(resolved)} include(s)")
        return INCLUDE_PATTERN.sub(lambda m: resolved[m.group(1)], content)

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> str:
        with log("include.fetch", sink=self._log, url=url) as span:
            try:
                response = await client.get(url)
            except httpx.HTTPError as e:
                raise IncludeResolutionError(url, describe_http_error(e)) from e
            span.add(status=response.status_code)
            if response.status_code != 200:
                raise IncludeResolutionError(url, f"HTTP {response.status_code}")
            return response.text
