"""Owned headless browser process with an explicit lifecycle.

The handle moves UNINITIALIZED -> READY on first acquire and READY ->
DISPOSED on dispose. A disposed handle never relaunches; owners replace it
with a fresh handle instead.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from playwright.async_api import Browser, Page, async_playwright

from diagrender.errors import BackendError
from diagrender.logging import component_logger

if TYPE_CHECKING:
    from loguru import Logger

DEFAULT_BROWSER_ARGS = ("--no-sandbox",)


class BrowserState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    DISPOSED = "disposed"


class BrowserHandle:
    """A lazily launched Chromium instance shared by sequential renders."""

    def __init__(
        self,
        args: Sequence[str] = DEFAULT_BROWSER_ARGS,
        *,
        headless: bool = True,
        logger: Logger | None = None,
    ) -> None:
        self.args = list(args)
        self.headless = headless
        self.state = BrowserState.UNINITIALIZED
        self._playwright: Any = None
        self._browser: Browser | None = None
        self._launch_lock: asyncio.Lock | None = None
        self._log = logger or component_logger("browser")

    async def acquire(self) -> Browser:
        """Return the running browser, launching it on first use.

        Raises:
            BackendError: If the handle is disposed or Chromium fails to start
        """
        if self.state is BrowserState.DISPOSED:
            raise BackendError("Browser handle has been disposed", backend="mermaid_browser")
        if self._launch_lock is None:
            self._launch_lock = asyncio.Lock()
        async with self._launch_lock:
            if self._browser is None:
                await self._launch()
        assert self._browser is not None
        return self._browser

    async def _launch(self) -> None:
        self._log.debug(f"Launching headless Chromium with args {self.args}")
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless, args=self.args
            )
        except Exception as e:
            await self._stop_playwright()
            raise BackendError(
                f"Failed to launch headless browser: {e}", backend="mermaid_browser"
            ) from e
        self.state = BrowserState.READY
        self._log.info("Headless browser ready")

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Page]:
        """Open a fresh page for one render and always close it afterwards."""
        browser = await self.acquire()
        page = await browser.new_page()
        try:
            yield page
        finally:
            await page.close()

    async def dispose(self) -> None:
        """Close the browser. Idempotent; the handle cannot be reused."""
        if self.state is BrowserState.DISPOSED:
            return
        browser, self._browser = self._browser, None
        try:
            if browser is not None:
                await browser.close()
        finally:
            await self._stop_playwright()
            self.state = BrowserState.DISPOSED
            self._log.debug("Headless browser disposed")

    async def _stop_playwright(self) -> None:
        if self._playwright is not None:
            playwright, self._playwright = self._playwright, None
            await playwright.stop()


async def chromium_installed() -> bool:
    """Check whether Playwright's Chromium build is present on disk."""
    async with async_playwright() as playwright:
        return Path(playwright.chromium.executable_path).exists()
