"""Mermaid rendering in a headless browser.

Each render opens a new page, loads the Mermaid ES module, calls
``mermaid.render`` and closes the page. The browser itself is launched once
and shared by every render in the run, so this backend runs on the serial
lane.
"""

from __future__ import annotations

import itertools
from string import Template
from typing import TYPE_CHECKING, Any

from playwright.async_api import Error as PlaywrightError

from diagrender.backends.base import RenderBackend
from diagrender.backends.browser import BrowserHandle, chromium_installed
from diagrender.config.loader import MermaidBrowserConfig
from diagrender.errors import BackendError, DiagramSyntaxError
from diagrender.logging import log
from diagrender.models import (
    BackendAvailability,
    DiagramFile,
    DiagramType,
    Lane,
    OutputFormat,
    RenderOutput,
)
from diagrender.validation import MermaidValidator

if TYPE_CHECKING:
    from loguru import Logger

SYNTAX_ERROR_MARKERS = ("Parse error", "Syntax error", "Lexical error", "Mermaid render error")

PAGE_TEMPLATE = Template(
    """<!DOCTYPE html>
<html>
<body>
<script type="module">
import mermaid from '$mermaid_url';
mermaid.initialize({ startOnLoad: false, theme: '$theme', securityLevel: 'loose' });
window.mermaid = mermaid;
window.__mermaidReady = true;
</script>
</body>
</html>
"""
)

RENDER_SCRIPT = """
async ({ id, content }) => {
  try {
    const { svg } = await window.mermaid.render(id, content);
    return { svg };
  } catch (e) {
    return { error: String(e && e.message ? e.message : e) };
  }
}
"""


def classify_mermaid_error(message: str) -> BackendError:
    """Map a Mermaid failure message to a syntax or infrastructure error."""
    if any(marker in message for marker in SYNTAX_ERROR_MARKERS):
        return DiagramSyntaxError(message, backend="mermaid_browser", diagram_type="mermaid")
    return BackendError(
        f"Failed to render Mermaid diagram: {message}",
        backend="mermaid_browser",
        diagram_type="mermaid",
    )


class MermaidBrowserBackend(RenderBackend):
    """Mermaid via a single owned headless Chromium."""

    name = "mermaid_browser"

    def __init__(
        self,
        config: MermaidBrowserConfig | None = None,
        *,
        handle: BrowserHandle | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.config = config or MermaidBrowserConfig()
        super().__init__(
            lane=Lane.SERIAL,
            supported_types=frozenset({DiagramType.MERMAID}),
            logger=logger,
        )
        self.handle = handle or BrowserHandle(logger=self._log)
        self._ids = itertools.count(1)
        self.validator = MermaidValidator()

    async def is_available(self) -> BackendAvailability:
        try:
            installed = await chromium_installed()
        except PlaywrightError as e:
            return self._availability(False, f"Playwright unavailable: {e}")
        if not installed:
            return self._availability(
                False, "Chromium not installed (run: playwright install chromium)"
            )
        return self._availability(True, "Headless Chromium")

    async def render(self, file: DiagramFile, content: str) -> RenderOutput:
        self.validator.ensure_valid(file, content, backend=self.name, logger=self._log)

        diagram_id = f"mermaid-diagram-{next(self._ids)}"
        timeout_ms = self.config.timeout * 1000
        with log("mermaid.render", sink=self._log, file=file.display_name, id=diagram_id) as span:
            try:
                async with self.handle.page() as page:
                    await page.set_content(
                        PAGE_TEMPLATE.substitute(
                            mermaid_url=self.config.mermaid_url, theme=self.config.theme
                        )
                    )
                    await page.wait_for_function(
                        "window.__mermaidReady === true", timeout=timeout_ms
                    )
                    result: dict[str, Any] = await page.evaluate(
                        RENDER_SCRIPT, {"id": diagram_id, "content": content}
                    )
            except PlaywrightError as e:
                raise BackendError(
                    f"Failed to render Mermaid diagram: {e}",
                    backend=self.name,
                    diagram_type=file.type.value,
                ) from e

            if result.get("error"):
                raise classify_mermaid_error(str(result["error"]))
            svg = str(result.get("svg") or "")
            if "<svg" not in svg:
                raise BackendError(
                    "Failed to render Mermaid diagram: no SVG produced",
                    backend=self.name,
                    diagram_type=file.type.value,
                )
            span.add(bytes=len(svg))
            return RenderOutput(content=svg.encode("utf-8"), format=OutputFormat.SVG)

    async def cleanup(self) -> None:
        """Dispose the browser; the next run launches a fresh one."""
        await self.handle.dispose()
        self.handle = BrowserHandle(
            self.handle.args, headless=self.handle.headless, logger=self._log
        )
