"""Mermaid rendered by a local mermaid-cli (``mmdc``) install.

The source is written to a scratch directory, ``mmdc -i diagram.mmd -o
diagram.svg`` is run and the SVG read back. Each call starts its own
headless browser, so the backend sits on the serial lane.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles
import aiofiles.tempfile

from diagrender.backends.base import RenderBackend, check_image
from diagrender.backends.mermaid_browser import SYNTAX_ERROR_MARKERS
from diagrender.backends.process import run_command
from diagrender.config.loader import MermaidCliConfig
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

AVAILABILITY_TIMEOUT = 10.0


class MermaidCliBackend(RenderBackend):
    name = "mermaid_cli"

    def __init__(
        self, config: MermaidCliConfig | None = None, *, logger: Logger | None = None
    ) -> None:
        self.config = config or MermaidCliConfig()
        super().__init__(
            lane=Lane.SERIAL,
            supported_types=frozenset({DiagramType.MERMAID}),
            logger=logger,
        )
        self.validator = MermaidValidator()

    async def is_available(self) -> BackendAvailability:
        try:
            result = await run_command(
                [self.config.command, "--version"], timeout=AVAILABILITY_TIMEOUT
            )
        except (OSError, TimeoutError) as e:
            return self._availability(False, f"mermaid-cli unavailable: {e}")
        if not result.ok:
            return self._availability(
                False, f"{self.config.command} --version exited with {result.returncode}"
            )
        return self._availability(True, f"mermaid-cli {result.stdout_text.strip()}".strip())

    async def render(self, file: DiagramFile, content: str) -> RenderOutput:
        self.validator.ensure_valid(file, content, backend=self.name, logger=self._log)
        kind = file.type.value

        with log("mermaid_cli.render", sink=self._log, file=file.display_name) as span:
            try:
                async with aiofiles.tempfile.TemporaryDirectory(prefix="diagrender-mmdc-") as tmp:
                    source = Path(tmp) / "diagram.mmd"
                    target = Path(tmp) / "diagram.svg"
                    async with aiofiles.open(source, "w", encoding="utf-8") as f:
                        await f.write(content)

                    result = await run_command(
                        [
                            self.config.command,
                            "-i",
                            str(source),
                            "-o",
                            str(target),
                            "-t",
                            self.config.theme,
                            "-q",
                        ],
                        timeout=self.config.timeout,
                    )
                    span.add(returncode=result.returncode)
                    if not result.ok:
                        raise self._failure(result.stderr_text or result.stdout_text, kind)

                    async with aiofiles.open(target, "rb") as f:
                        svg = await f.read()
            except (OSError, TimeoutError) as e:
                raise BackendError(
                    f"mermaid-cli rendering failed: {e}", backend=self.name, diagram_type=kind
                ) from e

            span.add(bytes=len(svg))
            return check_image(svg, OutputFormat.SVG, backend=self.name, diagram_type=kind)

    def _failure(self, output: str, kind: str) -> BackendError:
        detail = output.strip()
        if any(marker in detail for marker in SYNTAX_ERROR_MARKERS):
            line = next(
                (ln for ln in detail.splitlines() if any(m in ln for m in SYNTAX_ERROR_MARKERS)),
                detail,
            )
            return DiagramSyntaxError(line.strip(), backend=self.name, diagram_type=kind)
        return BackendError(
            f"mermaid-cli rendering failed: {detail or 'no output'}",
            backend=self.name,
            diagram_type=kind,
        )
