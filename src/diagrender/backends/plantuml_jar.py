"""PlantUML rendered by a local JAR through the Java runtime.

Source is piped to ``java -jar plantuml.jar -tsvg -pipe`` and the SVG read
from stdout. One JVM per file, so the backend sits on the serial lane.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from diagrender.backends.base import RenderBackend, check_image
from diagrender.backends.process import run_command
from diagrender.config.loader import PlantUmlJarConfig
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

if TYPE_CHECKING:
    from loguru import Logger

AVAILABILITY_TIMEOUT = 5.0


class PlantUmlJarBackend(RenderBackend):
    name = "plantuml_jar"

    def __init__(
        self, config: PlantUmlJarConfig | None = None, *, logger: Logger | None = None
    ) -> None:
        self.config = config or PlantUmlJarConfig()
        super().__init__(
            lane=Lane.SERIAL,
            supported_types=frozenset({DiagramType.PLANTUML, DiagramType.C4PLANTUML}),
            logger=logger,
        )
        self.jar_path = Path(self.config.jar_path).expanduser() if self.config.jar_path else None

    async def is_available(self) -> BackendAvailability:
        if self.jar_path is None:
            return self._availability(False, "plantuml_jar.jar_path is not configured")
        if not (self.jar_path.is_file() and os.access(self.jar_path, os.R_OK)):
            return self._availability(False, f"PlantUML JAR not readable: {self.jar_path}")
        try:
            result = await run_command([self.config.java, "-version"], timeout=AVAILABILITY_TIMEOUT)
        except (OSError, TimeoutError) as e:
            return self._availability(False, f"Java runtime unavailable: {e}")
        if not result.ok:
            return self._availability(False, f"java -version exited with {result.returncode}")
        return self._availability(True, f"PlantUML JAR {self.jar_path.name}")

    async def render(self, file: DiagramFile, content: str) -> RenderOutput:
        kind = file.type.value
        args = [
            self.config.java,
            "-Djava.awt.headless=true",
            "-jar",
            str(self.jar_path),
            "-tsvg",
            "-pipe",
            "-charset",
            "UTF-8",
        ]
        with log("plantuml_jar.render", sink=self._log, file=file.display_name) as span:
            try:
                result = await run_command(
                    args, input=content.encode("utf-8"), timeout=self.config.timeout
                )
            except (OSError, TimeoutError) as e:
                raise BackendError(str(e), backend=self.name, diagram_type=kind) from e
            span.add(returncode=result.returncode, bytes=len(result.stdout))

            if not result.ok:
                detail = (result.stderr_text or result.stdout_text).strip()
                if "Syntax Error" in detail or "Syntax Error" in result.stdout_text:
                    raise DiagramSyntaxError(
                        detail.splitlines()[0] if detail else "PlantUML syntax error",
                        backend=self.name,
                        diagram_type=kind,
                    )
                raise BackendError(
                    f"PlantUML exited with {result.returncode}: {detail or 'no output'}",
                    backend=self.name,
                    diagram_type=kind,
                )
            return check_image(
                result.stdout, OutputFormat.SVG, backend=self.name, diagram_type=kind
            )
