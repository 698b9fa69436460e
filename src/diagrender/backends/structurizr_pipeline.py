"""Structurizr DSL rendered by a two-stage container pipeline.

Stage 1 (export): the Structurizr CLI container exports every view of the
workspace to PlantUML. Stage 2 (render): each exported view is posted to the
containerized Kroki, which returns SVG. Both containers are defined in the
project's compose file; the project root must be mounted at
``workspace_dir`` inside the CLI container so staged files are visible there.
"""

from __future__ import annotations

import asyncio
import re
import shutil
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles
import aiofiles.os
import httpx

from diagrender.backends.base import RenderBackend
from diagrender.backends.process import run_command
from diagrender.config.loader import StructurizrPipelineConfig
from diagrender.errors import InvalidOutputError, PipelineStageError
from diagrender.http_client import async_client, describe_http_error
from diagrender.logging import log
from diagrender.models import (
    BackendAvailability,
    DiagramFile,
    DiagramType,
    Lane,
    OutputFormat,
    RenderOutput,
)
from diagrender.paths import PROJECT_DIR_NAME, get_effective_cwd

if TYPE_CHECKING:
    from loguru import Logger

AVAILABILITY_TIMEOUT = 5.0
MIN_SVG_BYTES = 100
STAGING_DIR = "pipeline"

EXPORT_STAGE = "export"
RENDER_STAGE = "render"

# Container chatter that is not an error
NOISE_MARKERS = ("level=warning", "level=info", "obsolete", "time=", "WARNING", "INFO", "SLF4J")
_NUMERIC_LINE = re.compile(r"^[\d:.,\s]+$")


def filter_noise(output: str) -> list[str]:
    """Keep only the lines of container output that look like real errors."""
    lines = []
    for line in output.splitlines():
        stripped = line.strip()
        if not stripped or _NUMERIC_LINE.match(stripped):
            continue
        if any(marker in stripped for marker in NOISE_MARKERS):
            continue
        lines.append(stripped)
    return lines


def view_name(puml_path: Path) -> str:
    """``structurizr-SystemContext.puml`` -> ``SystemContext``."""
    stem = puml_path.stem
    return stem[len("structurizr-") :] if stem.startswith("structurizr-") else stem


def check_svg_structure(body: bytes, view: str) -> None:
    if b"<svg" not in body or b"</svg>" not in body or len(body) < MIN_SVG_BYTES:
        raise InvalidOutputError(
            f"View {view} did not produce a complete SVG document",
            backend="structurizr_pipeline",
            diagram_type="structurizr",
            stage=RENDER_STAGE,
        )


class StructurizrPipelineBackend(RenderBackend):
    """Structurizr-only backend driving the CLI and Kroki containers."""

    name = "structurizr_pipeline"

    def __init__(
        self,
        config: StructurizrPipelineConfig | None = None,
        *,
        project_dir: Path | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.config = config or StructurizrPipelineConfig()
        super().__init__(
            lane=Lane.SERIAL,
            supported_types=frozenset({DiagramType.STRUCTURIZR}),
            logger=logger,
        )
        self.project_dir = project_dir or get_effective_cwd()
        self.kroki_url = self.config.kroki_url.rstrip("/")
        self._transport = transport

    @property
    def required_containers(self) -> frozenset[str]:
        return frozenset({self.config.cli_container, self.config.kroki_container})

    # ==================== Availability ====================

    async def running_containers(self) -> set[str] | None:
        """Names of running containers, or None when Docker cannot be queried."""
        try:
            result = await run_command(
                ["docker", "ps", "--format", "{{.Names}}"], timeout=AVAILABILITY_TIMEOUT
            )
        except (OSError, TimeoutError) as e:
            self._log.debug(f"docker ps failed: {e}")
            return None
        if not result.ok:
            self._log.debug(f"docker ps exited with {result.returncode}")
            return None
        return set(result.stdout_text.split())

    async def is_available(self) -> BackendAvailability:
        running = await self.running_containers()
        if running is None:
            return self._availability(False, "Docker is not installed or not running")

        missing = self.required_containers - running
        if not missing:
            return self._availability(True, "Structurizr CLI and Kroki containers running")
        if not self.config.auto_start:
            return self._availability(
                False, f"Containers not running: {', '.join(sorted(missing))}"
            )

        started = await self._start_containers()
        if started is not None:
            return self._availability(False, started)

        running = await self.running_containers() or set()
        missing = self.required_containers - running
        if missing:
            return self._availability(
                False, f"Containers still not running after start: {', '.join(sorted(missing))}"
            )
        return self._availability(True, "Structurizr containers started")

    async def _start_containers(self) -> str | None:
        """Bring the compose stack up. Returns an error message on failure."""
        compose_file = self.project_dir / self.config.compose_file
        if not compose_file.is_file():
            return f"Compose file not found: {compose_file}"

        self._log.info(f"Starting Structurizr containers from {compose_file.name}")
        try:
            result = await run_command(
                ["docker", "compose", "-f", str(compose_file), "up", "-d"],
                timeout=self.config.stage_timeout,
                cwd=str(self.project_dir),
            )
        except (OSError, TimeoutError) as e:
            return f"docker compose failed: {e}"
        if not result.ok:
            detail = "; ".join(filter_noise(result.stderr_text)) or f"exit {result.returncode}"
            return f"docker compose failed: {detail}"

        await asyncio.sleep(self.config.warmup_seconds)
        return None

    # ==================== Rendering ====================

    def _container_path(self, host_path: Path) -> str:
        relative = host_path.relative_to(self.project_dir)
        return f"{self.config.workspace_dir.rstrip('/')}/{relative.as_posix()}"

    async def render(self, file: DiagramFile, content: str) -> RenderOutput:
        staging = self.project_dir / PROJECT_DIR_NAME / STAGING_DIR / uuid.uuid4().hex
        export_dir = staging / "out"
        with log("structurizr.render", sink=self._log, file=file.display_name) as span:
            try:
                workspace = await self._stage(staging, export_dir, content)
                views = await self._export(workspace, export_dir)
                span.add(views=len(views))
                rendered = await self._render_views(views)
            finally:
                await asyncio.to_thread(shutil.rmtree, staging, ignore_errors=True)

        names = list(rendered)
        primary = rendered[names[0]]
        extra = {name: rendered[name] for name in names[1:]}
        return RenderOutput(content=primary, format=OutputFormat.SVG, views=extra)

    async def _stage(self, staging: Path, export_dir: Path, content: str) -> Path:
        """Write the workspace where the CLI container can see it."""
        workspace = staging / "workspace.dsl"
        try:
            await aiofiles.os.makedirs(export_dir)
            async with aiofiles.open(workspace, "w", encoding="utf-8") as f:
                await f.write(content)
        except OSError as e:
            raise PipelineStageError(
                EXPORT_STAGE,
                f"Cannot stage workspace in {staging}: {e}",
                backend=self.name,
                diagram_type="structurizr",
            ) from e
        return workspace

    async def _export(self, workspace: Path, export_dir: Path) -> list[Path]:
        """Stage 1: export every view to PlantUML inside the CLI container."""
        args = [
            "docker",
            "exec",
            self.config.cli_container,
            self.config.cli_command,
            "export",
            "-workspace",
            self._container_path(workspace),
            "-format",
            "plantuml",
            "-output",
            self._container_path(export_dir),
        ]
        try:
            result = await run_command(args, timeout=self.config.stage_timeout)
        except (OSError, TimeoutError) as e:
            raise PipelineStageError(
                EXPORT_STAGE, str(e), backend=self.name, diagram_type="structurizr"
            ) from e

        errors = filter_noise(result.stderr_text)
        if not result.ok:
            detail = "; ".join(errors) or result.stdout_text.strip() or f"exit {result.returncode}"
            raise PipelineStageError(
                EXPORT_STAGE, detail, backend=self.name, diagram_type="structurizr"
            )

        exported = await asyncio.to_thread(sorted, export_dir.glob("*.puml"))
        views = [p for p in exported if not p.stem.endswith("-key")]
        if not views:
            raise PipelineStageError(
                EXPORT_STAGE,
                "; ".join(errors) or "workspace defines no views",
                backend=self.name,
                diagram_type="structurizr",
            )
        return views

    async def _render_views(self, views: list[Path]) -> dict[str, bytes]:
        """Stage 2: render each exported view to SVG through containerized Kroki."""
        rendered: dict[str, bytes] = {}
        url = f"{self.kroki_url}/plantuml/svg"
        async with async_client(
            timeout=self.config.stage_timeout, transport=self._transport
        ) as client:
            for puml in views:
                name = view_name(puml)
                try:
                    async with aiofiles.open(puml, encoding="utf-8") as f:
                        source = await f.read()
                except OSError as e:
                    raise PipelineStageError(
                        EXPORT_STAGE,
                        f"{name}: cannot read exported view: {e}",
                        backend=self.name,
                        diagram_type="structurizr",
                    ) from e
                try:
                    response = await client.post(
                        url, content=source, headers={"Content-Type": "text/plain"}
                    )
                except httpx.HTTPError as e:
                    raise PipelineStageError(
                        RENDER_STAGE,
                        f"{name}: {describe_http_error(e)}",
                        backend=self.name,
                        diagram_type="structurizr",
                    ) from e
                if response.status_code != 200:
                    raise PipelineStageError(
                        RENDER_STAGE,
                        f"{name}: Kroki returned {response.status_code}",
                        backend=self.name,
                        diagram_type="structurizr",
                    )
                check_svg_structure(response.content, name)
                rendered[name] = response.content
        return rendered
