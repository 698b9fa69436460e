"""Render run orchestration.

A run moves through these states:

    IDLE -> VALIDATING -> CHECKING -> SCANNING -> PARTITIONING
         -> GATING (Structurizr files, when enabled) -> RENDERING
         -> AGGREGATING -> DONE -> IDLE

Backends are checked before anything is scanned so an unusable environment
is reported without touching the source tree. Files are routed to the first
available backend that supports their type and partitioned by that backend's
lane: the serial lane renders one file at a time, the concurrent lane renders
batches of ``concurrency`` files and waits for every file in a batch to
settle. One file's failure never affects another.
"""

from __future__ import annotations

import asyncio
import time
import traceback
from collections.abc import Sequence
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles

from diagrender.backends import build_backends
from diagrender.backends.base import RenderBackend
from diagrender.cache import RenderCache
from diagrender.classify import Classifier, TypePrompt
from diagrender.config.loader import DiagramRenderConfig
from diagrender.errors import (
    ConfigurationError,
    EmptyDiagramError,
    OrchestratorBusyError,
    ValidationRejectedError,
)
from diagrender.includes import IncludeCache, IncludeResolver
from diagrender.logging import component_logger
from diagrender.models import (
    BackendAvailability,
    DiagramFile,
    DiagramType,
    Lane,
    RenderError,
    RenderOutput,
    RenderResult,
    SkippedFile,
)
from diagrender.output import OutputWriter
from diagrender.reporting import NullReporter, RenderReporter
from diagrender.scanner import FileScanner
from diagrender.validation import (
    CANCELLED_MESSAGE,
    ConfirmCallback,
    GateDecision,
    StructurizrValidator,
    ValidationGate,
)

if TYPE_CHECKING:
    from loguru import Logger

NO_BACKEND_MESSAGE = "No rendering backend is available"
NO_ROUTE_REASON = "No available backend supports {type}"

# Types whose sources may carry remote !include directives
INCLUDE_TYPES = frozenset({DiagramType.PLANTUML, DiagramType.C4PLANTUML})


class RunState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CHECKING = "checking"
    SCANNING = "scanning"
    PARTITIONING = "partitioning"
    GATING = "gating"
    RENDERING = "rendering"
    AGGREGATING = "aggregating"
    DONE = "done"


class Orchestrator:
    """Drive a full render run over a source tree.

    The orchestrator is reusable: the render cache and include cache survive
    across runs, while backend resources are released at the end of each run.
    """

    def __init__(
        self,
        config: DiagramRenderConfig,
        backends: Sequence[RenderBackend],
        *,
        cache: RenderCache | None = None,
        include_resolver: IncludeResolver | None = None,
        scanner: FileScanner | None = None,
        writer: OutputWriter | None = None,
        gate: ValidationGate | None = None,
        reporter: RenderReporter | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.config = config
        self.backends = list(backends)
        self.cache = cache if cache is not None else RenderCache(config.cache_size)
        self.include_resolver = include_resolver
        self.scanner = scanner or FileScanner()
        self.writer = writer or OutputWriter()
        self.gate = gate
        self.reporter: RenderReporter = reporter or NullReporter()
        self.state = RunState.IDLE
        self._running = False
        self._log = logger or component_logger("orchestrator")

    @classmethod
    def from_config(
        cls,
        config: DiagramRenderConfig,
        *,
        reporter: RenderReporter | None = None,
        prompt: TypePrompt | None = None,
        confirm: ConfirmCallback | None = None,
    ) -> Orchestrator:
        """Build an orchestrator with backends, includes and gate per config."""
        include_resolver = None
        if config.includes.enabled:
            include_resolver = IncludeResolver(IncludeCache(), timeout=config.includes.timeout)
        gate = None
        if config.validation.enabled:
            gate = ValidationGate(
                StructurizrValidator(timeout=config.validation.timeout),
                config.validation.server_url,
                confirm=confirm,
            )
        return cls(
            config,
            build_backends(config.backends, config.project_dir),
            include_resolver=include_resolver,
            scanner=FileScanner(Classifier(prompt)),
            gate=gate,
            reporter=reporter,
        )

    @property
    def running(self) -> bool:
        return self._running

    def _transition(self, state: RunState) -> None:
        self._log.debug(f"{self.state.value} -> {state.value}")
        self.state = state

    # ==================== Run ====================

    async def run(
        self, source_dir: Path | str | None = None, output_dir: Path | str | None = None
    ) -> RenderResult:
        """Render every diagram under the source directory.

        Args:
            source_dir: Override for the configured source directory
            output_dir: Override for the configured output directory

        Returns:
            Aggregated RenderResult

        Raises:
            OrchestratorBusyError: If a run is already in progress
            ConfigurationError: If the run configuration is unusable
        """
        if self._running:
            raise OrchestratorBusyError()
        self._running = True
        try:
            return await self._run(source_dir, output_dir)
        finally:
            self._running = False
            self._transition(RunState.IDLE)

    async def _run(
        self, source_dir: Path | str | None, output_dir: Path | str | None
    ) -> RenderResult:
        started = time.monotonic()

        self._transition(RunState.VALIDATING)
        source_root, output_root = self._validate(source_dir, output_dir)

        try:
            self._transition(RunState.CHECKING)
            availability = await self._check_backends()
            usable = [b for b in self.backends if availability[b.name].available]
            if not usable:
                result = RenderResult(
                    availability_error=NO_BACKEND_MESSAGE,
                    duration=time.monotonic() - started,
                )
                self._log.error(NO_BACKEND_MESSAGE)
                self.reporter.error(NO_BACKEND_MESSAGE)
                self._transition(RunState.DONE)
                self.reporter.complete(result)
                return result

            self._transition(RunState.SCANNING)
            scan = await asyncio.to_thread(
                self.scanner.scan_tree, source_root, self.config.extensions
            )

            self._transition(RunState.PARTITIONING)
            routes, skipped = self.partition(scan.files, usable)
            skipped = [*scan.unclassified, *skipped]
            failures: dict[DiagramFile, BaseException] = {}

            structurizr = [f for f in routes if f.type is DiagramType.STRUCTURIZR]
            if self.gate is not None and structurizr:
                self._transition(RunState.GATING)
                try:
                    decision = await self.gate.review(structurizr)
                except Exception as e:
                    self._log.warning(f"Validation failed, proceeding without it: {e}")
                    decision = GateDecision(proceed=True)
                if not decision.proceed:
                    for file in structurizr:
                        failures[file] = ValidationRejectedError(CANCELLED_MESSAGE)

            self._transition(RunState.RENDERING)
            pending = {f: b for f, b in routes.items() if f not in failures}
            self.reporter.start(len(routes), availability)
            written = await self._render_all(pending, output_root, len(routes), failures)

            self._transition(RunState.AGGREGATING)
            result = self._aggregate(routes, failures, skipped, written, started)
        finally:
            await self._cleanup_backends()

        self._transition(RunState.DONE)
        self._log.info(
            f"Run finished: {result.success_count}/{result.total_files} rendered, "
            f"{result.failure_count} failed, {len(result.skipped)} skipped"
        )
        self.reporter.complete(result)
        return result

    def _validate(
        self, source_dir: Path | str | None, output_dir: Path | str | None
    ) -> tuple[Path, Path]:
        for label, value in (("source", source_dir), ("output", output_dir)):
            if value is not None and not str(value).strip():
                raise ConfigurationError(f"The {label} directory must not be empty")
        source = self.config.get_source_path() if source_dir is None else Path(source_dir)
        output = self.config.get_output_path() if output_dir is None else Path(output_dir)
        if self.config.concurrency < 1:
            raise ConfigurationError(f"Invalid concurrency: {self.config.concurrency}")
        return source, output

    async def _check_backends(self) -> dict[str, BackendAvailability]:
        async def check(backend: RenderBackend) -> BackendAvailability:
            try:
                return await backend.is_available()
            except Exception as e:
                self._log.warning(f"Availability check of {backend.name} failed: {e}")
                return BackendAvailability(available=False, message=str(e))

        states = await asyncio.gather(*(check(b) for b in self.backends))
        availability = {b.name: s for b, s in zip(self.backends, states)}
        for name, state in availability.items():
            self._log.debug(
                f"Backend {name}: {'available' if state.available else 'unavailable'}"
                + (f" ({state.message})" if state.message else "")
            )
        return availability

    async def check_backends(self) -> dict[str, BackendAvailability]:
        """Check every backend and release their resources."""
        try:
            return await self._check_backends()
        finally:
            await self._cleanup_backends()

    def partition(
        self, files: Sequence[DiagramFile], usable: Sequence[RenderBackend]
    ) -> tuple[dict[DiagramFile, RenderBackend], list[SkippedFile]]:
        """Route each file to the first usable backend supporting its type.

        Every file ends up either routed or skipped, never both.
        """
        routes: dict[DiagramFile, RenderBackend] = {}
        skipped: list[SkippedFile] = []
        for file in files:
            backend = next((b for b in usable if b.supports(file.type)), None)
            if backend is None:
                skipped.append(
                    SkippedFile(
                        file=file.display_name,
                        reason=NO_ROUTE_REASON.format(type=file.type.label),
                    )
                )
            else:
                routes[file] = backend
        return routes, skipped

    # ==================== Rendering ====================

    async def _render_all(
        self,
        routes: dict[DiagramFile, RenderBackend],
        output_root: Path,
        total: int,
        failures: dict[DiagramFile, BaseException],
    ) -> dict[DiagramFile, list[Path]]:
        serial = [f for f, b in routes.items() if b.lane is Lane.SERIAL]
        concurrent = [f for f, b in routes.items() if b.lane is Lane.CONCURRENT]
        written: dict[DiagramFile, list[Path]] = {}
        progress = iter(range(1, total + 1))

        async def attempt(file: DiagramFile) -> list[Path]:
            self.reporter.update(file, next(progress, total), total)
            return await self._render_file(file, routes[file], output_root)

        async def serial_lane() -> None:
            for file in serial:
                try:
                    written[file] = await attempt(file)
                except Exception as e:
                    failures[file] = e

        async def concurrent_lane() -> None:
            batch_size = self.config.concurrency
            for start in range(0, len(concurrent), batch_size):
                batch = concurrent[start : start + batch_size]
                outcomes = await asyncio.gather(
                    *(attempt(f) for f in batch), return_exceptions=True
                )
                for file, outcome in zip(batch, outcomes):
                    if isinstance(outcome, BaseException):
                        failures[file] = outcome
                    else:
                        written[file] = outcome

        await asyncio.gather(serial_lane(), concurrent_lane())
        return written

    async def _render_file(
        self, file: DiagramFile, backend: RenderBackend, output_root: Path
    ) -> list[Path]:
        async with aiofiles.open(file.absolute_path, encoding="utf-8") as f:
            content = await f.read()
        if not content.strip():
            raise EmptyDiagramError()

        key = RenderCache.generate_key(str(file.absolute_path), content)
        output = self._cache_get(key)
        if output is None:
            source = content
            if self.include_resolver is not None and file.type in INCLUDE_TYPES:
                source = await self.include_resolver.resolve(content)
            output = await backend.render(file, source)
            self._cache_set(key, output)
        else:
            self._log.debug(f"Cache hit for {file.display_name}")

        return await self.writer.write(file, output, output_root)

    def _cache_get(self, key: str) -> RenderOutput | None:
        try:
            return self.cache.get(key)
        except Exception as e:
            self._log.warning(f"Render cache lookup failed, continuing without it: {e}")
            return None

    def _cache_set(self, key: str, output: RenderOutput) -> None:
        try:
            self.cache.set(key, output)
        except Exception as e:
            self._log.warning(f"Render cache store failed, continuing without it: {e}")

    # ==================== Aggregation ====================

    def _aggregate(
        self,
        routes: dict[DiagramFile, RenderBackend],
        failures: dict[DiagramFile, BaseException],
        skipped: list[SkippedFile],
        written: dict[DiagramFile, list[Path]],
        started: float,
    ) -> RenderResult:
        result = RenderResult(total_files=len(routes), skipped=skipped)
        for file in routes:
            result.by_type[file.type] = result.by_type.get(file.type, 0) + 1
            error = failures.get(file)
            if error is None:
                result.success_count += 1
                result.written.extend(written.get(file, []))
                continue
            result.failure_count += 1
            result.errors.append(
                RenderError(
                    file=file.display_name,
                    type=file.type,
                    message=str(error) or type(error).__name__,
                    stack="".join(traceback.format_exception(error)),
                )
            )
            self._log.error(f"Failed to render {file.display_name}: {error}")
        result.duration = time.monotonic() - started
        return result

    async def _cleanup_backends(self) -> None:
        for backend in self.backends:
            try:
                await backend.cleanup()
            except Exception as e:
                self._log.warning(f"Cleanup of {backend.name} failed: {e}")
