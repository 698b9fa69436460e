"""Pre-render validation of diagram sources.

Mermaid sources get a local structural check before every render. The
Structurizr validator posts each workspace to a Structurizr server
(``POST {server}/api/workspace/validate``). The gate turns the results into a
proceed/cancel decision, asking the injected confirm callback when any file
is invalid. When the server cannot be consulted the gate degrades to proceed.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import aiofiles
import httpx

from diagrender.classify import MERMAID_KEYWORDS
from diagrender.errors import DiagramSyntaxError, EmptyDiagramError
from diagrender.http_client import async_client, describe_http_error
from diagrender.logging import component_logger, log
from diagrender.models import DiagramFile

if TYPE_CHECKING:
    from loguru import Logger

VALIDATION_ENDPOINT = "/api/workspace/validate"
CANCELLED_MESSAGE = "Rendering cancelled due to validation errors"


@dataclass(frozen=True)
class ValidationIssue:
    line: int
    message: str
    column: int | None = None


@dataclass
class ValidationResult:
    file_path: str
    valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    checked: bool = True


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _issues(raw: Any) -> list[ValidationIssue]:
    if not isinstance(raw, list):
        return []
    issues = []
    for item in raw:
        if isinstance(item, dict):
            issues.append(
                ValidationIssue(
                    line=_as_int(item.get("line")) or 0,
                    column=_as_int(item.get("column")),
                    message=str(item.get("message", "")),
                )
            )
    return issues


def parse_validation_response(file_path: str, payload: dict[str, Any]) -> ValidationResult:
    errors = _issues(payload.get("errors"))
    if not payload.get("success") and not errors and payload.get("message"):
        errors = [ValidationIssue(line=0, message=str(payload["message"]))]
    return ValidationResult(
        file_path=file_path,
        valid=bool(payload.get("success")) and not errors,
        errors=errors,
        warnings=_issues(payload.get("warnings")),
    )


class StructurizrValidator:
    def __init__(
        self,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.timeout = timeout
        self._transport = transport
        self._log = logger or component_logger("validation")

    async def validate_all(
        self, paths: Sequence[str], server_url: str = "http://localhost:8080"
    ) -> list[ValidationResult]:
        """Validate each file in order; never raises for per-file problems."""
        url = f"{server_url.rstrip('/')}{VALIDATION_ENDPOINT}"
        results: list[ValidationResult] = []
        async with async_client(timeout=self.timeout, transport=self._transport) as client:
            for path in paths:
                results.append(await self._validate(client, url, path))
        return results

    async def _validate(self, client: httpx.AsyncClient, url: str, path: str) -> ValidationResult:
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            return ValidationResult(
                file_path=path,
                valid=False,
                errors=[ValidationIssue(line=0, message=f"Failed to read DSL file: {e}")],
            )

        with log("structurizr.validate", sink=self._log, file=path) as span:
            try:
                response = await client.post(
                    url, content=content, headers={"Content-Type": "text/plain"}
                )
            except httpx.HTTPError as e:
                self._log.warning(f"Structurizr validator unavailable: {describe_http_error(e)}")
                return ValidationResult(file_path=path, valid=True, checked=False)
            span.add(status=response.status_code)

            if response.status_code == 405:
                self._log.warning("Structurizr server does not support workspace validation")
                return ValidationResult(file_path=path, valid=True, checked=False)
            try:
                payload = response.json()
            except ValueError:
                self._log.warning(f"Unparseable validator response ({response.status_code})")
                return ValidationResult(file_path=path, valid=True, checked=False)
            if not isinstance(payload, dict):
                return ValidationResult(file_path=path, valid=True, checked=False)

            try:
                result = parse_validation_response(path, payload)
            except (TypeError, ValueError) as e:
                self._log.warning(f"Malformed validator response: {e}")
                return ValidationResult(file_path=path, valid=True, checked=False)
            span.add(valid=result.valid, errors=len(result.errors), warnings=len(result.warnings))
            return result


# Receives the invalid results; returns True to render anyway
ConfirmCallback = Callable[[list[ValidationResult]], bool]


@dataclass
class GateDecision:
    proceed: bool
    results: list[ValidationResult] = field(default_factory=list)

    @property
    def invalid(self) -> list[ValidationResult]:
        return [r for r in self.results if r.checked and not r.valid]


class ValidationGate:
    """Decide whether a Structurizr sub-batch may be rendered."""

    def __init__(
        self,
        validator: StructurizrValidator,
        server_url: str,
        confirm: ConfirmCallback | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.validator = validator
        self.server_url = server_url
        self.confirm = confirm
        self._log = logger or component_logger("validation")

    async def review(self, files: Sequence[DiagramFile]) -> GateDecision:
        if not files:
            return GateDecision(proceed=True)

        results = await self.validator.validate_all(
            [str(f.absolute_path) for f in files], self.server_url
        )
        decision = GateDecision(proceed=True, results=results)

        if any(not r.checked for r in results):
            self._log.warning("Validation unavailable for some files, proceeding without it")
        for result in results:
            for warning in result.warnings:
                self._log.warning(f"{result.file_path}:{warning.line}: {warning.message}")

        invalid = decision.invalid
        if not invalid:
            return decision

        for result in invalid:
            for error in result.errors:
                self._log.error(f"{result.file_path}:{error.line}: {error.message}")

        if self.confirm is None:
            decision.proceed = False
        else:
            decision.proceed = bool(await asyncio.to_thread(self.confirm, invalid))
        if not decision.proceed:
            self._log.warning(CANCELLED_MESSAGE)
        return decision


# ==================== Mermaid ====================

MERMAID_HEADERS = ("graph", *MERMAID_KEYWORDS)

# Deprecated header -> replacement
DEPRECATED_MERMAID_HEADERS = {"stateDiagram": "stateDiagram-v2"}
_DECLARATION = re.compile(r"[^\s;:{]*")


class MermaidValidator:
    """Structural check run before every Mermaid render.

    Only the header is inspected: the first line that is not blank, a ``%%``
    comment or part of a front matter block must declare a diagram type.
    Full syntax checking is left to the renderer.
    """

    def validate(self, file_path: str, content: str) -> ValidationResult:
        if not content.strip():
            return ValidationResult(
                file_path=file_path,
                valid=False,
                errors=[ValidationIssue(line=0, message="File is empty")],
            )

        line_number, header = _mermaid_header(content)
        if not header.startswith(MERMAID_HEADERS):
            shown = header if len(header) <= 50 else f"{header[:50]}..."
            expected = ", ".join(MERMAID_HEADERS[:5])
            return ValidationResult(
                file_path=file_path,
                valid=False,
                errors=[
                    ValidationIssue(
                        line=line_number,
                        message=(
                            f"Missing diagram type declaration at line {line_number}. "
                            f'Expected one of: {expected}, etc. Found: "{shown}"'
                        ),
                    )
                ],
            )

        result = ValidationResult(file_path=file_path, valid=True)
        match = _DECLARATION.match(header)
        keyword = match.group(0) if match else ""
        replacement = DEPRECATED_MERMAID_HEADERS.get(keyword)
        if replacement:
            result.warnings.append(
                ValidationIssue(
                    line=line_number,
                    message=f"Diagram type '{keyword}' is deprecated, use '{replacement}'",
                )
            )
        return result

    def ensure_valid(
        self, file: DiagramFile, content: str, *, backend: str, logger: Logger
    ) -> None:
        """Raise for content that cannot be Mermaid and log any warnings.

        Raises:
            EmptyDiagramError: If the content is blank
            DiagramSyntaxError: If no diagram type is declared
        """
        result = self.validate(file.display_name, content)
        for warning in result.warnings:
            logger.warning(f"{file.display_name}:{warning.line}: {warning.message}")
        if result.valid:
            return
        if not content.strip():
            raise EmptyDiagramError("Mermaid content is empty")
        raise DiagramSyntaxError(
            "; ".join(e.message for e in result.errors),
            backend=backend,
            diagram_type=file.type.value,
        )


def _mermaid_header(content: str) -> tuple[int, str]:
    """Return the 1-based line number and text of the declaring line."""
    lines = content.lstrip("\ufeff").splitlines()
    start = 0
    if lines and lines[0].strip() == "---":
        for closing in range(1, len(lines)):
            if lines[closing].strip() == "---":
                start = closing + 1
                break
    for index in range(start, len(lines)):
        stripped = lines[index].strip()
        if stripped and not stripped.startswith("%%"):
            return index + 1, stripped
    return 0, ""
