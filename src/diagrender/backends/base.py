"""Rendering backend contract."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from diagrender.errors import InvalidOutputError
from diagrender.logging import component_logger
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

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def looks_like_svg(body: bytes) -> bool:
    head = body.lstrip()[:256]
    return head.startswith(b"<?xml") or head.startswith(b"<svg")


def check_image(body: bytes, fmt: OutputFormat, *, backend: str, diagram_type: str) -> RenderOutput:
    """Wrap a response body as RenderOutput after checking its image marker.

    Raises:
        InvalidOutputError: If the body does not look like the requested format
    """
    valid = body.startswith(PNG_SIGNATURE) if fmt is OutputFormat.PNG else looks_like_svg(body)
    if not valid:
        raise InvalidOutputError(
            f"Server response is not valid {fmt.value.upper()} content",
            backend=backend,
            diagram_type=diagram_type,
        )
    return RenderOutput(content=body, format=fmt)


class RenderBackend(ABC):
    """A way of turning diagram source into an image.

    The scheduling lane is fixed when the backend is constructed; the
    orchestrator partitions work by that tag alone.
    """

    name: str = "backend"

    def __init__(
        self,
        *,
        lane: Lane,
        supported_types: frozenset[DiagramType],
        logger: Logger | None = None,
    ) -> None:
        self.lane = lane
        self.supported_types = supported_types
        self._log = logger or component_logger(self.name)

    def supports(self, diagram_type: DiagramType) -> bool:
        return diagram_type in self.supported_types

    @abstractmethod
    async def is_available(self) -> BackendAvailability:
        """Check whether the backend can render right now."""

    @abstractmethod
    async def render(self, file: DiagramFile, content: str) -> RenderOutput:
        """Render ``content`` (already include-resolved) for ``file``.

        Raises:
            BackendError: On any rendering failure
        """

    async def cleanup(self) -> None:
        """Release resources held across renders. Safe to call repeatedly."""

    def _availability(self, available: bool, message: str = "") -> BackendAvailability:
        return BackendAvailability(
            available=available,
            supported_types=self.supported_types if available else frozenset(),
            message=message,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r} lane={self.lane.value}>"
