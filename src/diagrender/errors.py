"""Exception taxonomy for diagrender.

Run-level errors abort a run before any file is rendered. File-level errors
are caught by the orchestrator and recorded against the single file.
"""

from __future__ import annotations


class DiagramRenderError(Exception):
    """Base class for all diagrender errors."""


# ==================== Run level ====================


class ConfigurationError(DiagramRenderError):
    """Run configuration is unusable."""


class OrchestratorBusyError(DiagramRenderError):
    """A render run is already in progress on this orchestrator."""

    def __init__(self) -> None:
        super().__init__("A render run is already in progress")


# ==================== File level ====================


class EmptyDiagramError(DiagramRenderError):
    """Source file has no content to render."""

    def __init__(self, message: str = "Diagram content is empty") -> None:
        super().__init__(message)


class IncludeResolutionError(DiagramRenderError):
    """A remote !include could not be fetched."""

    def __init__(self, url: str, reason: str | None = None) -> None:
        self.url = url
        self.reason = reason
        message = f"Failed to resolve include: {url}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class BackendError(DiagramRenderError):
    """A backend failed to produce output for a diagram."""

    def __init__(
        self,
        message: str,
        *,
        backend: str = "",
        diagram_type: str = "",
        stage: str = "render",
    ) -> None:
        self.backend = backend
        self.diagram_type = diagram_type
        self.stage = stage
        super().__init__(message)


class BackendHTTPError(BackendError):
    """Backend answered with a non-success HTTP status."""

    def __init__(self, status_code: int, message: str = "", **kwargs: str) -> None:
        self.status_code = status_code
        if 400 <= status_code < 500:
            kind = "Client error"
        elif status_code >= 500:
            kind = "Server error"
        else:
            kind = "Unexpected status"
        text = f"{kind} ({status_code})"
        if message:
            text = f"{text}: {message}"
        super().__init__(text, **kwargs)


class InvalidOutputError(BackendError):
    """Backend answered successfully but the payload is not an image."""


class DiagramSyntaxError(BackendError):
    """The rendering tool rejected the diagram source."""

    def __init__(self, detail: str, **kwargs: str) -> None:
        self.detail = detail
        super().__init__(f"Invalid syntax: {detail}", **kwargs)


class PipelineStageError(BackendError):
    """One stage of a multi-stage pipeline failed."""

    def __init__(self, stage: str, message: str, **kwargs: str) -> None:
        super().__init__(f"{stage} failed: {message}", stage=stage, **kwargs)


class ValidationRejectedError(DiagramRenderError):
    """Rendering of the file was cancelled at the validation gate."""
