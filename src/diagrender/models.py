"""Core data types shared by the scanner, backends and orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class DiagramType(str, Enum):
    """Diagram languages the engine knows how to route."""

    MERMAID = "mermaid"
    PLANTUML = "plantuml"
    GRAPHVIZ = "graphviz"
    STRUCTURIZR = "structurizr"
    C4PLANTUML = "c4plantuml"
    D2 = "d2"
    BPMN = "bpmn"
    DITAA = "ditaa"
    ERD = "erd"
    EXCALIDRAW = "excalidraw"
    NOMNOML = "nomnoml"
    PIKCHR = "pikchr"
    SVGBOB = "svgbob"
    UMLET = "umlet"
    VEGA = "vega"
    VEGALITE = "vegalite"
    WAVEDROM = "wavedrom"

    @property
    def label(self) -> str:
        return _LABELS.get(self, self.value.capitalize())


_LABELS = {
    DiagramType.MERMAID: "Mermaid",
    DiagramType.PLANTUML: "PlantUML",
    DiagramType.GRAPHVIZ: "GraphViz",
    DiagramType.STRUCTURIZR: "Structurizr",
    DiagramType.C4PLANTUML: "C4-PlantUML",
}


class OutputFormat(str, Enum):
    SVG = "svg"
    PNG = "png"

    @property
    def extension(self) -> str:
        return f".{self.value}"


class Lane(str, Enum):
    """Execution lane a backend is scheduled on.

    CONCURRENT backends accept batched parallel requests. SERIAL backends
    own a single process or container and take one file at a time.
    """

    CONCURRENT = "concurrent"
    SERIAL = "serial"


@dataclass(frozen=True)
class DiagramFile:
    """A discovered diagram source, typed once at discovery."""

    absolute_path: Path
    relative_path: Path
    type: DiagramType

    @property
    def display_name(self) -> str:
        return self.relative_path.as_posix()


@dataclass(frozen=True)
class BackendAvailability:
    available: bool
    supported_types: frozenset[DiagramType] = frozenset()
    message: str = ""


@dataclass
class RenderOutput:
    """Rendered image bytes plus any additional views from the same source."""

    content: bytes
    format: OutputFormat = OutputFormat.SVG
    views: dict[str, bytes] = field(default_factory=dict)

    @property
    def extension(self) -> str:
        return self.format.extension


@dataclass(frozen=True)
class RenderError:
    file: str
    type: DiagramType
    message: str
    stack: str = ""


@dataclass(frozen=True)
class SkippedFile:
    file: str
    reason: str


@dataclass
class RenderResult:
    """Aggregate outcome of a run.

    Invariant: success_count + failure_count == total_files. Skipped files
    are reported separately and do not count toward total_files.
    """

    total_files: int = 0
    success_count: int = 0
    failure_count: int = 0
    errors: list[RenderError] = field(default_factory=list)
    duration: float = 0.0
    skipped: list[SkippedFile] = field(default_factory=list)
    written: list[Path] = field(default_factory=list)
    by_type: dict[DiagramType, int] = field(default_factory=dict)
    availability_error: str | None = None

    @property
    def status(self) -> str:
        if self.total_files == 0:
            return "empty"
        if self.failure_count == 0:
            return "success"
        if self.success_count == 0:
            return "failed"
        return "partial"
