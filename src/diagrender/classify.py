"""Diagram type detection: extension table, content sniffing, then a prompt.

The sniffing rules assume Mermaid's ``graph <direction>`` header and
GraphViz's ``graph [id] {`` header never overlap: a Mermaid direction line
ends at the direction keyword, a GraphViz header always reaches a brace.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from diagrender.logging import component_logger
from diagrender.models import DiagramType

if TYPE_CHECKING:
    from loguru import Logger

EXTENSION_MAP: dict[str, DiagramType] = {
    ".mmd": DiagramType.MERMAID,
    ".mermaid": DiagramType.MERMAID,
    ".puml": DiagramType.PLANTUML,
    ".plantuml": DiagramType.PLANTUML,
    ".pu": DiagramType.PLANTUML,
    ".wsd": DiagramType.PLANTUML,
    ".iuml": DiagramType.PLANTUML,
    ".dot": DiagramType.GRAPHVIZ,
    ".gv": DiagramType.GRAPHVIZ,
    ".dsl": DiagramType.STRUCTURIZR,
    ".d2": DiagramType.D2,
    ".bpmn": DiagramType.BPMN,
    ".ditaa": DiagramType.DITAA,
    ".er": DiagramType.ERD,
    ".erd": DiagramType.ERD,
    ".excalidraw": DiagramType.EXCALIDRAW,
    ".nomnoml": DiagramType.NOMNOML,
    ".pikchr": DiagramType.PIKCHR,
    ".svgbob": DiagramType.SVGBOB,
    ".bob": DiagramType.SVGBOB,
    ".umlet": DiagramType.UMLET,
    ".vg": DiagramType.VEGA,
    ".vdx": DiagramType.VEGA,
    ".vl": DiagramType.VEGALITE,
    ".wavedrom": DiagramType.WAVEDROM,
}

# Accepted by the scanner, typed only by content or by asking
AMBIGUOUS_EXTENSIONS = frozenset({".txt", ".diagram"})

PROMPT_CHOICES: tuple[DiagramType, ...] = (
    DiagramType.MERMAID,
    DiagramType.PLANTUML,
    DiagramType.GRAPHVIZ,
    DiagramType.STRUCTURIZR,
)

PLANTUML_MARKERS = ("@startuml", "@startmindmap", "@startsalt", "@startgantt", "@startwbs")

MERMAID_KEYWORDS = (
    "flowchart",
    "sequenceDiagram",
    "classDiagram",
    "stateDiagram",
    "erDiagram",
    "gantt",
    "pie",
    "journey",
    "gitGraph",
    "mindmap",
    "timeline",
    "quadrantChart",
    "requirementDiagram",
    "C4Context",
    "C4Container",
    "C4Component",
    "C4Dynamic",
    "C4Deployment",
    "xychart-beta",
    "sankey-beta",
    "block-beta",
    "packet-beta",
    "architecture-beta",
    "kanban",
    "zenuml",
)

_MERMAID_GRAPH = re.compile(r"graph\s+(TB|BT|RL|LR|TD)\s*;?\s*$")
_MERMAID_KEYWORD = re.compile(r"(%s)(?![\w])" % "|".join(MERMAID_KEYWORDS))
_GRAPHVIZ_DIGRAPH = re.compile(r"(strict\s+)?digraph\b")
_GRAPHVIZ_GRAPH = re.compile(r"(strict\s+)?graph\b\s*(\"[^\"]*\"|[\w.]+)?\s*\{")
_STRUCTURIZR = re.compile(r"workspace\b")
_COMMENT_PREFIXES = ("%%", "'", "//", "#")

# Receives the file's display name and the offered types; returns the chosen
# type or None when the user declines.
TypePrompt = Callable[[str, tuple[DiagramType, ...]], DiagramType | None]


def type_from_extension(path: Path | str) -> DiagramType | None:
    return EXTENSION_MAP.get(Path(path).suffix.lower())


def _significant_text(content: str) -> str:
    """Drop leading blank lines, comment lines and Mermaid front matter."""
    lines = content.lstrip("\ufeff").splitlines()
    index = 0
    if lines and lines[0].strip() == "---":
        for closing in range(1, len(lines)):
            if lines[closing].strip() == "---":
                index = closing + 1
                break
    while index < len(lines):
        stripped = lines[index].strip()
        if stripped and not stripped.startswith(_COMMENT_PREFIXES):
            break
        index += 1
    return "\n".join(line.strip() for line in lines[index:])


def sniff_content(content: str) -> DiagramType | None:
    """Detect a diagram type from the first significant line(s) of content.

    Returns:
        The detected type, or None when no rule matches
    """
    text = _significant_text(content)
    if not text:
        return None
    first_line = text.split("\n", 1)[0]

    if first_line.startswith(PLANTUML_MARKERS):
        return DiagramType.PLANTUML
    if _STRUCTURIZR.match(first_line):
        return DiagramType.STRUCTURIZR
    if _MERMAID_GRAPH.match(first_line):
        return DiagramType.MERMAID
    if _GRAPHVIZ_DIGRAPH.match(first_line) or _GRAPHVIZ_GRAPH.match(text):
        return DiagramType.GRAPHVIZ
    if _MERMAID_KEYWORD.match(first_line):
        return DiagramType.MERMAID
    return None


class Classifier:
    """Resolve a file's diagram type, asking the injected prompt as a last resort.

    A prompt answer applies to that one file only and is never remembered.
    """

    def __init__(self, prompt: TypePrompt | None = None, logger: Logger | None = None) -> None:
        self.prompt = prompt
        self._log = logger or component_logger("classify")

    def classify(
        self, path: Path, content: str | None = None, display_name: str | None = None
    ) -> DiagramType | None:
        """Return the diagram type for ``path`` or None if it stays unknown."""
        by_extension = type_from_extension(path)
        if by_extension is not None:
            return by_extension

        if content is None:
            try:
                content = path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                self._log.warning(f"Cannot read {path} for type detection: {e}")
                return None

        sniffed = sniff_content(content)
        if sniffed is not None:
            self._log.debug(f"Detected {sniffed.value} from content of {path.name}")
            return sniffed

        if self.prompt is None:
            return None
        choice = self.prompt(display_name or path.name, PROMPT_CHOICES)
        if choice is None:
            self._log.info(f"No diagram type chosen for {display_name or path.name}, skipping")
        return choice
