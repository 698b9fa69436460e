"""diagrender - render diagram sources through interchangeable backends.

Features:
- Mermaid, PlantUML, GraphViz, Structurizr and other Kroki DSLs
- Remote (Kroki), local server, browser, JAR and container pipeline backends
- Per-backend rate limiting, render cache, remote include resolution
- Optional Structurizr validation gate

Usage:
    # Render the configured source tree
    diagrender render

    # Show which backends are reachable
    diagrender check
"""

from importlib.metadata import version
from typing import Any

__version__ = version("diagrender")

__all__ = ["Orchestrator", "__version__"]


def __getattr__(name: str) -> Any:
    """Lazy import for the orchestrator to keep CLI startup light."""
    if name == "Orchestrator":
        from diagrender.orchestrator import Orchestrator

        return Orchestrator
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
