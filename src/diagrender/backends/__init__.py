"""Rendering backends and their construction from configuration."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from diagrender.backends.base import RenderBackend
from diagrender.backends.kroki import KrokiBackend
from diagrender.backends.mermaid_browser import MermaidBrowserBackend
from diagrender.backends.mermaid_cli import MermaidCliBackend
from diagrender.backends.plantuml_jar import PlantUmlJarBackend
from diagrender.backends.plantuml_server import PlantUmlServerBackend
from diagrender.backends.structurizr_pipeline import StructurizrPipelineBackend

if TYPE_CHECKING:
    from diagrender.config.loader import BackendsConfig

__all__ = [
    "KrokiBackend",
    "MermaidBrowserBackend",
    "MermaidCliBackend",
    "PlantUmlJarBackend",
    "PlantUmlServerBackend",
    "RenderBackend",
    "StructurizrPipelineBackend",
    "build_backends",
]


def build_backends(config: BackendsConfig, project_dir: Path) -> list[RenderBackend]:
    """Instantiate the enabled backends in routing priority order."""
    backends: list[RenderBackend] = []
    for name in config.order:
        if name == "kroki" and config.kroki.enabled:
            backends.append(KrokiBackend(config.kroki))
        elif name == "plantuml_server" and config.plantuml_server.enabled:
            backends.append(PlantUmlServerBackend(config.plantuml_server))
        elif name == "mermaid_browser" and config.mermaid_browser.enabled:
            backends.append(MermaidBrowserBackend(config.mermaid_browser))
        elif name == "mermaid_cli" and config.mermaid_cli.enabled:
            backends.append(MermaidCliBackend(config.mermaid_cli))
        elif name == "plantuml_jar" and config.plantuml_jar.enabled:
            backends.append(PlantUmlJarBackend(config.plantuml_jar))
        elif name == "structurizr_pipeline" and config.structurizr_pipeline.enabled:
            backends.append(
                StructurizrPipelineBackend(config.structurizr_pipeline, project_dir=project_dir)
            )
    return backends
