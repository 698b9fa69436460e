"""Configuration loading for diagrender."""

from diagrender.config.loader import (
    BackendsConfig,
    DiagramRenderConfig,
    IncludesConfig,
    KrokiAuthConfig,
    KrokiConfig,
    MermaidBrowserConfig,
    PlantUmlJarConfig,
    PlantUmlServerConfig,
    StructurizrPipelineConfig,
    ValidationConfig,
    get_config,
    load_config,
)
from diagrender.config.secrets import expand_secrets, get_secret

__all__ = [
    "BackendsConfig",
    "DiagramRenderConfig",
    "IncludesConfig",
    "KrokiAuthConfig",
    "KrokiConfig",
    "MermaidBrowserConfig",
    "PlantUmlJarConfig",
    "PlantUmlServerConfig",
    "StructurizrPipelineConfig",
    "ValidationConfig",
    "expand_secrets",
    "get_config",
    "get_secret",
    "load_config",
]
