"""YAML configuration loading for diagrender.

Example diagrender.yaml:

    version: 1
    source_dir: docs/03_architecture/diagrams/src
    output_dir: docs/03_architecture/diagrams/out
    concurrency: 5

    backends:
      order: [structurizr_pipeline, mermaid_browser, kroki]
      kroki:
        endpoint: https://kroki.io
        rate_limit_ms: 500
        auth:
          type: bearer
          credentials: ${KROKI_TOKEN:-}

    # Use !include for modular configs
    validation: !include validation.yaml

Out-of-range numbers are clamped and malformed values fall back to their
defaults. Both are logged as warnings rather than rejected.
"""

from __future__ import annotations

import math
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from loguru import logger
from pydantic import BaseModel, Field, PrivateAttr, ValidationInfo, field_validator

from diagrender.config.secrets import expand_secrets
from diagrender.models import DiagramType, OutputFormat
from diagrender.paths import (
    CONFIG_FILE_NAME,
    PROJECT_DIR_NAME,
    get_effective_cwd,
    get_global_dir,
    get_project_dir,
    resolve_project_path,
)


class IncludeLoader(yaml.SafeLoader):
    """YAML loader that supports the !include tag.

    Paths are resolved relative to the including file.
    """

    _base_path: Path | None = None

    @classmethod
    def with_base_path(cls, base_path: Path) -> type[IncludeLoader]:
        """Create a loader class with a specific base path for includes."""

        class BoundLoader(cls):  # type: ignore[valid-type,misc]
            _base_path = base_path

        return BoundLoader


def _include_constructor(loader: IncludeLoader, node: yaml.Node) -> Any:
    """Handle !include YAML tag by loading the referenced file."""
    include_path = loader.construct_scalar(node)  # type: ignore[arg-type]

    if loader._base_path is None:
        raise yaml.YAMLError(f"Cannot resolve !include path: {include_path}")

    resolved = (loader._base_path / include_path).resolve()
    if not resolved.exists():
        logger.warning(f"!include file not found: {resolved}")
        return None

    try:
        with resolved.open() as f:
            bound_loader = IncludeLoader.with_base_path(resolved.parent)
            return yaml.load(f, Loader=bound_loader)
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Error loading !include {include_path}: {e}") from e


IncludeLoader.add_constructor("!include", _include_constructor)

CURRENT_CONFIG_VERSION = 1

DEFAULT_SOURCE_DIR = "docs/03_architecture/diagrams/src"
DEFAULT_OUTPUT_DIR = "docs/03_architecture/diagrams/out"

BACKEND_NAMES = (
    "structurizr_pipeline",
    "plantuml_server",
    "plantuml_jar",
    "mermaid_browser",
    "mermaid_cli",
    "kroki",
)


def _clamp_int(value: Any, *, name: str, default: int, low: int, high: int) -> int:
    """Coerce to int within [low, high], warning on any adjustment."""
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        logger.warning(f"Invalid {name} {value!r}, using default {default}")
        return default
    clamped = max(low, min(high, number))
    if clamped != number:
        logger.warning(f"{name} {value!r} out of range [{low}, {high}], clamped to {clamped}")
    return clamped


def _clamp_float(value: Any, *, name: str, default: float, low: float, high: float) -> float:
    """Float counterpart of _clamp_int."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = math.nan
    if math.isnan(number):
        logger.warning(f"Invalid {name} {value!r}, using default {default}")
        return default
    clamped = max(low, min(high, number))
    if clamped != number:
        logger.warning(f"{name} {value!r} out of range [{low}, {high}], clamped to {clamped}")
    return clamped


# Allowed range per numeric setting, keyed by dotted config path
NUMERIC_BOUNDS: dict[str, tuple[float, float]] = {
    "kroki.timeout": (1.0, 120.0),
    "kroki.rate_limit_ms": (0, 60000),
    "plantuml_server.timeout": (1.0, 120.0),
    "mermaid_browser.timeout": (1.0, 120.0),
    "plantuml_jar.timeout": (1.0, 300.0),
    "mermaid_cli.timeout": (1.0, 300.0),
    "structurizr_pipeline.warmup_seconds": (0.0, 120.0),
    "structurizr_pipeline.stage_timeout": (1.0, 600.0),
    "includes.timeout": (1.0, 60.0),
    "validation.timeout": (1.0, 120.0),
}


def _clamp_setting(model: type[BaseModel], section: str, value: Any, info: ValidationInfo) -> Any:
    """Clamp a numeric field to its NUMERIC_BOUNDS range, falling back to its default."""
    field_name = info.field_name or ""
    name = f"{section}.{field_name}"
    low, high = NUMERIC_BOUNDS[name]
    default = model.model_fields[field_name].default
    if isinstance(default, int):
        return _clamp_int(value, name=name, default=default, low=int(low), high=int(high))
    return _clamp_float(value, name=name, default=default, low=low, high=high)


def _valid_url(value: Any, *, name: str, default: str) -> str:
    if isinstance(value, str) and value.startswith(("http://", "https://")):
        return value.rstrip("/")
    logger.warning(
        f"Invalid {name} {value!r} (must start with http:// or https://), using {default}"
    )
    return default


# ==================== Backend Configuration Models ====================


class KrokiAuthConfig(BaseModel):
    """Optional authentication for a Kroki endpoint."""

    type: Literal["none", "basic", "bearer"] = Field(
        default="none", description="Authentication scheme"
    )
    credentials: str = Field(
        default="",
        description="user:password for basic, token for bearer",
    )


class KrokiConfig(BaseModel):
    """Rendering-as-a-service backend."""

    enabled: bool = Field(default=True, description="Check and use this backend")
    endpoint: str = Field(default="https://kroki.io", description="Kroki base URL")
    output_format: OutputFormat = Field(default=OutputFormat.SVG, description="Image format")
    timeout: float = Field(default=30.0, description="Render timeout in seconds")
    rate_limit_ms: int = Field(
        default=500, description="Minimum spacing between requests"
    )
    auth: KrokiAuthConfig = Field(default_factory=KrokiAuthConfig)
    types: list[DiagramType] = Field(
        default_factory=lambda: [t for t in DiagramType if t is not DiagramType.STRUCTURIZR],
        description="Diagram types routed to this backend",
    )

    @field_validator("endpoint", mode="before")
    @classmethod
    def _check_endpoint(cls, v: Any) -> str:
        return _valid_url(v, name="kroki.endpoint", default="https://kroki.io")

    @field_validator("timeout", "rate_limit_ms", mode="before")
    @classmethod
    def _clamp_numbers(cls, v: Any, info: ValidationInfo) -> Any:
        return _clamp_setting(cls, "kroki", v, info)


class PlantUmlServerConfig(BaseModel):
    """Local PlantUML HTTP server."""

    enabled: bool = Field(default=False, description="Check and use this backend")
    endpoint: str = Field(default="http://localhost:8080/plantuml", description="Server base URL")
    timeout: float = Field(default=30.0, description="Render timeout in seconds")

    @field_validator("endpoint", mode="before")
    @classmethod
    def _check_endpoint(cls, v: Any) -> str:
        return _valid_url(
            v, name="plantuml_server.endpoint", default="http://localhost:8080/plantuml"
        )

    @field_validator("timeout", mode="before")
    @classmethod
    def _clamp_timeout(cls, v: Any, info: ValidationInfo) -> Any:
        return _clamp_setting(cls, "plantuml_server", v, info)


class MermaidBrowserConfig(BaseModel):
    """Headless Chromium running the Mermaid library."""

    enabled: bool = Field(default=True, description="Check and use this backend")
    mermaid_url: str = Field(
        default="https://cdn.jsdelivr.net/npm/mermaid@11/dist/mermaid.esm.min.mjs",
        description="ES module URL for the Mermaid library",
    )
    theme: str = Field(default="default", description="Mermaid theme name")
    timeout: float = Field(default=30.0, description="Render timeout in seconds")

    @field_validator("timeout", mode="before")
    @classmethod
    def _clamp_timeout(cls, v: Any, info: ValidationInfo) -> Any:
        return _clamp_setting(cls, "mermaid_browser", v, info)


class MermaidCliConfig(BaseModel):
    """Local mermaid-cli (mmdc) driven as a subprocess."""

    enabled: bool = Field(default=False, description="Check and use this backend")
    command: str = Field(default="mmdc", description="mermaid-cli executable")
    theme: str = Field(default="default", description="Mermaid theme name")
    timeout: float = Field(default=60.0, description="Render timeout in seconds")

    @field_validator("timeout", mode="before")
    @classmethod
    def _clamp_timeout(cls, v: Any, info: ValidationInfo) -> Any:
        return _clamp_setting(cls, "mermaid_cli", v, info)


class PlantUmlJarConfig(BaseModel):
    """Local PlantUML JAR driven through a Java runtime."""

    enabled: bool = Field(default=False, description="Check and use this backend")
    jar_path: str = Field(default="", description="Path to plantuml.jar")
    java: str = Field(default="java", description="Java executable")
    timeout: float = Field(default=60.0, description="Render timeout in seconds")

    @field_validator("timeout", mode="before")
    @classmethod
    def _clamp_timeout(cls, v: Any, info: ValidationInfo) -> Any:
        return _clamp_setting(cls, "plantuml_jar", v, info)


class StructurizrPipelineConfig(BaseModel):
    """Two-stage container pipeline: Structurizr CLI export, then Kroki."""

    enabled: bool = Field(default=True, description="Check and use this backend")
    compose_file: str = Field(
        default="docker-compose.structurizr.yml", description="Compose file relative to project"
    )
    cli_container: str = Field(default="structurizr-cli", description="Structurizr CLI container")
    kroki_container: str = Field(default="kroki", description="Kroki container")
    kroki_url: str = Field(default="http://localhost:8000", description="Containerized Kroki URL")
    workspace_dir: str = Field(
        default="/workspace", description="Project mount point inside the CLI container"
    )
    cli_command: str = Field(
        default="/usr/local/structurizr-cli/structurizr.sh",
        description="Structurizr CLI entry point inside the container",
    )
    auto_start: bool = Field(default=True, description="Start containers when not running")
    warmup_seconds: float = Field(
        default=5.0, description="Wait after starting containers"
    )
    stage_timeout: float = Field(
        default=60.0, description="Timeout for each pipeline stage"
    )

    @field_validator("kroki_url", mode="before")
    @classmethod
    def _check_kroki_url(cls, v: Any) -> str:
        return _valid_url(
            v, name="structurizr_pipeline.kroki_url", default="http://localhost:8000"
        )

    @field_validator("warmup_seconds", "stage_timeout", mode="before")
    @classmethod
    def _clamp_numbers(cls, v: Any, info: ValidationInfo) -> Any:
        return _clamp_setting(cls, "structurizr_pipeline", v, info)


class BackendsConfig(BaseModel):
    """Backend priority and per-backend settings."""

    order: list[str] = Field(
        default_factory=lambda: list(BACKEND_NAMES),
        description="Routing priority; first available supporting backend wins",
    )
    kroki: KrokiConfig = Field(default_factory=KrokiConfig)
    plantuml_server: PlantUmlServerConfig = Field(default_factory=PlantUmlServerConfig)
    mermaid_browser: MermaidBrowserConfig = Field(default_factory=MermaidBrowserConfig)
    mermaid_cli: MermaidCliConfig = Field(default_factory=MermaidCliConfig)
    plantuml_jar: PlantUmlJarConfig = Field(default_factory=PlantUmlJarConfig)
    structurizr_pipeline: StructurizrPipelineConfig = Field(
        default_factory=StructurizrPipelineConfig
    )

    @field_validator("order", mode="before")
    @classmethod
    def _check_order(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            logger.warning(f"Invalid backends.order {v!r}, using default")
            return list(BACKEND_NAMES)
        known = [name for name in v if name in BACKEND_NAMES]
        for name in v:
            if name not in BACKEND_NAMES:
                logger.warning(f"Unknown backend '{name}' in backends.order, ignored")
        return list(dict.fromkeys(known))


class IncludesConfig(BaseModel):
    enabled: bool = Field(default=True, description="Resolve remote !include directives")
    timeout: float = Field(default=10.0, description="Fetch timeout in seconds")

    @field_validator("timeout", mode="before")
    @classmethod
    def _clamp_timeout(cls, v: Any, info: ValidationInfo) -> Any:
        return _clamp_setting(cls, "includes", v, info)


class ValidationConfig(BaseModel):
    """Structurizr validation gate."""

    enabled: bool = Field(default=False, description="Validate Structurizr files before rendering")
    server_url: str = Field(default="http://localhost:8080", description="Structurizr server URL")
    timeout: float = Field(default=30.0, description="Request timeout in seconds")

    @field_validator("server_url", mode="before")
    @classmethod
    def _check_server_url(cls, v: Any) -> str:
        return _valid_url(v, name="validation.server_url", default="http://localhost:8080")

    @field_validator("timeout", mode="before")
    @classmethod
    def _clamp_timeout(cls, v: Any, info: ValidationInfo) -> Any:
        return _clamp_setting(cls, "validation", v, info)


# ==================== Root Configuration ====================


class DiagramRenderConfig(BaseModel):
    """Root configuration for a render run."""

    version: int = Field(default=CURRENT_CONFIG_VERSION, description="Config schema version")
    log_level: str = Field(default="INFO", description="Logging level")
    source_dir: str = Field(default=DEFAULT_SOURCE_DIR, description="Diagram source root")
    output_dir: str = Field(default=DEFAULT_OUTPUT_DIR, description="Rendered output root")
    concurrency: int = Field(default=5, description="Concurrent renders per batch (1-50)")
    cache_size: int = Field(default=50, description="Render cache capacity (1-1000)")
    extensions: list[str] | None = Field(
        default=None,
        description="Accepted source extensions (defaults to every known extension)",
    )
    backends: BackendsConfig = Field(default_factory=BackendsConfig)
    includes: IncludesConfig = Field(default_factory=IncludesConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)

    _config_dir: Path | None = PrivateAttr(default=None)

    @field_validator("concurrency", mode="before")
    @classmethod
    def _clamp_concurrency(cls, v: Any) -> int:
        return _clamp_int(v, name="concurrency", default=5, low=1, high=50)

    @field_validator("cache_size", mode="before")
    @classmethod
    def _clamp_cache_size(cls, v: Any) -> int:
        return _clamp_int(v, name="cache_size", default=50, low=1, high=1000)

    @field_validator("source_dir", "output_dir", mode="before")
    @classmethod
    def _non_empty_dir(cls, v: Any, info: ValidationInfo) -> str:
        default = DEFAULT_SOURCE_DIR if info.field_name == "source_dir" else DEFAULT_OUTPUT_DIR
        if not isinstance(v, str) or not v.strip():
            logger.warning(f"Invalid {info.field_name} {v!r}, using {default}")
            return default
        return v.strip()

    @field_validator("log_level", mode="before")
    @classmethod
    def _check_log_level(cls, v: Any) -> str:
        levels = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
        if isinstance(v, str) and v.upper() in levels:
            return v.upper()
        logger.warning(f"Invalid log_level {v!r}, using INFO")
        return "INFO"

    @property
    def project_dir(self) -> Path:
        """Directory relative paths resolve against.

        A project config (<root>/.diagrender/diagrender.yaml) resolves against
        <root>, a standalone config file against its own directory, and the
        global config or no config against the effective cwd.
        """
        config_dir = self._config_dir
        if config_dir is None or config_dir == get_global_dir().resolve():
            return get_effective_cwd()
        if config_dir.name == PROJECT_DIR_NAME:
            return config_dir.parent
        return config_dir

    def get_source_path(self) -> Path:
        return resolve_project_path(self.source_dir, self.project_dir)

    def get_output_path(self) -> Path:
        return resolve_project_path(self.output_dir, self.project_dir)


def _resolve_config_path(config_path: Path | str | None) -> Path | None:
    """Resolve config path from explicit path, env var, or default locations.

    Resolution order:
    1. Explicit config_path if provided
    2. DIAGRENDER_CONFIG env var
    3. cwd/.diagrender/diagrender.yaml
    4. ~/.diagrender/diagrender.yaml
    5. None (use defaults)
    """
    if config_path is not None:
        return Path(config_path)

    env_config = os.getenv("DIAGRENDER_CONFIG")
    if env_config:
        return Path(env_config)

    project_config = get_project_dir() / CONFIG_FILE_NAME
    if project_config.exists():
        return project_config

    global_config = get_global_dir() / CONFIG_FILE_NAME
    if global_config.exists():
        return global_config

    return None


def _load_yaml_file(config_path: Path) -> dict[str, Any]:
    """Load and parse YAML file with error handling.

    Raises:
        FileNotFoundError: If file doesn't exist.
        ValueError: If YAML is invalid or file can't be read.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with config_path.open() as f:
            bound_loader = IncludeLoader.with_base_path(config_path.parent)
            raw_data = yaml.load(f, Loader=bound_loader)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ValueError(f"Error reading {config_path}: {e}") from e

    if raw_data is None:
        return {}
    if not isinstance(raw_data, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")
    return raw_data


def _expand_secrets_recursive(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: _expand_secrets_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_secrets_recursive(v) for v in data]
    elif isinstance(data, str):
        return expand_secrets(data)
    return data


def _validate_version(data: dict[str, Any], config_path: Path) -> None:
    config_version = data.get("version")
    if config_version is None:
        data["version"] = CURRENT_CONFIG_VERSION
    elif not isinstance(config_version, int) or config_version > CURRENT_CONFIG_VERSION:
        raise ValueError(
            f"Config version {config_version} in {config_path} is not supported. "
            f"Maximum supported version is {CURRENT_CONFIG_VERSION}."
        )


def load_config(config_path: Path | str | None = None) -> DiagramRenderConfig:
    """Load diagrender configuration from YAML file.

    Args:
        config_path: Path to config file (overrides resolution)

    Returns:
        Validated DiagramRenderConfig

    Raises:
        FileNotFoundError: If explicit config path doesn't exist
        ValueError: If YAML is invalid or validation fails
    """
    resolved_path = _resolve_config_path(config_path)

    if resolved_path is None:
        logger.debug("No config file found, using defaults")
        return DiagramRenderConfig()

    logger.debug(f"Loading config from {resolved_path}")

    raw_data = _load_yaml_file(resolved_path)
    expanded_data = _expand_secrets_recursive(raw_data)
    _validate_version(expanded_data, resolved_path)

    try:
        config = DiagramRenderConfig.model_validate(expanded_data)
    except Exception as e:
        raise ValueError(f"Invalid configuration in {resolved_path}: {e}") from e

    config._config_dir = resolved_path.parent.resolve()
    logger.debug(f"Config loaded: version {config.version}")
    return config


_config: DiagramRenderConfig | None = None


def get_config(
    config_path: Path | str | None = None, reload: bool = False
) -> DiagramRenderConfig:
    """Get or load the process-wide configuration.

    Args:
        config_path: Path to config file (only used on first load)
        reload: Force reload configuration
    """
    global _config

    if _config is None or reload:
        _config = load_config(config_path)

    return _config
