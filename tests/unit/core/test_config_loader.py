"""Unit tests for config loader."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml


@pytest.fixture(autouse=True)
def _fresh_secrets():
    from diagrender.config.secrets import reset_secrets

    reset_secrets()
    yield
    reset_secrets()


@pytest.mark.unit
@pytest.mark.core
def test_load_config_defaults() -> None:
    """Config has documented defaults when nothing is configured."""
    from diagrender.config.loader import DiagramRenderConfig

    config = DiagramRenderConfig()

    assert config.version == 1
    assert config.log_level == "INFO"
    assert config.source_dir == "docs/03_architecture/diagrams/src"
    assert config.output_dir == "docs/03_architecture/diagrams/out"
    assert config.concurrency == 5
    assert config.cache_size == 50
    assert config.validation.enabled is False
    assert config.validation.server_url == "http://localhost:8080"
    assert config.includes.timeout == 10.0
    assert config.backends.kroki.rate_limit_ms == 500
    assert config.backends.structurizr_pipeline.kroki_url == "http://localhost:8000"


@pytest.mark.unit
@pytest.mark.core
def test_load_config_from_yaml(tmp_path: Path) -> None:
    """Config loads from YAML file."""
    from diagrender.config.loader import load_config
    from diagrender.models import DiagramType

    config_path = tmp_path / "diagrender.yaml"
    config_path.write_text(
        yaml.dump(
            {
                "version": 1,
                "log_level": "debug",
                "concurrency": 8,
                "backends": {
                    "order": ["kroki"],
                    "kroki": {"endpoint": "http://kroki.internal:8000/", "types": ["mermaid"]},
                },
            }
        )
    )

    config = load_config(config_path)

    assert config.log_level == "DEBUG"
    assert config.concurrency == 8
    assert config.backends.order == ["kroki"]
    assert config.backends.kroki.endpoint == "http://kroki.internal:8000"
    assert config.backends.kroki.types == [DiagramType.MERMAID]


@pytest.mark.unit
@pytest.mark.core
@pytest.mark.parametrize(
    ("raw", "expected"),
    [(0, 1), (-3, 1), (51, 50), (500, 50), (7.9, 7), ("12", 12), ("lots", 5)],
)
def test_concurrency_is_clamped(raw: object, expected: int) -> None:
    """Out-of-range concurrency is clamped to [1, 50], garbage falls back to 5."""
    from diagrender.config.loader import DiagramRenderConfig

    assert DiagramRenderConfig(concurrency=raw).concurrency == expected


@pytest.mark.unit
@pytest.mark.core
def test_cache_size_is_clamped() -> None:
    from diagrender.config.loader import DiagramRenderConfig

    assert DiagramRenderConfig(cache_size=0).cache_size == 1
    assert DiagramRenderConfig(cache_size=5000).cache_size == 1000
    assert DiagramRenderConfig(cache_size=None).cache_size == 50


@pytest.mark.unit
@pytest.mark.core
def test_backend_numbers_are_clamped() -> None:
    """Out-of-range timeouts and delays are clamped, garbage falls back to the default."""
    from diagrender.config.loader import DiagramRenderConfig

    config = DiagramRenderConfig.model_validate(
        {
            "backends": {
                "kroki": {"timeout": 0, "rate_limit_ms": -5},
                "plantuml_jar": {"timeout": 10_000},
                "mermaid_cli": {"timeout": "soon"},
                "structurizr_pipeline": {"warmup_seconds": -1, "stage_timeout": 5000},
            },
            "includes": {"timeout": 999},
            "validation": {"timeout": "nan"},
        }
    )

    assert config.backends.kroki.timeout == 1.0
    assert config.backends.kroki.rate_limit_ms == 0
    assert config.backends.plantuml_jar.timeout == 300.0
    assert config.backends.mermaid_cli.timeout == 60.0
    assert config.backends.structurizr_pipeline.warmup_seconds == 0.0
    assert config.backends.structurizr_pipeline.stage_timeout == 600.0
    assert config.includes.timeout == 60.0
    assert config.validation.timeout == 30.0


@pytest.mark.unit
@pytest.mark.core
def test_load_config_clamps_instead_of_failing(tmp_path: Path) -> None:
    """A zero timeout or negative rate limit in YAML loads with clamped values."""
    from diagrender.config.loader import load_config

    config_path = tmp_path / "diagrender.yaml"
    config_path.write_text(
        yaml.dump({"backends": {"kroki": {"timeout": 0, "rate_limit_ms": -5}}})
    )

    config = load_config(config_path)

    assert config.backends.kroki.timeout == 1.0
    assert config.backends.kroki.rate_limit_ms == 0


@pytest.mark.unit
@pytest.mark.core
def test_invalid_urls_fall_back_to_defaults() -> None:
    """URLs without an http(s) scheme are replaced by the default."""
    from diagrender.config.loader import DiagramRenderConfig

    config = DiagramRenderConfig.model_validate(
        {
            "validation": {"server_url": "localhost:8080"},
            "backends": {"kroki": {"endpoint": "ftp://kroki.io"}},
        }
    )

    assert config.validation.server_url == "http://localhost:8080"
    assert config.backends.kroki.endpoint == "https://kroki.io"


@pytest.mark.unit
@pytest.mark.core
def test_empty_directories_fall_back_to_defaults() -> None:
    from diagrender.config.loader import DiagramRenderConfig

    config = DiagramRenderConfig(source_dir="  ", output_dir="")

    assert config.source_dir == "docs/03_architecture/diagrams/src"
    assert config.output_dir == "docs/03_architecture/diagrams/out"


@pytest.mark.unit
@pytest.mark.core
def test_unknown_backends_dropped_from_order() -> None:
    from diagrender.config.loader import BackendsConfig

    config = BackendsConfig(order=["kroki", "graphviz_local", "kroki", "mermaid_browser"])

    assert config.order == ["kroki", "mermaid_browser"]


@pytest.mark.unit
@pytest.mark.core
def test_secrets_expansion(tmp_path: Path) -> None:
    """${VAR} expands from the project secrets.yaml, not os.environ."""
    from diagrender.config.loader import load_config

    project_dir = tmp_path / ".diagrender"
    project_dir.mkdir()
    (project_dir / "secrets.yaml").write_text(yaml.dump({"KROKI_TOKEN": "s3cret"}))
    config_path = project_dir / "diagrender.yaml"
    config_path.write_text(
        yaml.dump(
            {
                "version": 1,
                "backends": {
                    "kroki": {"auth": {"type": "bearer", "credentials": "${KROKI_TOKEN}"}}
                },
            }
        )
    )

    with patch.dict(os.environ, {"DIAGRENDER_CWD": str(tmp_path), "KROKI_TOKEN": "from-env"}):
        config = load_config(config_path)

    assert config.backends.kroki.auth.type == "bearer"
    assert config.backends.kroki.auth.credentials == "s3cret"


@pytest.mark.unit
@pytest.mark.core
def test_secrets_expansion_default_value(tmp_path: Path) -> None:
    """${VAR:-default} uses default when variable not in secrets."""
    from diagrender.config.loader import load_config

    config_path = tmp_path / "diagrender.yaml"
    config_path.write_text(yaml.dump({"output_dir": "${NONEXISTENT_VAR:-build/diagrams}"}))

    with patch.dict(os.environ, {"DIAGRENDER_CWD": str(tmp_path)}):
        config = load_config(config_path)

    assert config.output_dir == "build/diagrams"


@pytest.mark.unit
@pytest.mark.core
def test_secrets_expansion_error_on_missing(tmp_path: Path) -> None:
    """${VAR} without default raises error when not in secrets."""
    from diagrender.config.loader import load_config

    config_path = tmp_path / "diagrender.yaml"
    config_path.write_text(yaml.dump({"output_dir": "${MISSING_VAR}/out"}))

    with (
        patch.dict(os.environ, {"DIAGRENDER_CWD": str(tmp_path)}),
        pytest.raises(ValueError, match=r"Missing variables in secrets\.yaml"),
    ):
        load_config(config_path)


@pytest.mark.unit
@pytest.mark.core
def test_include_tag_loads_sibling_file(tmp_path: Path) -> None:
    from diagrender.config.loader import load_config

    (tmp_path / "validation.yaml").write_text(
        yaml.dump({"enabled": True, "server_url": "http://structurizr:8080"})
    )
    config_path = tmp_path / "diagrender.yaml"
    config_path.write_text("version: 1\nvalidation: !include validation.yaml\n")

    config = load_config(config_path)

    assert config.validation.enabled is True
    assert config.validation.server_url == "http://structurizr:8080"


@pytest.mark.unit
@pytest.mark.core
def test_version_validation(tmp_path: Path) -> None:
    """Future versions rejected with helpful error."""
    from diagrender.config.loader import load_config

    config_path = tmp_path / "diagrender.yaml"
    config_path.write_text(yaml.dump({"version": 999}))

    with pytest.raises(ValueError, match="version 999"):
        load_config(config_path)


@pytest.mark.unit
@pytest.mark.core
def test_invalid_yaml_error(tmp_path: Path) -> None:
    """Invalid YAML shows error."""
    from diagrender.config.loader import load_config

    config_path = tmp_path / "diagrender.yaml"
    config_path.write_text("invalid: yaml: content: ::::")

    with pytest.raises(ValueError, match="Invalid YAML"):
        load_config(config_path)


@pytest.mark.unit
@pytest.mark.core
def test_missing_explicit_config_raises(tmp_path: Path) -> None:
    from diagrender.config.loader import load_config

    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


@pytest.mark.unit
@pytest.mark.core
def test_config_resolution_prefers_env_var(tmp_path: Path) -> None:
    from diagrender.config.loader import _resolve_config_path

    env_config = tmp_path / "custom.yaml"
    with patch.dict(os.environ, {"DIAGRENDER_CONFIG": str(env_config)}):
        assert _resolve_config_path(None) == env_config
        assert _resolve_config_path(tmp_path / "explicit.yaml") == tmp_path / "explicit.yaml"


@pytest.mark.unit
@pytest.mark.core
def test_project_config_resolves_paths_against_project_root(tmp_path: Path) -> None:
    """A .diagrender/diagrender.yaml resolves relative dirs against its parent."""
    from diagrender.config.loader import load_config

    project_dir = tmp_path / ".diagrender"
    project_dir.mkdir()
    (project_dir / "diagrender.yaml").write_text(yaml.dump({"source_dir": "diagrams"}))

    with patch.dict(os.environ, {"DIAGRENDER_CWD": str(tmp_path)}):
        os.environ.pop("DIAGRENDER_CONFIG", None)
        config = load_config()

    assert config.get_source_path() == tmp_path.resolve() / "diagrams"
    assert config.get_output_path() == tmp_path.resolve() / "docs/03_architecture/diagrams/out"


@pytest.mark.unit
@pytest.mark.core
def test_get_config_caches_until_reload(tmp_path: Path) -> None:
    """get_config returns the same instance until reload is requested."""
    from diagrender.config import get_config

    config_path = tmp_path / "diagrender.yaml"
    config_path.write_text(yaml.dump({"concurrency": 3}))

    first = get_config(config_path, reload=True)
    config_path.write_text(yaml.dump({"concurrency": 9}))

    assert get_config() is first
    assert get_config(config_path, reload=True).concurrency == 9
