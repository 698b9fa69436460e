"""Secrets loading for diagrender.

Secrets live in secrets.yaml (gitignored) beside the config file, separate
from committed configuration. They are referenced from the config with
``${NAME}`` or ``${NAME:-default}``, typically for Kroki credentials.

Example secrets.yaml:

    KROKI_TOKEN: "eyJhbGciOi..."
    KROKI_BASIC: "user:password"

Search order: project (.diagrender/secrets.yaml), then global
(~/.diagrender/secrets.yaml).
"""

from __future__ import annotations

import re
from pathlib import Path

import yaml
from loguru import logger

from diagrender.paths import SECRETS_FILE_NAME, get_global_dir, get_project_dir

_SECRET_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

# Loaded once per process unless reset
_secrets: dict[str, str] | None = None


def load_secrets(secrets_path: Path | str | None = None) -> dict[str, str]:
    """Load secrets from a YAML file.

    Args:
        secrets_path: Path to secrets file. Missing file yields no secrets.

    Returns:
        Dictionary of secret name -> value

    Raises:
        ValueError: If YAML is invalid or not a mapping
    """
    if secrets_path is None:
        return {}

    secrets_path = Path(secrets_path)
    if not secrets_path.exists():
        logger.debug(f"Secrets file not found: {secrets_path}")
        return {}

    try:
        with secrets_path.open() as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in secrets file {secrets_path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Secrets file must be a mapping: {secrets_path}")

    secrets = {str(k): str(v) for k, v in raw.items() if v is not None}
    logger.debug(f"Loaded {len(secrets)} secrets from {secrets_path}")
    return secrets


def _default_secrets() -> dict[str, str]:
    global _secrets

    if _secrets is None:
        merged: dict[str, str] = {}
        for directory in (get_global_dir(), get_project_dir()):
            merged.update(load_secrets(directory / SECRETS_FILE_NAME))
        _secrets = merged
    return _secrets


def reset_secrets() -> None:
    """Forget cached secrets so the next lookup reloads them."""
    global _secrets
    _secrets = None


def get_secret(name: str) -> str | None:
    return _default_secrets().get(name)


def expand_secrets(value: str, secrets: dict[str, str] | None = None) -> str:
    """Expand ${VAR} patterns from secrets.yaml.

    Supports ${VAR_NAME} and ${VAR_NAME:-default}. Environment variables are
    not consulted.

    Args:
        value: String potentially containing ${VAR} patterns
        secrets: Explicit secrets mapping (defaults to secrets.yaml lookup)

    Returns:
        String with variables expanded

    Raises:
        ValueError: If a variable is missing and has no default
    """
    lookup = secrets if secrets is not None else _default_secrets()
    missing: list[str] = []

    def replace(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        if name in lookup:
            return lookup[name]
        if default is not None:
            return default
        missing.append(name)
        return match.group(0)

    result = _SECRET_PATTERN.sub(replace, value)
    if missing:
        raise ValueError(
            f"Missing variables in secrets.yaml: {', '.join(missing)}. "
            "Add them to .diagrender/secrets.yaml or use ${VAR:-default} syntax."
        )
    return result
