"""Path resolution for diagrender project and global directories.

- Global: ~/.diagrender/ for user-wide settings and secrets
- Project: <cwd>/.diagrender/ for project-specific config
"""

from __future__ import annotations

import os
from pathlib import Path

GLOBAL_DIR_NAME = ".diagrender"
PROJECT_DIR_NAME = ".diagrender"
CONFIG_FILE_NAME = "diagrender.yaml"
SECRETS_FILE_NAME = "secrets.yaml"


def get_effective_cwd() -> Path:
    """Get the effective working directory.

    Returns DIAGRENDER_CWD if set, else Path.cwd().

    Returns:
        Resolved Path for working directory
    """
    env_cwd = os.getenv("DIAGRENDER_CWD")
    if env_cwd:
        return Path(env_cwd).resolve()
    return Path.cwd()


def get_global_dir() -> Path:
    """Get the global diagrender directory path (not necessarily existing)."""
    return Path.home() / GLOBAL_DIR_NAME


def get_project_dir(start: Path | None = None) -> Path:
    """Get the project diagrender directory (not necessarily existing)."""
    return (start or get_effective_cwd()) / PROJECT_DIR_NAME


def resolve_project_path(path: str | Path, base: Path | None = None) -> Path:
    """Resolve a possibly relative path against the project directory.

    Args:
        path: Absolute path or path relative to the project root
        base: Project root (defaults to effective cwd)

    Returns:
        Absolute Path
    """
    candidate = Path(path).expanduser()
    if candidate.is_absolute():
        return candidate
    return (base or get_effective_cwd()) / candidate
