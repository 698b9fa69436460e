"""Discovery of diagram sources under a root directory."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from diagrender.classify import AMBIGUOUS_EXTENSIONS, EXTENSION_MAP, Classifier
from diagrender.logging import component_logger
from diagrender.models import DiagramFile, SkippedFile

if TYPE_CHECKING:
    from loguru import Logger

UNSUPPORTED_REASON = "Unsupported diagram type"

# Directory names never descended into, in addition to hidden ones
IGNORED_DIRS = frozenset({"node_modules", "__pycache__"})


def _is_ignored(relative: Path) -> bool:
    """Hidden path parts (.git, .diagrender, dotfiles) and IGNORED_DIRS are skipped."""
    return any(part.startswith(".") or part in IGNORED_DIRS for part in relative.parts)


def default_extensions() -> frozenset[str]:
    return frozenset(EXTENSION_MAP) | AMBIGUOUS_EXTENSIONS


def _normalize_extensions(extensions: Iterable[str] | None) -> frozenset[str]:
    if extensions is None:
        return default_extensions()
    normalized = set()
    for ext in extensions:
        ext = ext.strip().lower()
        if ext:
            normalized.add(ext if ext.startswith(".") else f".{ext}")
    return frozenset(normalized)


@dataclass
class ScanResult:
    files: list[DiagramFile] = field(default_factory=list)
    unclassified: list[SkippedFile] = field(default_factory=list)


class FileScanner:
    """Walk a directory tree and type every accepted file.

    Files with a known extension are typed from the extension table. Files
    with an accepted but unknown extension go through the classifier, which
    may sniff content or prompt; files it cannot type are reported as
    unclassified rather than returned.
    """

    def __init__(self, classifier: Classifier | None = None, logger: Logger | None = None) -> None:
        self.classifier = classifier or Classifier()
        self._log = logger or component_logger("scanner")

    def scan(self, root: Path | str, extensions: Iterable[str] | None = None) -> list[DiagramFile]:
        """Return the typed diagram files under ``root``.

        A missing or non-directory root yields an empty list.
        """
        return self.scan_tree(root, extensions).files

    def scan_tree(self, root: Path | str, extensions: Iterable[str] | None = None) -> ScanResult:
        root = Path(root)
        result = ScanResult()
        if not root.is_dir():
            self._log.debug(f"Scan root missing or not a directory: {root}")
            return result

        accepted = _normalize_extensions(extensions)
        for path in sorted(p for p in root.rglob("*") if p.is_file()):
            relative = path.relative_to(root)
            if path.suffix.lower() not in accepted or _is_ignored(relative):
                continue
            diagram_type = self.classifier.classify(path, display_name=relative.as_posix())
            if diagram_type is None:
                result.unclassified.append(
                    SkippedFile(file=relative.as_posix(), reason=UNSUPPORTED_REASON)
                )
                continue
            result.files.append(
                DiagramFile(absolute_path=path.resolve(), relative_path=relative, type=diagram_type)
            )

        self._log.info(
            f"Found {len(result.files)} diagram file(s) in {root}"
            + (f", {len(result.unclassified)} unclassified" if result.unclassified else "")
        )
        return result
