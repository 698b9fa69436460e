"""Writing rendered images into the output tree."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles
import aiofiles.os

from diagrender.logging import component_logger
from diagrender.models import DiagramFile, OutputFormat, RenderOutput

if TYPE_CHECKING:
    from loguru import Logger


def output_path_for(file: DiagramFile, output_root: Path, extension: str) -> Path:
    """Mirror the source's relative directory and swap in ``extension``."""
    return output_root / file.relative_path.with_suffix(extension)


class OutputWriter:
    """Persist render results, overwriting any existing file."""

    def __init__(self, logger: Logger | None = None) -> None:
        self._log = logger or component_logger("output")

    async def write(self, file: DiagramFile, output: RenderOutput, output_root: Path) -> list[Path]:
        """Write the primary image and any extra views.

        Extra views land beside the primary image as ``<stem>-<view><ext>``.

        Returns:
            Paths written, primary image first
        """
        target = output_path_for(file, output_root, output.extension)
        await aiofiles.os.makedirs(target.parent, exist_ok=True)

        written = [await self._write_one(target, output.content, output.format)]
        for view, content in output.views.items():
            view_target = target.with_name(f"{target.stem}-{view}{output.extension}")
            written.append(await self._write_one(view_target, content, output.format))
        return written

    async def _write_one(self, target: Path, content: bytes, fmt: OutputFormat) -> Path:
        if fmt is OutputFormat.SVG:
            async with aiofiles.open(target, "w", encoding="utf-8") as f:
                await f.write(content.decode("utf-8"))
        else:
            async with aiofiles.open(target, "wb") as f:
                await f.write(content)
        self._log.debug(f"Wrote {target}")
        return target
