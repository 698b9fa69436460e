"""Unit tests for output writing."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest


def _file(relative: str):
    from diagrender.models import DiagramFile, DiagramType

    return DiagramFile(
        absolute_path=Path("/src") / relative,
        relative_path=Path(relative),
        type=DiagramType.STRUCTURIZR,
    )


@pytest.mark.unit
@pytest.mark.core
def test_output_path_mirrors_source_tree() -> None:
    from diagrender.output import output_path_for

    assert output_path_for(_file("c4/context.dsl"), Path("/out"), ".svg") == Path(
        "/out/c4/context.svg"
    )
    assert output_path_for(_file("flow.mmd"), Path("/out"), ".png") == Path("/out/flow.png")


@pytest.mark.unit
@pytest.mark.core
def test_write_svg_creates_directories(tmp_path: Path) -> None:
    from diagrender.models import RenderOutput
    from diagrender.output import OutputWriter

    written = asyncio.run(
        OutputWriter().write(_file("deep/nested/a.dsl"), RenderOutput(b"<svg>a</svg>"), tmp_path)
    )

    target = tmp_path / "deep" / "nested" / "a.svg"
    assert written == [target]
    assert target.read_text(encoding="utf-8") == "<svg>a</svg>"


@pytest.mark.unit
@pytest.mark.core
def test_write_overwrites_existing(tmp_path: Path) -> None:
    from diagrender.models import RenderOutput
    from diagrender.output import OutputWriter

    target = tmp_path / "a.svg"
    target.write_text("stale")

    asyncio.run(OutputWriter().write(_file("a.dsl"), RenderOutput(b"<svg>fresh</svg>"), tmp_path))

    assert target.read_text() == "<svg>fresh</svg>"


@pytest.mark.unit
@pytest.mark.core
def test_write_png_as_bytes(tmp_path: Path) -> None:
    from diagrender.models import OutputFormat, RenderOutput
    from diagrender.output import OutputWriter

    png = b"\x89PNG\r\n\x1a\n\x00\x01binary"

    written = asyncio.run(
        OutputWriter().write(_file("a.mmd"), RenderOutput(png, OutputFormat.PNG), tmp_path)
    )

    assert written == [tmp_path / "a.png"]
    assert (tmp_path / "a.png").read_bytes() == png


@pytest.mark.unit
@pytest.mark.core
def test_write_additional_views(tmp_path: Path) -> None:
    """Extra views land beside the primary image as <stem>-<view>.svg."""
    from diagrender.models import RenderOutput
    from diagrender.output import OutputWriter

    output = RenderOutput(
        b"<svg>context</svg>",
        views={"Containers": b"<svg>containers</svg>", "Components": b"<svg>components</svg>"},
    )

    written = asyncio.run(OutputWriter().write(_file("c4/system.dsl"), output, tmp_path))

    assert written == [
        tmp_path / "c4" / "system.svg",
        tmp_path / "c4" / "system-Containers.svg",
        tmp_path / "c4" / "system-Components.svg",
    ]
    assert (tmp_path / "c4" / "system-Containers.svg").read_text() == "<svg>containers</svg>"
