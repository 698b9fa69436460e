"""Unit tests for the PlantUML server backend."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

SOURCE = "@startuml\nAlice -> Bob\n@enduml\n"


def _file():
    from diagrender.models import DiagramFile, DiagramType

    return DiagramFile(Path("/src/seq.puml"), Path("seq.puml"), DiagramType.PLANTUML)


def _backend(handler):
    from diagrender.backends.plantuml_server import PlantUmlServerBackend
    from diagrender.config.loader import PlantUmlServerConfig

    return PlantUmlServerBackend(
        PlantUmlServerConfig(endpoint="http://plantuml.local:8080/plantuml"),
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.unit
@pytest.mark.backends
def test_supports_plantuml_family_only() -> None:
    from diagrender.models import DiagramType

    backend = _backend(lambda r: httpx.Response(200))

    assert backend.supports(DiagramType.PLANTUML)
    assert backend.supports(DiagramType.C4PLANTUML)
    assert not backend.supports(DiagramType.MERMAID)


@pytest.mark.unit
@pytest.mark.backends
def test_render_requests_encoded_svg() -> None:
    from diagrender.backends.encoding import decode_plantuml

    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200, content=b"<svg>ok</svg>")

    output = asyncio.run(_backend(handler).render(_file(), SOURCE))

    assert output.content == b"<svg>ok</svg>"
    prefix = "/plantuml/svg/"
    assert seen[0].startswith(prefix)
    assert decode_plantuml(seen[0][len(prefix) :]) == SOURCE


@pytest.mark.unit
@pytest.mark.backends
def test_render_non_200_fails() -> None:
    from diagrender.errors import BackendHTTPError

    with pytest.raises(BackendHTTPError, match="Server error \\(500\\)"):
        asyncio.run(_backend(lambda r: httpx.Response(500)).render(_file(), SOURCE))


@pytest.mark.unit
@pytest.mark.backends
def test_render_non_svg_fails() -> None:
    from diagrender.errors import InvalidOutputError

    backend = _backend(lambda r: httpx.Response(200, text="Internal error page"))

    with pytest.raises(InvalidOutputError):
        asyncio.run(backend.render(_file(), SOURCE))


@pytest.mark.unit
@pytest.mark.backends
def test_any_response_means_available() -> None:
    """Even an error status proves the server is listening."""
    state = asyncio.run(_backend(lambda r: httpx.Response(404)).is_available())

    assert state.available is True


@pytest.mark.unit
@pytest.mark.backends
def test_unreachable_server_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    state = asyncio.run(_backend(handler).is_available())

    assert state.available is False
    assert "http://plantuml.local:8080/plantuml" in state.message
