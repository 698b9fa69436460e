"""Unit tests for the Kroki backend."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

SVG = b'<?xml version="1.0"?><svg xmlns="http://www.w3.org/2000/svg"></svg>'


def _file(name: str = "flow.mmd", kind: str = "mermaid"):
    from diagrender.models import DiagramFile, DiagramType

    return DiagramFile(Path("/src") / name, Path(name), DiagramType(kind))


def _backend(handler, **config):
    from diagrender.backends.kroki import KrokiBackend
    from diagrender.config.loader import KrokiConfig

    cfg = KrokiConfig(rate_limit_ms=0, **config)
    return KrokiBackend(cfg, transport=httpx.MockTransport(handler))


@pytest.mark.unit
@pytest.mark.backends
def test_auth_headers() -> None:
    from diagrender.backends.kroki import auth_headers

    assert auth_headers("none", "x") == {}
    assert auth_headers("bearer", "") == {}
    assert auth_headers("bearer", "tok") == {"Authorization": "Bearer tok"}
    assert auth_headers("basic", "user:pass") == {"Authorization": "Basic dXNlcjpwYXNz"}
    assert auth_headers("basic", "dXNlcjpwYXNz") == {"Authorization": "Basic dXNlcjpwYXNz"}


@pytest.mark.unit
@pytest.mark.backends
def test_build_url() -> None:
    from diagrender.backends.encoding import decode_kroki
    from diagrender.models import DiagramType

    backend = _backend(lambda r: httpx.Response(200), endpoint="https://kroki.example.com/")

    url = backend.build_url(DiagramType.GRAPHVIZ, "digraph { a -> b }")

    prefix = "https://kroki.example.com/graphviz/svg/"
    assert url.startswith(prefix)
    assert decode_kroki(url[len(prefix) :]) == "digraph { a -> b }"


@pytest.mark.unit
@pytest.mark.backends
def test_supported_types_follow_config() -> None:
    from diagrender.models import DiagramType, Lane

    backend = _backend(lambda r: httpx.Response(200))
    limited = _backend(lambda r: httpx.Response(200), types=["mermaid", "d2"])

    assert backend.lane is Lane.CONCURRENT
    assert backend.supports(DiagramType.PLANTUML)
    assert not backend.supports(DiagramType.STRUCTURIZR)
    assert limited.supports(DiagramType.D2)
    assert not limited.supports(DiagramType.PLANTUML)


@pytest.mark.unit
@pytest.mark.backends
def test_render_success_sends_auth() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=SVG)

    backend = _backend(handler, auth={"type": "bearer", "credentials": "tok"})

    output = asyncio.run(backend.render(_file(), "graph TD\n A-->B"))

    assert output.content == SVG
    assert output.extension == ".svg"
    assert seen[0].headers["Authorization"] == "Bearer tok"
    assert seen[0].url.path.startswith("/mermaid/svg/")


@pytest.mark.unit
@pytest.mark.backends
@pytest.mark.parametrize(
    ("status", "kind"), [(400, "Client error (400)"), (503, "Server error (503)")]
)
def test_render_http_error(status: int, kind: str) -> None:
    from diagrender.errors import BackendHTTPError

    backend = _backend(lambda r: httpx.Response(status, text="Syntax error in graph"))

    with pytest.raises(BackendHTTPError) as exc_info:
        asyncio.run(backend.render(_file(), "graph TD\n A-->"))

    assert exc_info.value.status_code == status
    assert str(exc_info.value) == f"{kind}: Syntax error in graph"
    assert exc_info.value.backend == "kroki"
    assert exc_info.value.diagram_type == "mermaid"


@pytest.mark.unit
@pytest.mark.backends
def test_render_rejects_non_svg_body() -> None:
    from diagrender.errors import InvalidOutputError

    backend = _backend(lambda r: httpx.Response(200, text="<html>maintenance</html>"))

    with pytest.raises(InvalidOutputError, match="not valid SVG"):
        asyncio.run(backend.render(_file(), "graph TD\n A-->B"))


@pytest.mark.unit
@pytest.mark.backends
def test_render_png_checks_signature() -> None:
    from diagrender.errors import InvalidOutputError
    from diagrender.models import DiagramType, OutputFormat

    png = b"\x89PNG\r\n\x1a\nrest"
    good = _backend(lambda r: httpx.Response(200, content=png), output_format="png")
    bad = _backend(lambda r: httpx.Response(200, content=SVG), output_format="png")

    output = asyncio.run(good.render(_file(), "graph TD\n A-->B"))

    assert output.format is OutputFormat.PNG
    assert "/mermaid/png/" in good.build_url(DiagramType.MERMAID, "x")
    with pytest.raises(InvalidOutputError, match="not valid PNG"):
        asyncio.run(bad.render(_file(), "graph TD\n A-->B"))


@pytest.mark.unit
@pytest.mark.backends
def test_render_follows_redirects() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "kroki.io":
            return httpx.Response(302, headers={"Location": "https://mirror.kroki.io/x"})
        return httpx.Response(200, content=SVG)

    backend = _backend(handler)

    assert asyncio.run(backend.render(_file(), "graph TD\n A-->B")).content == SVG


@pytest.mark.unit
@pytest.mark.backends
def test_render_redirect_loop_fails() -> None:
    """More than five hops is an error."""
    from diagrender.errors import BackendError

    hops: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        hops.append(str(request.url))
        return httpx.Response(301, headers={"Location": f"/hop/{len(hops)}"})

    backend = _backend(handler)

    with pytest.raises(BackendError, match="Too many redirects"):
        asyncio.run(backend.render(_file(), "graph TD\n A-->B"))
    assert len(hops) == 6


@pytest.mark.unit
@pytest.mark.backends
def test_render_redirect_without_location() -> None:
    from diagrender.errors import BackendError

    backend = _backend(lambda r: httpx.Response(307))

    with pytest.raises(BackendError, match="without Location"):
        asyncio.run(backend.render(_file(), "graph TD\n A-->B"))


@pytest.mark.unit
@pytest.mark.backends
def test_render_connection_error() -> None:
    from diagrender.errors import BackendError

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    backend = _backend(handler)

    with pytest.raises(BackendError, match="timed out"):
        asyncio.run(backend.render(_file(), "graph TD\n A-->B"))


@pytest.mark.unit
@pytest.mark.backends
@pytest.mark.parametrize(("status", "available"), [(200, True), (404, True), (502, False)])
def test_is_available(status: int, available: bool) -> None:
    from diagrender.models import DiagramType

    backend = _backend(lambda r: httpx.Response(status))

    state = asyncio.run(backend.is_available())

    assert state.available is available
    assert (DiagramType.MERMAID in state.supported_types) is available


@pytest.mark.unit
@pytest.mark.backends
def test_is_available_unreachable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    state = asyncio.run(_backend(handler).is_available())

    assert state.available is False
    assert "unreachable" in state.message


@pytest.mark.unit
@pytest.mark.backends
def test_requests_are_rate_limited() -> None:
    """Calls through the backend are spaced by rate_limit_ms."""
    import time

    from diagrender.backends.kroki import KrokiBackend
    from diagrender.config.loader import KrokiConfig

    starts: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        starts.append(time.monotonic())
        return httpx.Response(200, content=SVG)

    backend = KrokiBackend(KrokiConfig(rate_limit_ms=40), transport=httpx.MockTransport(handler))

    async def run() -> None:
        await asyncio.gather(*(backend.render(_file(f"{i}.mmd"), "graph TD") for i in range(3)))
        await backend.cleanup()

    asyncio.run(run())

    starts.sort()
    assert starts[2] - starts[0] >= 0.075
