"""Local PlantUML HTTP server backend (``GET {server}/svg/{encoded}``)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from diagrender.backends.base import RenderBackend, check_image
from diagrender.backends.encoding import encode_plantuml
from diagrender.config.loader import PlantUmlServerConfig
from diagrender.errors import BackendError, BackendHTTPError
from diagrender.http_client import async_client, describe_http_error
from diagrender.logging import log
from diagrender.models import (
    BackendAvailability,
    DiagramFile,
    DiagramType,
    Lane,
    OutputFormat,
    RenderOutput,
)

if TYPE_CHECKING:
    from loguru import Logger

AVAILABILITY_TIMEOUT = 5.0


class PlantUmlServerBackend(RenderBackend):
    """PlantUML-only backend talking to a self-hosted PlantUML server.

    Any HTTP answer to the availability check, even an error status, counts as available;
    a render that does not return 200 with SVG content fails.
    """

    name = "plantuml_server"

    def __init__(
        self,
        config: PlantUmlServerConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.config = config or PlantUmlServerConfig()
        super().__init__(
            lane=Lane.CONCURRENT,
            supported_types=frozenset({DiagramType.PLANTUML, DiagramType.C4PLANTUML}),
            logger=logger,
        )
        self.endpoint = self.config.endpoint.rstrip("/")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = async_client(timeout=self.config.timeout, transport=self._transport)
        return self._client

    async def is_available(self) -> BackendAvailability:
        try:
            await self._get_client().get(self.endpoint, timeout=AVAILABILITY_TIMEOUT)
        except httpx.HTTPError as e:
            return self._availability(
                False, f"PlantUML server unreachable at {self.endpoint}: {describe_http_error(e)}"
            )
        return self._availability(True, f"PlantUML server at {self.endpoint}")

    async def render(self, file: DiagramFile, content: str) -> RenderOutput:
        kind = file.type.value
        url = f"{self.endpoint}/svg/{encode_plantuml(content)}"
        with log("plantuml_server.render", sink=self._log, file=file.display_name) as span:
            try:
                response = await self._get_client().get(url)
            except httpx.HTTPError as e:
                raise BackendError(
                    describe_http_error(e), backend=self.name, diagram_type=kind
                ) from e
            span.add(status=response.status_code, bytes=len(response.content))
            if response.status_code != 200:
                raise BackendHTTPError(
                    response.status_code,
                    response.reason_phrase,
                    backend=self.name,
                    diagram_type=kind,
                )
            return check_image(
                response.content, OutputFormat.SVG, backend=self.name, diagram_type=kind
            )

    async def cleanup(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
