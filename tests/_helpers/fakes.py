"""Fake indexer, clock and app builders for gateway tests."""

from __future__ import annotations

import json
import re
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

import httpx
from fastapi import FastAPI

from ampgate.config.serving_models import GatewayConfig
from ampgate.serving.http.fastapi import create_app
from ampgate.serving.services.wiring import GatewayResource, build_gateway_resource

QUERY_ENDPOINT = "http://amp.test:1603"
ADMIN_URL = "http://amp.test:1610"
QUERY_PORT = 1603
ADMIN_PORT = 1610

_LATEST_BLOCK_QUERY = re.compile(r'^SELECT MAX\(block_num\) as latest FROM "(\w+)"\.blocks$')


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ChunkedStream(httpx.AsyncByteStream):
    """Upstream body delivered chunk by chunk, optionally failing after the last chunk."""

    def __init__(self, chunks: list[bytes], *, error: Exception | None = None) -> None:
        self.chunks = chunks
        self.error = error
        self.delivered = 0
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            self.delivered += 1
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


@dataclass
class FakeIndexer:
    """
    In-memory stand-in for the AMP query and admin endpoints.

    Plugged into HTTPX through ``httpx.MockTransport``; every request is recorded.
    """

    datasets: list[object] = field(default_factory=list)
    jobs: object = field(default_factory=list)
    latest_blocks: dict[str, object] = field(default_factory=dict)
    failing_datasets: set[str] = field(default_factory=set)
    query_body: bytes = b""
    query_stream: httpx.AsyncByteStream | None = None
    query_status: int = 200
    admin_status: int = 200
    jobs_status: int = 200
    query_unreachable: bool = False
    admin_unreachable: bool = False
    requests: list[httpx.Request] = field(default_factory=list)
    queries: list[str] = field(default_factory=list)

    @property
    def admin_requests(self) -> list[httpx.Request]:
        return [req for req in self.requests if req.url.port == ADMIN_PORT]

    def go_down(self) -> None:
        self.query_unreachable = True
        self.admin_unreachable = True

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.port == ADMIN_PORT:
            return self._admin(request)
        return self._query(request)

    def _admin(self, request: httpx.Request) -> httpx.Response:
        if self.admin_unreachable:
            message = "admin connection refused"
            raise httpx.ConnectError(message, request=request)
        if request.url.path == "/datasets":
            return httpx.Response(self.admin_status, json=self.datasets)
        if request.url.path == "/jobs":
            return httpx.Response(self.jobs_status, json=self.jobs)
        return httpx.Response(404, text="not found")

    def _query(self, request: httpx.Request) -> httpx.Response:
        if self.query_unreachable:
            message = "query connection refused"
            raise httpx.ConnectError(message, request=request)
        sql = request.content.decode("utf-8")
        self.queries.append(sql)
        match = _LATEST_BLOCK_QUERY.match(sql)
        if match is not None:
            dataset = match.group(1)
            if dataset in self.failing_datasets:
                return httpx.Response(500, text=f"table {dataset}.blocks not found")
            line = json.dumps({"latest": self.latest_blocks.get(dataset)})
            return httpx.Response(200, content=f"{line}\n".encode())
        if self.query_stream is not None:
            return httpx.Response(self.query_status, stream=self.query_stream)
        return httpx.Response(self.query_status, content=self.query_body)


def build_client(indexer: FakeIndexer) -> httpx.AsyncClient:
    """Return an AsyncClient whose transport is the fake indexer."""
    return httpx.AsyncClient(transport=httpx.MockTransport(indexer.handler))


def make_config(**overrides: object) -> GatewayConfig:
    """Build a GatewayConfig pointed at the fake indexer."""
    values: dict[str, object] = {
        "amp_endpoint": QUERY_ENDPOINT,
        "amp_admin_url": ADMIN_URL,
        "service_name": "amp-api-test",
    }
    values.update(overrides)
    return GatewayConfig.model_validate(values)


def build_test_app(
    indexer: FakeIndexer,
    *,
    config: GatewayConfig | None = None,
    clock: Callable[[], float] | None = None,
) -> FastAPI:
    """
    Construct the FastAPI app wired to the fake indexer.

    Returns
    -------
    FastAPI
        Application whose lifespan builds components around a mock-transport client.
    """
    cfg = config or make_config()
    resolved_clock = clock or FakeClock()

    def _factory(app_cfg: GatewayConfig) -> GatewayResource:
        return build_gateway_resource(
            app_cfg,
            http_client=build_client(indexer),
            clock=resolved_clock,
        )

    return create_app(config_loader=lambda: cfg, resource_factory=_factory)
