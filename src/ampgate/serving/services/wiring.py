"""Shared wiring helpers that build the gateway components from configuration."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx

from ampgate.config.serving_models import GatewayConfig
from ampgate.serving.backend.datasets import DatasetDirectory
from ampgate.serving.backend.limits import SlidingWindowRateLimiter
from ampgate.serving.services.admin import AdminClient
from ampgate.serving.services.health import HealthAggregator
from ampgate.serving.services.query_service import QueryForwarder

LOG = logging.getLogger("ampgate.serving.services.wiring")

__all__ = ["GatewayResource", "build_gateway_resource"]


@dataclass
class GatewayResource:
    """Bundle of process-scoped gateway state plus its close hook."""

    limiter: SlidingWindowRateLimiter
    directory: DatasetDirectory
    forwarder: QueryForwarder
    admin: AdminClient
    health: HealthAggregator
    client: httpx.AsyncClient
    owns_client: bool = field(default=True)

    async def aclose(self) -> None:
        """Close the HTTP client when this bundle created it."""
        if self.owns_client:
            await self.client.aclose()


def build_gateway_resource(
    cfg: GatewayConfig,
    *,
    http_client: httpx.AsyncClient | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> GatewayResource:
    """
    Construct the limiter, directory, forwarder and aggregator for one process.

    Parameters
    ----------
    cfg:
        Validated gateway configuration.
    http_client:
        Optional pre-built HTTPX client; tests pass one backed by a mock transport.
    clock:
        Monotonic clock shared by the limiter and the directory cache.

    Returns
    -------
    GatewayResource
        Components ready to be attached to application state.
    """
    owns_client = http_client is None
    client = http_client or httpx.AsyncClient(
        timeout=httpx.Timeout(cfg.upstream_timeout_seconds)
    )
    limiter = SlidingWindowRateLimiter(
        max_requests=cfg.rate_limit_max,
        window_seconds=cfg.rate_limit_window_seconds,
        clock=clock,
    )
    admin = AdminClient(client, cfg.amp_admin_url)
    directory = DatasetDirectory(
        admin,
        ttl_seconds=cfg.datasets_cache_ttl_seconds,
        enforce_membership=cfg.validate_datasets,
        clock=clock,
    )
    forwarder = QueryForwarder(client, cfg.amp_endpoint)
    health = HealthAggregator(directory, forwarder, admin, sync_mode=cfg.sync_mode)
    LOG.info(
        "gateway wired endpoint=%s admin=%s rate_limit=%d/%gs max_query_size=%d",
        cfg.amp_endpoint,
        cfg.amp_admin_url,
        cfg.rate_limit_max,
        cfg.rate_limit_window_seconds,
        cfg.max_query_size,
    )
    return GatewayResource(
        limiter=limiter,
        directory=directory,
        forwarder=forwarder,
        admin=admin,
        health=health,
        client=client,
        owns_client=owns_client,
    )
