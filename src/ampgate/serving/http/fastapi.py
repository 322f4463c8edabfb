"""FastAPI server proxying the AMP JSON Lines query protocol.

Endpoints:
    GET  /health          health check plus latest block per dataset
    GET  /status          indexer status from the admin API
    POST /query           read-only SQL proxy streaming JSON Lines back
    POST /                same as /query, for drop-in AMP endpoint compatibility
    GET  /blocks/latest   latest indexed block for one dataset

Sinks can point their AMP endpoint at this service and keep speaking the same protocol.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Annotated

import anyio
from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from ampgate.config.serving_models import GatewayConfig
from ampgate.serving import errors
from ampgate.serving.backend.admission import admit_query
from ampgate.serving.backend.limits import client_id_from_headers, run_rate_limit_sweeper
from ampgate.serving.http.cors import PreflightCORSMiddleware
from ampgate.serving.models import (
    ErrorDetail,
    HealthResponse,
    LatestBlockResponse,
    StatusConfig,
    StatusResponse,
)
from ampgate.serving.services.health import utc_timestamp
from ampgate.serving.services.query_service import NDJSON_MEDIA_TYPE, relay_body
from ampgate.serving.services.wiring import GatewayResource, build_gateway_resource

LOG = logging.getLogger("ampgate.serving.http.fastapi")

ENDPOINTS: dict[str, str] = {
    "GET /health": "Health check + latest block per dataset",
    "GET /status": "Detailed indexer status",
    "POST /query": "SQL proxy (text/plain body = raw SQL)",
    "POST /": "Same as /query (AMP drop-in compatibility)",
    "GET /blocks/latest?dataset=D": "Latest indexed block for a dataset",
}


def load_gateway_config() -> GatewayConfig:
    """
    Load and validate gateway configuration from environment variables.

    Returns
    -------
    GatewayConfig
        Validated configuration for the FastAPI surface.
    """
    return GatewayConfig.from_env()


def error_response(detail: ErrorDetail) -> JSONResponse:
    """
    Convert an ErrorDetail payload into a JSON HTTP response.

    Returns
    -------
    JSONResponse
        Response carrying ``{"error", "code"}`` with the detail's status.
    """
    return JSONResponse(status_code=detail.status, content=detail.to_payload())


def not_found_response() -> JSONResponse:
    """
    Build the 404 payload listing the supported routes.

    Returns
    -------
    JSONResponse
        404 response with an ``endpoints`` map.
    """
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": "Not found", "endpoints": ENDPOINTS},
    )


def internal_error_response(request: Request, exc: Exception) -> JSONResponse:
    """
    Log an unexpected failure and build the generic 500 payload.

    Returns
    -------
    JSONResponse
        500 response whose body never carries exception details.
    """
    LOG.error(
        "Unhandled error on %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error", "code": "internal_error"},
    )


def install_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers so every error body is JSON with ``error``."""

    @app.exception_handler(errors.GatewayError)
    def _handle_gateway_error(
        _request: Request,
        exc: errors.GatewayError,
    ) -> JSONResponse:
        return error_response(exc.detail)

    @app.exception_handler(RequestValidationError)
    def _handle_validation_error(
        _request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "Request validation failed",
                "code": "invalid_argument",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(StarletteHTTPException)
    def _handle_http_exception(
        _request: Request,
        exc: StarletteHTTPException,
    ) -> JSONResponse:
        if exc.status_code in {status.HTTP_404_NOT_FOUND, status.HTTP_405_METHOD_NOT_ALLOWED}:
            return not_found_response()
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    app.add_exception_handler(Exception, internal_error_response)


def install_logging_middleware(app: FastAPI) -> None:
    """
    Add an access log line for each request.

    Unexpected errors are turned into the 500 payload here, inside the CORS middleware, so
    they carry the same CORS headers as every other response.
    """

    @app.middleware("http")
    async def _log_request(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:  # noqa: BLE001
            response = internal_error_response(request, exc)
        duration_ms = (time.perf_counter() - start) * 1000
        LOG.info(
            "Handled %s %s status=%s client=%s duration_ms=%.2f",
            request.method,
            request.url.path,
            response.status_code,
            client_id_from_headers(request.headers),
            duration_ms,
        )
        return response


def get_app_config(request: Request) -> GatewayConfig:
    """
    Retrieve the validated application configuration from state.

    Returns
    -------
    GatewayConfig
        Loaded application configuration.

    Raises
    ------
    errors.GatewayError
        If the configuration is missing.
    """
    config: GatewayConfig | None = getattr(request.app.state, "config", None)
    if config is not None:
        return config
    message = "Server configuration is not initialized"
    raise errors.backend_failure(message)


def get_gateway(request: Request) -> GatewayResource:
    """
    Retrieve the shared gateway components from state.

    Returns
    -------
    GatewayResource
        Limiter, directory, forwarder and aggregator for this process.

    Raises
    ------
    errors.GatewayError
        If the lifespan has not wired the components.
    """
    gateway: GatewayResource | None = getattr(request.app.state, "gateway", None)
    if gateway is None:
        message = "Gateway is not initialized"
        raise errors.backend_failure(message)
    return gateway


ConfigDep = Annotated[GatewayConfig, Depends(get_app_config)]
GatewayDep = Annotated[GatewayResource, Depends(get_gateway)]


async def read_sql_body(request: Request) -> str | None:
    """
    Extract SQL from a text body or a JSON ``{"sql"}``/``{"query"}`` body.

    Returns
    -------
    str | None
        SQL text, or None when a JSON body carries no SQL string.

    Raises
    ------
    errors.GatewayError
        ``invalid_argument`` when a JSON body cannot be decoded.
    """
    raw = await request.body()
    content_type = request.headers.get("content-type", "")
    if "application/json" not in content_type:
        return raw.decode("utf-8", errors="replace")
    if not raw.strip():
        return None
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        message = "Request body is not valid JSON"
        raise errors.invalid_argument(message) from exc
    if not isinstance(payload, dict):
        return None
    sql = payload.get("sql") or payload.get("query")
    return sql if isinstance(sql, str) else None


def build_query_router() -> APIRouter:
    """
    Construct the router for the SQL proxy endpoints.

    Returns
    -------
    APIRouter
        Router exposing POST /query and POST /.
    """
    router = APIRouter()

    @router.post("/query", response_model=None, summary="Read-only SQL proxy")
    @router.post("/", response_model=None, summary="Read-only SQL proxy (AMP compatible)")
    async def run_query(
        request: Request,
        gateway: GatewayDep,
        config: ConfigDep,
    ) -> StreamingResponse:
        """
        Forward a read-only statement and stream the JSON Lines result back.

        Returns
        -------
        StreamingResponse
            Upstream body relayed unchanged as ``application/x-ndjson``.

        Raises
        ------
        errors.GatewayError
            429 when rate limited, 400/403/413 when the statement is rejected, 502 when
            the indexer fails.
        """
        client_id = client_id_from_headers(request.headers)
        if not gateway.limiter.allow(client_id):
            LOG.warning("Rate limit exceeded client=%s", client_id)
            raise errors.rate_limited(config.rate_limit_max, config.rate_limit_window_seconds)

        sql = await read_sql_body(request)
        try:
            admitted = admit_query(
                sql,
                max_size=config.max_query_size,
                read_only=config.read_only_queries,
            )
        except errors.GatewayError as exc:
            LOG.info("Rejected query client=%s code=%s", client_id, exc.code)
            raise

        try:
            upstream = await gateway.forwarder.open_stream(admitted.sql)
        except errors.UpstreamError as exc:
            LOG.warning("Query forward failed client=%s: %s", client_id, exc)
            raise
        LOG.info(
            "Forwarding query client=%s keyword=%s bytes=%d",
            client_id,
            admitted.keyword,
            admitted.size,
        )
        return StreamingResponse(
            relay_body(upstream),
            media_type=NDJSON_MEDIA_TYPE,
        )

    return router


def build_blocks_router() -> APIRouter:
    """
    Construct the router for dataset-scoped block endpoints.

    Returns
    -------
    APIRouter
        Router exposing GET /blocks/latest.
    """
    router = APIRouter()

    @router.get(
        "/blocks/latest",
        response_model=LatestBlockResponse,
        summary="Latest indexed block for a dataset",
    )
    async def latest_block(
        *,
        gateway: GatewayDep,
        dataset: str | None = None,
    ) -> LatestBlockResponse:
        """
        Return the highest block number indexed for ``dataset``.

        Returns
        -------
        LatestBlockResponse
            Latest block (None when empty) and the dataset name.

        Raises
        ------
        errors.GatewayError
            400 for a missing, invalid or unknown dataset; 502 when the indexer fails.
        """
        if not dataset:
            message = "Missing required query param: dataset"
            raise errors.invalid_argument(message)
        name = await gateway.directory.validate(dataset)
        latest = await gateway.forwarder.fetch_latest_block(name)
        return LatestBlockResponse(latest_block=latest, dataset=name)

    return router


def build_health_router() -> APIRouter:
    """
    Construct the router for health and status endpoints.

    Returns
    -------
    APIRouter
        Router exposing GET /health and GET /status.
    """
    router = APIRouter()

    @router.get("/health", response_model=HealthResponse, summary="Gateway health")
    async def health(
        *,
        gateway: GatewayDep,
        config: ConfigDep,
    ) -> HealthResponse | JSONResponse:
        """
        Report the latest block per dataset.

        Returns
        -------
        HealthResponse | JSONResponse
            Health payload, or a 503 error payload when the directory is unavailable.
        """
        try:
            snapshot = await gateway.health.health()
        except errors.GatewayError as exc:
            LOG.warning("Health check failed: %s", exc)
            return _health_failure(config, str(exc))
        except Exception:
            LOG.exception("Health check raised unexpectedly")
            return _health_failure(config, "Health aggregation failed")
        return HealthResponse(
            service=config.service_name,
            latest_block=snapshot.latest_block,
            datasets=snapshot.datasets,
            timestamp=snapshot.timestamp,
        )

    @router.get("/status", response_model=StatusResponse, summary="Indexer status")
    async def indexer_status(
        *,
        gateway: GatewayDep,
    ) -> StatusResponse | JSONResponse:
        """
        Report admin dataset and job listings; unreachable listings become null.

        Returns
        -------
        StatusResponse | JSONResponse
            Status payload, or a 500 error payload if aggregation itself raises.
        """
        try:
            snapshot = await gateway.health.status()
        except Exception:
            LOG.exception("Status aggregation raised unexpectedly")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"status": "error", "error": "Status aggregation failed"},
            )
        return StatusResponse(
            datasets=snapshot.datasets,
            jobs=snapshot.jobs,
            config=StatusConfig(sync_mode=snapshot.sync_mode),
            timestamp=snapshot.timestamp,
        )

    return router


def _health_failure(config: GatewayConfig, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "error",
            "service": config.service_name,
            "error": message,
            "timestamp": utc_timestamp(),
        },
    )


def register_routes(app: FastAPI) -> None:
    """Wire all API routes onto the provided FastAPI application."""
    app.include_router(build_health_router())
    app.include_router(build_query_router())
    app.include_router(build_blocks_router())


def create_app(
    *,
    config_loader: Callable[[], GatewayConfig] = load_gateway_config,
    resource_factory: Callable[[GatewayConfig], GatewayResource] = build_gateway_resource,
) -> FastAPI:
    """
    Build the FastAPI application with configured lifecycle, CORS and routes.

    Parameters
    ----------
    config_loader:
        Factory for loading application configuration; called once at build time.
    resource_factory:
        Factory that yields the gateway components inside the lifespan.

    Returns
    -------
    FastAPI
        Configured FastAPI instance.
    """
    config = config_loader()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        resource = resource_factory(config)
        app.state.gateway = resource
        LOG.info("[%s] Starting on :%s", config.service_name, config.port)
        LOG.info("[%s] Proxying AMP JSONL endpoint %s", config.service_name, config.amp_endpoint)
        try:
            async with anyio.create_task_group() as task_group:
                task_group.start_soon(
                    run_rate_limit_sweeper,
                    resource.limiter,
                    config.rate_limit_sweep_seconds,
                )
                yield
                task_group.cancel_scope.cancel()
        finally:
            app.state.gateway = None
            await resource.aclose()

    app = FastAPI(
        title="AMP Query Gateway",
        description="Read-only, rate-limited proxy over the AMP JSON Lines SQL endpoint.",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config
    install_exception_handlers(app)
    install_logging_middleware(app)
    app.add_middleware(
        PreflightCORSMiddleware,
        allow_origins=["*"] if config.allows_any_origin else config.cors_origins,
        allow_methods=["GET", "HEAD", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    register_routes(app)
    return app


app = create_app()
