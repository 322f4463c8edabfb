"""CLI entrypoint for running and probing the AMP query gateway."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Callable, Sequence

import anyio
import uvicorn

from ampgate.config.serving_models import GatewayConfig
from ampgate.serving import errors
from ampgate.serving.http.fastapi import create_app
from ampgate.serving.services.wiring import build_gateway_resource

LOG = logging.getLogger("ampgate.cli")

CommandHandler = Callable[[argparse.Namespace], int]


# ---------------------------------------------------------------------------
# Argument parsing / logging setup
# ---------------------------------------------------------------------------


def _log_level(verbosity: int) -> int:
    if verbosity <= 0:
        return logging.WARNING
    if verbosity == 1:
        return logging.INFO
    return logging.DEBUG


def _setup_logging(verbosity: int) -> None:
    """
    Configure logging based on -v/--verbose count.

    0 -> WARNING, 1 -> INFO, 2+ -> DEBUG.
    """
    logging.basicConfig(
        level=_log_level(verbosity),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _load_config(args: argparse.Namespace) -> GatewayConfig:
    config = GatewayConfig.from_env()
    overrides: dict[str, object] = {}
    if getattr(args, "host", None):
        overrides["host"] = args.host
    if getattr(args, "port", None):
        overrides["port"] = args.port
    if overrides:
        config = GatewayConfig.model_validate({**config.model_dump(), **overrides})
    return config


def _cmd_serve(args: argparse.Namespace) -> int:
    config = _load_config(args)
    app = create_app(config_loader=lambda: config)
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=logging.getLevelName(_log_level(args.verbose)).lower(),
    )
    return 0


async def _collect_health(config: GatewayConfig) -> dict[str, object]:
    resource = build_gateway_resource(config)
    try:
        snapshot = await resource.health.health()
    finally:
        await resource.aclose()
    return {
        "status": "ok",
        "service": config.service_name,
        "latestBlock": snapshot.latest_block,
        "datasets": snapshot.datasets,
        "timestamp": snapshot.timestamp,
    }


def _cmd_health(args: argparse.Namespace) -> int:
    config = _load_config(args)
    try:
        payload = anyio.run(_collect_health, config)
    except errors.GatewayError as exc:
        LOG.error("Health check failed: %s", exc)
        sys.stdout.write(json.dumps({"status": "error", "error": str(exc)}) + "\n")
        return 1
    sys.stdout.write(json.dumps(payload, indent=2) + "\n")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ampgate",
        description="Read-only HTTP gateway over the AMP JSON Lines query endpoint.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity (-v INFO, -vv DEBUG)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP gateway")
    serve.add_argument("--host", default=None, help="Bind address (default: $HOST or 0.0.0.0)")
    serve.add_argument(
        "--port",
        type=int,
        default=None,
        help="Listen port (default: $PORT, $API_PORT or 3000)",
    )
    serve.set_defaults(handler=_cmd_serve)

    health = subparsers.add_parser(
        "health",
        help="Print the latest block per dataset straight from the indexer",
    )
    health.set_defaults(handler=_cmd_health)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """
    Run the CLI.

    Returns
    -------
    int
        Process exit code.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)
    handler: CommandHandler = args.handler
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
