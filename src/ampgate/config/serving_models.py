"""Gateway configuration shared by the HTTP surface and the CLI."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field, model_validator


def _parse_env_flag(value: str | None, *, default: bool) -> bool:
    """
    Interpret a string environment value as a boolean.

    Parameters
    ----------
    value:
        Raw environment variable value or None.
    default:
        Value to return when the environment variable is unset.

    Returns
    -------
    bool
        Parsed boolean flag.
    """
    if value is None:
        return default
    return value.lower() not in {"0", "false", "no", "off"}


def _parse_origins(value: str | None) -> list[str]:
    """
    Split a comma-separated CORS origin list.

    Returns
    -------
    list[str]
        Configured origins; ``["*"]`` when unset or wildcarded.
    """
    if value is None or value.strip() in {"", "*"}:
        return ["*"]
    return [origin.strip() for origin in value.split(",") if origin.strip()]


def _optional_float(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    return float(value)


class GatewayConfig(BaseModel):
    """
    Runtime settings for the AMP query gateway.

    Every option carries a default so the gateway runs with zero configuration against an
    indexer listening on its standard local ports.
    """

    service_name: str = Field(
        default="amp-api",
        description="Service name reported by /health and the startup log.",
    )
    host: str = Field(default="0.0.0.0", description="Interface the HTTP server binds to.")
    port: int = Field(default=3000, description="Public HTTP port.")
    amp_endpoint: str = Field(
        default="http://127.0.0.1:1603",
        description="URL of the indexer's JSON Lines query endpoint.",
    )
    amp_admin_url: str = Field(
        default="http://127.0.0.1:1610",
        description="Base URL of the indexer's admin API.",
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed CORS origins; ['*'] allows any origin.",
    )
    rate_limit_max: int = Field(
        default=60,
        description="Maximum /query requests per client within one window.",
    )
    rate_limit_window_seconds: float = Field(
        default=60.0,
        description="Width of the sliding rate-limit window in seconds.",
    )
    rate_limit_sweep_seconds: float = Field(
        default=300.0,
        description="Interval between sweeps that evict idle rate-limit entries.",
    )
    max_query_size: int = Field(
        default=10_000,
        description="Maximum accepted SQL size in bytes.",
    )
    datasets_cache_ttl_seconds: float = Field(
        default=60.0,
        description="How long a dataset listing from the admin API stays fresh.",
    )
    upstream_timeout_seconds: float | None = Field(
        default=None,
        description="Timeout for upstream calls; None leaves requests unbounded.",
    )
    sync_mode: str = Field(
        default="full",
        description="Indexer sync mode reported by /status.",
    )
    validate_datasets: bool = Field(
        default=True,
        description="Reject dataset identifiers missing from the admin dataset listing.",
    )
    read_only_queries: bool = Field(
        default=True,
        description="Only admit SELECT, WITH and EXPLAIN statements on /query.",
    )

    @classmethod
    def from_env(cls) -> GatewayConfig:
        """
        Construct a GatewayConfig from environment variables.

        Returns
        -------
        GatewayConfig
            Validated configuration populated from environment values.
        """
        port = int(os.environ.get("PORT") or os.environ.get("API_PORT") or "3000")
        return cls(
            service_name=os.environ.get("SERVICE_NAME", "amp-api"),
            host=os.environ.get("HOST", "0.0.0.0"),
            port=port,
            amp_endpoint=os.environ.get("AMP_ENDPOINT", "http://127.0.0.1:1603"),
            amp_admin_url=os.environ.get("AMP_ADMIN_URL", "http://127.0.0.1:1610"),
            cors_origins=_parse_origins(os.environ.get("CORS_ORIGINS")),
            rate_limit_max=int(os.environ.get("RATE_LIMIT_MAX", "60")),
            rate_limit_window_seconds=float(os.environ.get("RATE_LIMIT_WINDOW_SEC", "60")),
            rate_limit_sweep_seconds=float(os.environ.get("RATE_LIMIT_SWEEP_SEC", "300")),
            max_query_size=int(os.environ.get("MAX_QUERY_SIZE", "10000")),
            datasets_cache_ttl_seconds=float(os.environ.get("DATASETS_CACHE_TTL_SEC", "60")),
            upstream_timeout_seconds=_optional_float(os.environ.get("AMP_TIMEOUT_SEC")),
            sync_mode=os.environ.get("AMP_SYNC_MODE", "full"),
            validate_datasets=_parse_env_flag(
                os.environ.get("AMP_VALIDATE_DATASETS"), default=True
            ),
            read_only_queries=_parse_env_flag(
                os.environ.get("AMP_READ_ONLY_QUERIES"), default=True
            ),
        )

    @model_validator(mode="after")
    def _validate_limits(self) -> GatewayConfig:
        """
        Normalize URLs and reject unusable limits.

        Returns
        -------
        GatewayConfig
            Normalized configuration.

        Raises
        ------
        ValueError
            When a limit, interval or URL is unusable.
        """
        self.amp_admin_url = self.amp_admin_url.rstrip("/")
        if not self.amp_endpoint:
            message = "amp_endpoint must not be empty"
            raise ValueError(message)
        if not self.amp_admin_url:
            message = "amp_admin_url must not be empty"
            raise ValueError(message)
        if not self.cors_origins:
            self.cors_origins = ["*"]

        positive = {
            "rate_limit_max": self.rate_limit_max,
            "rate_limit_window_seconds": self.rate_limit_window_seconds,
            "rate_limit_sweep_seconds": self.rate_limit_sweep_seconds,
            "max_query_size": self.max_query_size,
            "datasets_cache_ttl_seconds": self.datasets_cache_ttl_seconds,
        }
        for name, value in positive.items():
            if value <= 0:
                message = f"{name} must be positive"
                raise ValueError(message)
        if self.upstream_timeout_seconds is not None and self.upstream_timeout_seconds <= 0:
            message = "upstream_timeout_seconds must be positive when set"
            raise ValueError(message)
        return self

    @property
    def allows_any_origin(self) -> bool:
        """Return True when CORS is open to every origin."""
        return "*" in self.cors_origins


__all__ = ["GatewayConfig"]
