"""Typed response models and error payloads for the gateway surface."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """JSON error body returned for every failed request."""

    error: str
    code: str = "error"
    status: int = 500

    def to_payload(self) -> dict[str, object]:
        """
        Serialize to the public error shape.

        Returns
        -------
        dict[str, object]
            Payload with the human-readable ``error`` and the stable ``code``.
        """
        return {"error": self.error, "code": self.code}


class HealthResponse(BaseModel):
    """Payload for GET /health."""

    model_config = ConfigDict(populate_by_name=True)

    status: Literal["ok"] = "ok"
    service: str
    latest_block: int | None = Field(default=None, alias="latestBlock")
    datasets: dict[str, int | None] = Field(default_factory=dict)
    timestamp: str


class LatestBlockResponse(BaseModel):
    """Payload for GET /blocks/latest."""

    model_config = ConfigDict(populate_by_name=True)

    latest_block: int | None = Field(default=None, alias="latestBlock")
    dataset: str


class StatusConfig(BaseModel):
    """Indexer configuration echoed by /status."""

    model_config = ConfigDict(populate_by_name=True)

    sync_mode: str = Field(alias="syncMode")


class StatusResponse(BaseModel):
    """Payload for GET /status; admin fields are passed through opaquely."""

    status: Literal["ok"] = "ok"
    datasets: Any = None
    jobs: Any = None
    config: StatusConfig
    timestamp: str


__all__ = [
    "ErrorDetail",
    "HealthResponse",
    "LatestBlockResponse",
    "StatusConfig",
    "StatusResponse",
]
