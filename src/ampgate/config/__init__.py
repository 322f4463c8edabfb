"""Configuration models for the gateway."""

from ampgate.config.serving_models import GatewayConfig

__all__ = ["GatewayConfig"]
