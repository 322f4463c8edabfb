"""Gateway services shared by the HTTP surface and the CLI."""

from ampgate.serving.services.wiring import GatewayResource, build_gateway_resource

__all__ = ["GatewayResource", "build_gateway_resource"]
