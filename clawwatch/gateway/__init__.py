"""HTTP gateway."""

from clawwatch.gateway.server import GatewayServer

__all__ = ["GatewayServer"]
