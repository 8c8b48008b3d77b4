"""Messaging channels."""

from clawwatch.channels.base import MessagingGateway

__all__ = ["MessagingGateway"]
