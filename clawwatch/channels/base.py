"""Base interface for outbound messaging."""

from abc import ABC, abstractmethod


class MessagingGateway(ABC):
    """
    Delivers text to a chat.

    Implementations raise DeliveryError when a message cannot be delivered.
    """

    name: str = "base"

    async def start(self) -> None:
        """Acquire connections. Optional."""

    async def stop(self) -> None:
        """Release connections. Optional."""

    @abstractmethod
    async def send_message(self, chat_id: int | str, text: str) -> None:
        """Send an HTML-formatted message to a chat."""
