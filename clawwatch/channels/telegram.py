"""Telegram delivery using python-telegram-bot."""

import html
import re

from loguru import logger
from telegram import Bot
from telegram.error import BadRequest, TelegramError

from clawwatch.channels.base import MessagingGateway
from clawwatch.pairing.errors import DeliveryError


def _strip_html(text: str) -> str:
    """Drop tags and unescape entities for the plain-text fallback."""
    return html.unescape(re.sub(r"<[^>]+>", "", text))


class TelegramGateway(MessagingGateway):
    """
    Sends bot messages through the Telegram Bot API.

    Updates arrive through the HTTP webhook, so this class only talks
    outbound: no polling.
    """

    name = "telegram"

    def __init__(self, token: str, bot: Bot | None = None):
        self.token = token
        self._bot: Bot | None = bot
        self._running = False

    async def start(self) -> None:
        """Initialize the bot client."""
        if not self.token and self._bot is None:
            logger.error("Telegram bot token not configured")
            return

        if self._bot is None:
            self._bot = Bot(token=self.token)

        try:
            await self._bot.initialize()
        except TelegramError as e:
            logger.error(f"Failed to initialize Telegram bot: {e}")
            return

        self._running = True
        logger.info(f"Telegram bot @{self._bot.username} ready")

    async def stop(self) -> None:
        """Shut the bot client down."""
        if self._bot and self._running:
            await self._bot.shutdown()
        self._running = False

    async def send_message(self, chat_id: int | str, text: str) -> None:
        if not self._bot or not self._running:
            raise DeliveryError("Telegram bot not running")

        try:
            await self._bot.send_message(chat_id=chat_id, text=text, parse_mode="HTML")
            return
        except BadRequest as e:
            # Fallback to plain text if HTML parsing fails
            logger.warning(f"HTML parse failed, falling back to plain text: {e}")
        except TelegramError as e:
            logger.error(f"Error sending Telegram message to {chat_id}: {e}")
            raise DeliveryError(f"Telegram delivery failed: {e}") from e

        try:
            await self._bot.send_message(chat_id=chat_id, text=_strip_html(text))
        except TelegramError as e:
            logger.error(f"Error sending Telegram message to {chat_id}: {e}")
            raise DeliveryError(f"Telegram delivery failed: {e}") from e

    async def set_webhook(self, url: str, secret_token: str | None = None) -> bool:
        """Point Telegram at the gateway's webhook route."""
        if not self._bot or not self._running:
            raise DeliveryError("Telegram bot not running")
        try:
            return await self._bot.set_webhook(
                url=url,
                allowed_updates=["message"],
                secret_token=secret_token or None,
            )
        except TelegramError as e:
            raise DeliveryError(f"Failed to set webhook: {e}") from e

    async def delete_webhook(self) -> bool:
        if not self._bot or not self._running:
            raise DeliveryError("Telegram bot not running")
        try:
            return await self._bot.delete_webhook()
        except TelegramError as e:
            raise DeliveryError(f"Failed to delete webhook: {e}") from e
