"""Chat commands of the setup bot."""

import html
from typing import Any

from loguru import logger

from clawwatch.channels.base import MessagingGateway
from clawwatch.pairing.registry import Owner, PairingRegistry


def _welcome_text(first_name: str) -> str:
    return (
        f"👋 Hey {html.escape(first_name)}!\n\n"
        "🦞 <b>Welcome to ClawWatch Setup!</b>\n\n"
        "This bot helps you connect your Apple Watch to your AI assistant.\n\n"
        "Send /connect to get a 6-digit code for your Watch!"
    )


def _code_text(code: str, ttl_minutes: int) -> str:
    return (
        "🔐 <b>Your Setup Code:</b>\n\n"
        f"<code>{code}</code>\n\n"
        "Enter this code on your Apple Watch.\n\n"
        f"⏱️ <b>Expires in {ttl_minutes} minutes</b>\n\n"
        "<i>Need a new code? Just send /connect again.</i>"
    )


def _help_text(ttl_minutes: int) -> str:
    return (
        "🦞 <b>ClawWatch Setup Help</b>\n\n"
        "<b>To connect your Apple Watch:</b>\n"
        "1. Send /connect here\n"
        "2. You'll get a 6-digit code\n"
        "3. Enter the code on your Watch\n"
        "4. Done! Your Watch is connected.\n\n"
        f"<b>Code expires in {ttl_minutes} minutes</b> for security."
    )


FALLBACK_TEXT = "🦞 Send /connect to get a setup code for your Apple Watch!"


def parse_command(text: str) -> str | None:
    """
    Extract the command name from a message.

    "/connect@ClawWatchBot now" -> "connect". Returns None for plain text.
    """
    text = text.strip()
    if not text.startswith("/"):
        return None
    head = text.split(maxsplit=1)[0][1:]
    return head.split("@", 1)[0].lower() or None


class SetupBot:
    """
    Answers Telegram updates for the setup flow.

    /connect issues a code from the registry and delivers it to the chat.
    Delivery failures propagate as DeliveryError; the issued code is left
    to expire on its own.
    """

    def __init__(self, registry: PairingRegistry, gateway: MessagingGateway):
        self.registry = registry
        self.gateway = gateway

    @property
    def ttl_minutes(self) -> int:
        return max(1, self.registry.ttl_ms // 60_000)

    async def handle_update(self, update: Any) -> None:
        """Handle one Telegram update. Anything without message text is ignored."""
        if not isinstance(update, dict):
            return
        message = update.get("message")
        if not isinstance(message, dict):
            return
        text = message.get("text")
        chat = message.get("chat")
        sender = message.get("from")
        if not isinstance(text, str) or not isinstance(chat, dict) or not isinstance(sender, dict):
            return
        if "id" not in chat or "id" not in sender:
            return

        owner = Owner(
            id=sender["id"],
            chat_id=chat["id"],
            first_name=sender.get("first_name") or None,
            username=sender.get("username") or None,
        )
        command = parse_command(text)
        logger.debug(f"Update from {owner.id}: command={command}")

        if command == "start":
            await self.gateway.send_message(owner.chat_id, _welcome_text(owner.first_name or "there"))
        elif command == "connect":
            await self._connect(owner)
        elif command == "help":
            await self.gateway.send_message(owner.chat_id, _help_text(self.ttl_minutes))
        elif command == "debug":
            self.registry.sweep()
            await self.gateway.send_message(
                owner.chat_id,
                f"Debug info:\nPending codes: {self.registry.pending_count()}",
            )
        else:
            await self.gateway.send_message(owner.chat_id, FALLBACK_TEXT)

    async def _connect(self, owner: Owner) -> None:
        code = self.registry.issue(owner)
        await self.gateway.send_message(owner.chat_id, _code_text(code, self.ttl_minutes))
