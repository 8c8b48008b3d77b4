"""Telegram setup bot."""

from clawwatch.bot.commands import SetupBot

__all__ = ["SetupBot"]
