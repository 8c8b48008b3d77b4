"""clawwatch - Apple Watch setup bot for OpenClaw."""

__version__ = "0.1.0"
__logo__ = "🦞"
