"""Connection configuration handed to the watch after a successful redemption."""

import secrets
from dataclasses import dataclass
from typing import Any

from clawwatch.pairing.registry import PendingConnection

SESSION_TOKEN_BYTES = 24


def mint_session_token(prefix: str = "cw") -> str:
    """Return a fresh opaque bearer token."""
    return f"{prefix}_{secrets.token_urlsafe(SESSION_TOKEN_BYTES)}"


@dataclass
class ConnectionConfig:
    """What the watch needs to talk to the assistant."""
    user_id: int | str
    chat_id: int | str
    username: str | None
    first_name: str | None
    api_endpoint: str
    session_token: str

    @classmethod
    def from_pending(
        cls,
        pending: PendingConnection,
        api_endpoint: str,
        token_prefix: str = "cw",
    ) -> "ConnectionConfig":
        return cls(
            user_id=pending.owner_id,
            chat_id=pending.chat_id,
            username=pending.username or None,
            first_name=pending.first_name or None,
            api_endpoint=api_endpoint,
            session_token=mint_session_token(token_prefix),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "chatId": self.chat_id,
            "username": self.username,
            "firstName": self.first_name,
            "apiEndpoint": self.api_endpoint,
            "sessionToken": self.session_token,
        }
