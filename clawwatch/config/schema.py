"""Configuration schema using Pydantic."""

from pathlib import Path
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class GatewayConfig(BaseModel):
    """HTTP server configuration."""
    host: str = "0.0.0.0"
    port: int = 18790
    cors_origin: str = "*"


class PairingConfig(BaseModel):
    """Setup code configuration."""
    code_ttl_seconds: int = 300  # 5 minutes
    session_token_prefix: str = "cw"
    sweep_interval_seconds: int = 0  # 0 = sweep lazily on access only
    store_path: str = ""  # Defaults to ~/.clawwatch/pairings.json


class Config(BaseSettings):
    """Root configuration for clawwatch."""
    bot_token: str = ""  # Bot token from @BotFather
    api_base_url: str = "https://api.openclaw.ai/v1"  # Returned to the watch
    webhook_secret: str = ""  # Checked against X-Telegram-Bot-Api-Secret-Token
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    pairing: PairingConfig = Field(default_factory=PairingConfig)

    @property
    def store_path(self) -> Path:
        """Get expanded pairing store path."""
        if self.pairing.store_path:
            return Path(self.pairing.store_path).expanduser()
        return Path.home() / ".clawwatch" / "pairings.json"

    @property
    def code_ttl_ms(self) -> int:
        return self.pairing.code_ttl_seconds * 1000

    class Config:
        env_prefix = "CLAWWATCH_"
        env_nested_delimiter = "__"
