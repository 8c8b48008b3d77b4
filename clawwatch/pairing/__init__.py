"""Setup-code pairing between Telegram users and their watch."""

from clawwatch.pairing.errors import (
    PairingError,
    InvalidCodeFormat,
    CodeRequired,
    CodeNotFound,
    CodeExpired,
    InternalError,
    DeliveryError,
    StoreError,
)
from clawwatch.pairing.registry import Owner, PendingConnection, PairingRegistry
from clawwatch.pairing.session import ConnectionConfig, mint_session_token
from clawwatch.pairing.store import PairedDevice, PairingStore

__all__ = [
    "PairingError",
    "InvalidCodeFormat",
    "CodeRequired",
    "CodeNotFound",
    "CodeExpired",
    "InternalError",
    "DeliveryError",
    "StoreError",
    "Owner",
    "PendingConnection",
    "PairingRegistry",
    "ConnectionConfig",
    "mint_session_token",
    "PairedDevice",
    "PairingStore",
]
