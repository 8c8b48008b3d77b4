"""File-backed record of watches that completed pairing."""

import hmac
import json
import secrets
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from filelock import FileLock, Timeout
from loguru import logger

from clawwatch.pairing.errors import StoreError
from clawwatch.pairing.session import ConnectionConfig

STORE_VERSION = 1
LOCK_TIMEOUT = 10


@dataclass
class PairedDevice:
    """A completed pairing."""
    owner_id: str
    chat_id: str
    session_token: str
    paired_at: str
    username: str | None = None
    first_name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PairedDevice":
        return cls(
            owner_id=str(data["owner_id"]),
            chat_id=str(data["chat_id"]),
            session_token=data["session_token"],
            paired_at=data.get("paired_at", ""),
            username=data.get("username"),
            first_name=data.get("first_name"),
        )


def _read_json_file(path: Path, default: dict) -> dict:
    """Safely read a JSON file."""
    try:
        if path.exists():
            return json.loads(path.read_text())
    except (json.JSONDecodeError, IOError) as e:
        logger.warning(f"Error reading {path}: {e}")
    return default


def _write_json_file(path: Path, data: dict) -> None:
    """Write a JSON file with atomic rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(f".{secrets.token_hex(4)}.tmp")
    tmp_path.write_text(json.dumps(data, indent=2) + "\n")
    tmp_path.chmod(0o600)
    tmp_path.replace(path)


class PairingStore:
    """
    Pairings persisted to a JSON file.

    One entry per owner: pairing again replaces the previous session token.
    Writes hold a file lock so the CLI and a running gateway can share the file.
    """

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()
        self._lock_path = self.path.with_suffix(".lock")

    def _load(self) -> list[PairedDevice]:
        data = _read_json_file(self.path, {"version": STORE_VERSION, "pairings": []})
        return [
            PairedDevice.from_dict(p)
            for p in data.get("pairings", [])
            if isinstance(p, dict) and "owner_id" in p and "session_token" in p
        ]

    def _save(self, devices: list[PairedDevice]) -> None:
        _write_json_file(self.path, {
            "version": STORE_VERSION,
            "pairings": [asdict(d) for d in devices],
        })

    def _locked(self) -> FileLock:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(self._lock_path, timeout=LOCK_TIMEOUT)

    def list_pairings(self) -> list[PairedDevice]:
        """List recorded pairings, oldest first."""
        return sorted(self._load(), key=lambda d: d.paired_at)

    def record(self, config: ConnectionConfig) -> PairedDevice:
        """Record a completed pairing."""
        device = PairedDevice(
            owner_id=str(config.user_id),
            chat_id=str(config.chat_id),
            session_token=config.session_token,
            paired_at=datetime.now(timezone.utc).isoformat(),
            username=config.username,
            first_name=config.first_name,
        )
        try:
            with self._locked():
                devices = [d for d in self._load() if d.owner_id != device.owner_id]
                devices.append(device)
                self._save(devices)
        except (Timeout, OSError) as e:
            raise StoreError(f"Failed to record pairing: {e}") from e

        logger.info(f"Recorded pairing for user {device.owner_id}")
        return device

    def find_session(self, chat_id: int | str, session_token: str) -> PairedDevice | None:
        """Return the pairing for a chat if the session token matches."""
        if not session_token:
            return None
        chat_id = str(chat_id)
        for device in self._load():
            if device.chat_id == chat_id and hmac.compare_digest(
                device.session_token.encode(), str(session_token).encode()
            ):
                return device
        return None

    def revoke(self, owner_id: int | str) -> bool:
        """Remove an owner's pairing. Returns True if one was removed."""
        owner_id = str(owner_id).strip()
        if not owner_id:
            return False

        try:
            with self._locked():
                devices = self._load()
                kept = [d for d in devices if d.owner_id != owner_id]
                if len(kept) == len(devices):
                    return False
                self._save(kept)
        except (Timeout, OSError) as e:
            raise StoreError(f"Failed to revoke pairing: {e}") from e

        logger.info(f"Revoked pairing for user {owner_id}")
        return True
