"""In-memory registry of pending watch connections keyed by setup code."""

import re
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable

from loguru import logger

from clawwatch.pairing.errors import CodeExpired, CodeNotFound, CodeRequired, InvalidCodeFormat

# Constants
CODE_TTL_MS = 5 * 60 * 1000
CODE_MIN = 100000
CODE_MAX = 999999
CODE_PATTERN = re.compile(r"^[0-9]{6}$")


@dataclass(frozen=True)
class Owner:
    """The chat account asking for a setup code."""
    id: int | str
    chat_id: int | str
    first_name: str | None = None
    username: str | None = None


@dataclass(frozen=True)
class PendingConnection:
    """A live setup code and who requested it."""
    code: str
    owner_id: int | str
    chat_id: int | str
    first_name: str | None
    username: str | None
    created_at_ms: int
    expires_at_ms: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.expires_at_ms


def _now_ms() -> int:
    return int(time.time() * 1000)


def _generate_code() -> str:
    """Draw a code uniformly from CODE_MIN..CODE_MAX."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


def normalize_code(code: object) -> str:
    """
    Validate the shape of a submitted code.

    Returns the trimmed code, or raises InvalidCodeFormat (CodeRequired when
    nothing was submitted).
    """
    if code is None or code == "" or code is False:
        raise CodeRequired()
    if isinstance(code, bool) or not isinstance(code, (str, int)):
        raise InvalidCodeFormat()

    code_str = str(code).strip()
    if not code_str:
        raise CodeRequired()
    if not CODE_PATTERN.match(code_str):
        raise InvalidCodeFormat()
    return code_str


class PairingRegistry:
    """
    Pending connections awaiting redemption from the watch.

    Every operation holds a single lock, so a redemption is one atomic
    check-expiry/delete/return step and two clients racing on the same code
    cannot both succeed. State lives only in memory and is lost on restart.
    """

    def __init__(
        self,
        ttl_ms: int = CODE_TTL_MS,
        clock: Callable[[], int] = _now_ms,
        code_factory: Callable[[], str] = _generate_code,
        sweep_on_access: bool = True,
    ):
        """
        Initialize an empty registry.

        Args:
            ttl_ms: Lifetime of an issued code in milliseconds.
            clock: Returns the current time in epoch milliseconds.
            code_factory: Produces candidate 6-digit codes.
            sweep_on_access: Sweep expired codes before every issue/redeem.
        """
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._code_factory = code_factory
        self._sweep_on_access = sweep_on_access
        self._pending: dict[str, PendingConnection] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def __contains__(self, code: object) -> bool:
        with self._lock:
            return code in self._pending

    def pending_count(self) -> int:
        return len(self)

    def issue(self, owner: Owner) -> str:
        """Create a pending connection for the owner and return its code."""
        with self._lock:
            now = self._clock()
            if self._sweep_on_access:
                self._sweep_locked(now)

            code = self._code_factory()
            while code in self._pending:
                code = self._code_factory()

            self._pending[code] = PendingConnection(
                code=code,
                owner_id=owner.id,
                chat_id=owner.chat_id,
                first_name=owner.first_name,
                username=owner.username,
                created_at_ms=now,
                expires_at_ms=now + self.ttl_ms,
            )
            total = len(self._pending)

        logger.info(f"Issued setup code for user {owner.id}, pending codes: {total}")
        logger.debug(f"Setup code {code} expires in {self.ttl_ms // 1000}s")
        return code

    def redeem(self, code: object) -> PendingConnection:
        """
        Consume a code and return the connection it was issued for.

        Raises:
            InvalidCodeFormat: The code is not 6 ASCII digits (store untouched).
            CodeNotFound: Unknown, already redeemed, or swept.
            CodeExpired: Known but past its deadline; it is removed.
        """
        code_str = normalize_code(code)

        with self._lock:
            now = self._clock()
            # Pop before sweeping: an expired hit raises CodeExpired, not CodeNotFound.
            pending = self._pending.pop(code_str, None)
            if self._sweep_on_access:
                self._sweep_locked(now)

            if pending is None:
                raise CodeNotFound()
            if pending.is_expired(now):
                raise CodeExpired()

        logger.info(f"Setup code redeemed for user {pending.owner_id}")
        return pending

    def sweep(self) -> int:
        """Remove every expired code. Returns the number removed."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: int) -> int:
        expired = [code for code, p in self._pending.items() if p.is_expired(now)]
        for code in expired:
            del self._pending[code]
        if expired:
            logger.debug(f"Swept {len(expired)} expired setup code(s)")
        return len(expired)
