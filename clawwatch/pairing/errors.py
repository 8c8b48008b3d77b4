"""Failures surfaced by the pairing flow."""


class PairingError(Exception):
    """Base class for pairing failures returned to the caller."""

    status = 500
    message = "Server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class InvalidCodeFormat(PairingError):
    """The submitted code is not exactly 6 ASCII digits."""

    status = 400
    message = "Invalid code format"


class CodeRequired(InvalidCodeFormat):
    """No code was submitted at all."""

    message = "Code is required"


class CodeNotFound(PairingError):
    """Never issued, already redeemed, or already swept."""

    status = 404
    message = "Invalid or expired code"


class CodeExpired(PairingError):
    """The code exists but its deadline has passed."""

    status = 410
    message = "Code has expired. Please request a new one."


class InternalError(PairingError):
    """A collaborator (delivery, storage) failed."""


class DeliveryError(InternalError):
    """The messaging gateway could not deliver a message."""


class StoreError(InternalError):
    """The pairing store could not be read or written."""
