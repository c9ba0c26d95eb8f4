from __future__ import annotations

from typing import Optional


class PaymentError(Exception):
    """Base class for every failure raised by the payment engine."""

    error_type: str = "PaymentError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigError(PaymentError):
    """Raised when signing key, endpoint or token domain configuration is missing or invalid."""

    error_type = "ConfigError"


class InvalidAmount(PaymentError):
    """Raised when a payment amount is not a positive integer of atomic units, or exceeds the cap."""

    error_type = "InvalidAmount"


class SignatureError(PaymentError):
    """Raised when a freshly produced signature does not recover to the signing account."""

    error_type = "SignatureError"


class TransportError(PaymentError):
    """Raised when the resource endpoint could not be reached after all retries."""

    error_type = "TransportError"


class ProtocolError(PaymentError):
    """Raised for a non-200 answer to a paid request.

    Terminal for the authorization that was sent: retrying the intent needs a
    fresh authorization with a new nonce.
    """

    error_type = "ProtocolError"

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        error: Optional[str] = None,
        invalid_reason: Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status
        self.error = error
        self.invalid_reason = invalid_reason


class StateError(PaymentError):
    """An approval arrived without a payment prompt it could refer to.

    The approval gate resolves this through its policy and never lets it
    escape to callers.
    """

    error_type = "StateError"


ERROR_TYPES = {
    cls.error_type: cls
    for cls in (PaymentError, ConfigError, InvalidAmount, SignatureError, TransportError, ProtocolError, StateError)
}
