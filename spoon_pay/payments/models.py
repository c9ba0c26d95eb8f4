from __future__ import annotations

import re
import time
import uuid
from decimal import Decimal
from typing import Any, Dict, NoReturn, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from web3 import Web3

from .exceptions import ERROR_TYPES, PaymentError, ProtocolError

_NONCE_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")
_SIGNATURE_PATTERN = re.compile(r"^0x[0-9a-fA-F]{130}$")


def checksum_address(value: str) -> str:
    """Normalize an EVM address to its EIP-55 checksum form."""
    if not isinstance(value, str):
        raise ValueError(f"Address must be a string, got {type(value).__name__}")
    try:
        return Web3.to_checksum_address(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid EVM address: {value!r}") from exc


def format_atomic_amount(amount_atomic: int, decimals: int) -> str:
    """Render an atomic amount in whole-token units without exponent notation (1000, 6 -> '0.001')."""
    value = Decimal(amount_atomic) / (Decimal(10) ** decimals)
    return format(value.normalize(), "f")


class TokenDomain(BaseModel):
    """EIP-712 domain of the token contract. Always handled as one immutable unit."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Token name as declared by the contract's EIP-712 domain")
    version: str = Field(description="Token domain version")
    chain_id: int = Field(gt=0)
    verifying_contract: str

    @field_validator("verifying_contract")
    @classmethod
    def _checksum_contract(cls, value: str) -> str:
        return checksum_address(value)

    def to_eip712(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


class Authorization(BaseModel):
    """An EIP-3009 ``TransferWithAuthorization`` message.

    Integer fields are serialized as decimal strings so that uint256 values
    survive JSON consumers that parse numbers as doubles.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_address: str = Field(alias="from")
    to: str
    value: int = Field(gt=0, description="Amount in the token's smallest unit")
    valid_after: int = Field(alias="validAfter", ge=0)
    valid_before: int = Field(alias="validBefore", gt=0)
    nonce: str = Field(description="0x-prefixed 32-byte hex nonce")

    @field_validator("from_address", "to")
    @classmethod
    def _checksum(cls, value: str) -> str:
        return checksum_address(value)

    @field_validator("nonce")
    @classmethod
    def _check_nonce(cls, value: str) -> str:
        if not isinstance(value, str) or not _NONCE_PATTERN.match(value):
            raise ValueError("nonce must be 0x followed by 64 hex characters")
        return value.lower()

    @field_serializer("value", "valid_after", "valid_before")
    def _as_decimal_string(self, value: int) -> str:
        return str(value)

    def is_valid_at(self, now: int) -> bool:
        return self.valid_after < now <= self.valid_before

    def to_message(self) -> Dict[str, Any]:
        """Typed-data message values in the order of the ``TransferWithAuthorization`` struct."""
        return {
            "from": self.from_address,
            "to": self.to,
            "value": self.value,
            "validAfter": self.valid_after,
            "validBefore": self.valid_before,
            "nonce": bytes.fromhex(self.nonce[2:]),
        }


class SignedAuthorization(BaseModel):
    """Authorization plus its recoverable signature; the ``payload`` object of the wire format."""

    model_config = ConfigDict(frozen=True)

    signature: str
    authorization: Authorization

    @field_validator("signature")
    @classmethod
    def _check_signature(cls, value: str) -> str:
        if not isinstance(value, str) or not _SIGNATURE_PATTERN.match(value):
            raise ValueError("signature must be 0x followed by 130 hex characters")
        return value.lower()


class PaymentTerms(BaseModel):
    """What a single payment buys: amount, payee and the resource it unlocks."""

    amount_atomic: int = Field(gt=0)
    pay_to: str
    asset: str
    asset_name: str = Field(default="USDC", description="Display symbol shown to the payer")
    decimals: int = Field(default=6, ge=0)
    network: str
    scheme: str = Field(default="exact")
    resource: str
    description: Optional[str] = Field(default=None)

    @field_validator("pay_to", "asset")
    @classmethod
    def _checksum(cls, value: str) -> str:
        return checksum_address(value)

    @property
    def display_amount(self) -> str:
        return format_atomic_amount(self.amount_atomic, self.decimals)


class PaymentPrompt(BaseModel):
    """A payment prompt the approval gate showed to the user."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    terms: PaymentTerms
    text: str
    created_at: float = Field(default_factory=time.time)

    def is_stale(self, now: float, ttl_seconds: Optional[float]) -> bool:
        if ttl_seconds is None:
            return False
        return now - self.created_at > ttl_seconds


class PaymentReceipt(BaseModel):
    """Settlement receipt decoded from an ``X-PAYMENT-RESPONSE`` header."""

    success: bool = False
    transaction: Optional[str] = None
    network: Optional[str] = None
    payer: Optional[str] = None
    error_reason: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class PaymentOutcome(BaseModel):
    """Terminal result of one pipeline run or transport attempt."""

    success: bool
    status: Optional[int] = None
    data: Any = None
    error: Optional[str] = None
    invalid_reason: Optional[str] = None
    error_type: Optional[str] = None
    paid: bool = Field(default=False, description="Whether an X-PAYMENT header was sent")
    receipt: Optional[PaymentReceipt] = None

    @classmethod
    def from_error(cls, exc: PaymentError, *, paid: bool = False) -> "PaymentOutcome":
        if isinstance(exc, ProtocolError):
            return cls(
                success=False,
                status=exc.status,
                error=exc.message,
                invalid_reason=exc.invalid_reason,
                error_type=exc.error_type,
                paid=paid,
            )
        return cls(success=False, error=exc.message, error_type=exc.error_type, paid=paid)

    def raise_for_error(self) -> "PaymentOutcome":
        """Return self on success, otherwise raise the exception matching ``error_type``."""
        if self.success:
            return self
        self._raise()

    def _raise(self) -> NoReturn:
        message = self.error or "Payment failed"
        error_cls = ERROR_TYPES.get(self.error_type or "", PaymentError)
        if error_cls is ProtocolError:
            raise ProtocolError(
                message,
                status=self.status,
                error=self.error,
                invalid_reason=self.invalid_reason,
            )
        raise error_cls(message)

