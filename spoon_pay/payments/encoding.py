"""Wire codec for the ``X-PAYMENT`` and ``X-PAYMENT-RESPONSE`` headers, built on the x402 SDK."""

from __future__ import annotations

import json
from typing import Any, Dict, Tuple

from x402.clients.base import decode_x_payment_response
from x402.common import x402_VERSION
from x402.encoding import safe_base64_decode
from x402.exact import encode_payment
from x402.types import PaymentPayload

from .exceptions import PaymentError
from .models import PaymentReceipt, SignedAuthorization

PAYMENT_HEADER = "X-PAYMENT"
PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"


def build_payment_payload(
    signed: SignedAuthorization,
    network: str,
    scheme: str = "exact",
    x402_version: int = x402_VERSION,
) -> Dict[str, Any]:
    return {
        "x402Version": x402_version,
        "scheme": scheme,
        "network": network,
        "payload": signed.model_dump(by_alias=True),
    }


def encode_payment_header(payload: Dict[str, Any]) -> str:
    try:
        return encode_payment(payload)
    except Exception as exc:
        raise PaymentError(f"Failed to encode {PAYMENT_HEADER} header: {exc}") from exc


def _decode(header_value: str) -> Tuple[PaymentPayload, Dict[str, Any]]:
    try:
        decoded = safe_base64_decode(header_value)
        payment = PaymentPayload.model_validate_json(decoded)
        raw = json.loads(decoded)
    except Exception as exc:
        raise PaymentError(f"Failed to decode {PAYMENT_HEADER} header: {exc}") from exc
    return payment, raw


def decode_payment_header(header_value: str) -> PaymentPayload:
    payment, _ = _decode(header_value)
    return payment


def decode_payment_response(header_value: str) -> PaymentReceipt:
    """Decode an X-PAYMENT-RESPONSE header into a structured receipt."""
    try:
        payload = decode_x_payment_response(header_value)
    except Exception as exc:
        raise PaymentError(f"Failed to decode {PAYMENT_RESPONSE_HEADER} header: {exc}") from exc
    if not isinstance(payload, dict):
        raise PaymentError(f"{PAYMENT_RESPONSE_HEADER} header must carry a JSON object")
    return PaymentReceipt(
        success=bool(payload.get("success")),
        transaction=payload.get("transaction"),
        network=payload.get("network"),
        payer=payload.get("payer"),
        error_reason=payload.get("error_reason") or payload.get("errorReason") or payload.get("error"),
        raw=payload,
    )


class PaymentEncoder:
    """Wraps signed authorizations into versioned payloads for one network."""

    def __init__(self, network: str, scheme: str = "exact", x402_version: int = x402_VERSION):
        self.network = network
        self.scheme = scheme
        self.x402_version = x402_version

    def build_payload(self, signed: SignedAuthorization) -> Dict[str, Any]:
        return build_payment_payload(signed, self.network, self.scheme, self.x402_version)

    def encode(self, signed: SignedAuthorization) -> str:
        return encode_payment_header(self.build_payload(signed))

    def decode_payload(self, header_value: str) -> PaymentPayload:
        return decode_payment_header(header_value)

    def decode(self, header_value: str) -> SignedAuthorization:
        payment, raw = _decode(header_value)
        if payment.network != self.network or payment.scheme != self.scheme:
            raise PaymentError(
                f"Payment payload is for {payment.scheme}/{payment.network}, expected {self.scheme}/{self.network}"
            )
        try:
            return SignedAuthorization.model_validate(raw["payload"])
        except (KeyError, ValueError) as exc:
            raise PaymentError(f"Failed to decode {PAYMENT_HEADER} header: {exc}") from exc
