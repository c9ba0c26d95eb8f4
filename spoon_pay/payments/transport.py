from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError
from x402.types import x402PaymentRequiredResponse

from .config import PaymentSettings
from .encoding import PAYMENT_HEADER, PAYMENT_RESPONSE_HEADER, decode_payment_response
from .exceptions import ConfigError, PaymentError, ProtocolError, TransportError
from .models import PaymentOutcome, PaymentReceipt

logger = logging.getLogger(__name__)


class PaymentTransport:
    """Issues resource requests with or without an X-PAYMENT header.

    Connection failures and timeouts are retried up to ``max_retries`` times.
    Any HTTP answer, including 402, is final and never retried: resending a
    rejected authorization cannot succeed.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: PaymentSettings, **kwargs: Any) -> "PaymentTransport":
        return cls(timeout=settings.request_timeout, max_retries=settings.max_retries, **kwargs)

    async def request_with_payment(self, endpoint: str, header_value: str) -> PaymentOutcome:
        logger.info("Making API request to %s with payment", endpoint)
        return await self._request(endpoint, {PAYMENT_HEADER: header_value}, paid=True)

    async def request_without_payment(self, endpoint: str) -> PaymentOutcome:
        logger.info("Making API request to %s without payment", endpoint)
        return await self._request(endpoint, {}, paid=False)

    async def fetch_payment_challenge(self, endpoint: str) -> Optional[x402PaymentRequiredResponse]:
        """Request ``endpoint`` unpaid and return its 402 challenge, if it issued one.

        Raises:
            TransportError: If the endpoint could not be reached.
            ConfigError: If the 402 body is not a usable payment challenge.
        """
        response = await self._get(endpoint, {})
        if response.status_code != 402:
            logger.info("No payment challenge from %s (HTTP %s)", endpoint, response.status_code)
            return None
        body = self._parse_body(response)
        try:
            return x402PaymentRequiredResponse.model_validate(body)
        except ValidationError as exc:
            logger.warning("Malformed payment challenge from %s: %s", endpoint, exc)
            raise ConfigError(f"Unusable payment challenge: {exc}") from exc

    async def _request(self, endpoint: str, extra_headers: Dict[str, str], *, paid: bool) -> PaymentOutcome:
        try:
            response = await self._get(endpoint, extra_headers)
        except PaymentError as exc:
            logger.error("Request to %s failed: %s", endpoint, exc)
            return PaymentOutcome.from_error(exc, paid=paid)
        logger.info("API response: %s %s", response.status_code, response.reason_phrase)
        return self._classify(response, paid=paid)

    async def _get(self, endpoint: str, extra_headers: Dict[str, str]) -> httpx.Response:
        if not endpoint:
            raise ConfigError("Resource endpoint is not configured")
        headers = {"Content-Type": "application/json", **extra_headers}
        attempts = self.max_retries + 1
        last_exc: Optional[Exception] = None

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(1, attempts + 1):
                try:
                    return await client.get(endpoint, headers=headers)
                except httpx.TransportError as exc:
                    last_exc = exc
                    logger.warning("Request to %s failed (attempt %s/%s): %r", endpoint, attempt, attempts, exc)
                    if attempt < attempts and self.retry_backoff > 0:
                        await asyncio.sleep(self.retry_backoff * attempt)
                except httpx.InvalidURL as exc:
                    raise ConfigError(f"Invalid resource endpoint {endpoint!r}: {exc}") from exc

        raise TransportError(f"Request to {endpoint} failed after {attempts} attempt(s): {last_exc!r}") from last_exc

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text or None

    @staticmethod
    def _parse_receipt(response: httpx.Response) -> Optional[PaymentReceipt]:
        header_value = response.headers.get(PAYMENT_RESPONSE_HEADER)
        if not header_value:
            return None
        try:
            return decode_payment_response(header_value)
        except PaymentError as exc:
            logger.warning("Ignoring undecodable %s header: %s", PAYMENT_RESPONSE_HEADER, exc)
            return None

    def _classify(self, response: httpx.Response, *, paid: bool) -> PaymentOutcome:
        data = self._parse_body(response)
        status = response.status_code

        if status == 200:
            return PaymentOutcome(
                success=True,
                status=status,
                data=data,
                paid=paid,
                receipt=self._parse_receipt(response) if paid else None,
            )

        body = data if isinstance(data, dict) else {}
        error = body.get("error")
        invalid_reason = body.get("invalidReason")
        logger.error("Request failed: status=%s error=%s invalidReason=%s", status, error, invalid_reason)
        return PaymentOutcome(
            success=False,
            status=status,
            data=data,
            error=error or invalid_reason or f"HTTP {status}",
            invalid_reason=invalid_reason,
            error_type=ProtocolError.error_type,
            paid=paid,
        )
