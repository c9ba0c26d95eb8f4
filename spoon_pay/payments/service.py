from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional, Union

from pydantic import ValidationError
from x402.types import PaymentRequirements, x402PaymentRequiredResponse

from .authorization import build_authorization
from .config import PaymentSettings
from .encoding import PaymentEncoder
from .exceptions import ConfigError, InvalidAmount, PaymentError
from .models import PaymentOutcome, PaymentTerms, TokenDomain
from .nonce import NonceSource, create_nonce
from .signer import TypedDataSigner
from .transport import PaymentTransport

logger = logging.getLogger(__name__)


class PaymentService:
    """Runs the build -> sign -> encode -> send pipeline for approved payments."""

    def __init__(
        self,
        settings: Optional[PaymentSettings] = None,
        signer: Optional[TypedDataSigner] = None,
        transport: Optional[PaymentTransport] = None,
        encoder: Optional[PaymentEncoder] = None,
        nonce_source: NonceSource = create_nonce,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or PaymentSettings.load()
        self.domain: TokenDomain = signer.domain if signer else self.settings.token_domain()
        self.transport = transport or PaymentTransport.from_settings(self.settings)
        self.encoder = encoder or PaymentEncoder(self.settings.network, self.settings.scheme)
        self.nonce_source = nonce_source
        self.clock = clock
        self._signer = signer

    # ------------------------------------------------------------------ #
    # Configuration helpers
    # ------------------------------------------------------------------ #
    def _get_signer(self) -> TypedDataSigner:
        if self._signer is None:
            self._signer = TypedDataSigner(self.domain, self.settings.client.key_source())
        return self._signer

    def configured_terms(self) -> PaymentTerms:
        return self.settings.payment_terms()

    async def resolve_terms(self) -> PaymentTerms:
        """Terms for the next prompt: the resource's 402 challenge when negotiation is on."""
        if not self.settings.negotiate_terms:
            return self.configured_terms()

        challenge = await self.transport.fetch_payment_challenge(self.settings.resource)
        if challenge is None:
            logger.info("Resource issued no payment challenge; using configured terms")
            return self.configured_terms()

        requirement = self._select_requirements(challenge, self.settings.scheme, self.settings.network)
        if requirement is None:
            raise ConfigError(
                f"Payment challenge offers no {self.settings.scheme}/{self.settings.network} option"
            )
        return self.terms_from_requirement(requirement)

    @staticmethod
    def _select_requirements(
        challenge: x402PaymentRequiredResponse,
        scheme: str,
        network: str,
    ) -> Optional[PaymentRequirements]:
        for candidate in challenge.accepts:
            if candidate.scheme == scheme and candidate.network == network:
                return candidate
        return None

    def terms_from_requirement(self, requirement: Union[PaymentRequirements, Dict[str, Any]]) -> PaymentTerms:
        """Convert one ``accepts`` entry of a 402 challenge into payment terms.

        The token stays the configured one: a challenge naming another asset,
        another EIP-712 name/version or other decimals is refused rather than
        partially merged.
        """
        try:
            if not isinstance(requirement, PaymentRequirements):
                requirement = PaymentRequirements.model_validate(requirement)
            terms = PaymentTerms(
                amount_atomic=int(requirement.max_amount_required),
                pay_to=requirement.pay_to,
                asset=requirement.asset,
                asset_name=self.settings.asset_symbol,
                decimals=self.settings.asset_decimals,
                network=requirement.network,
                scheme=requirement.scheme,
                resource=requirement.resource or self.settings.resource,
                description=requirement.description or self.settings.description,
            )
        except (ValidationError, ValueError) as exc:
            raise ConfigError(f"Unusable payment challenge: {exc}") from exc

        self._check_terms(terms)
        extra = requirement.extra or {}
        if extra.get("name", self.domain.name) != self.domain.name or extra.get(
            "version", self.domain.version
        ) != self.domain.version:
            raise ConfigError(
                f"Challenge token domain {extra.get('name')!r}/{extra.get('version')!r} does not match "
                f"configured {self.domain.name!r}/{self.domain.version!r}"
            )
        decimals = extra.get("decimals")
        if decimals is not None and str(decimals) != str(self.settings.asset_decimals):
            raise ConfigError(
                f"Challenge declares {decimals!r} decimals for {terms.asset}, "
                f"configured asset has {self.settings.asset_decimals}"
            )
        return terms

    def _check_terms(self, terms: PaymentTerms) -> None:
        if terms.asset != self.domain.verifying_contract:
            raise ConfigError(
                f"Terms ask for asset {terms.asset}, but the signer is bound to {self.domain.verifying_contract}"
            )
        if terms.network != self.encoder.network or terms.scheme != self.encoder.scheme:
            raise ConfigError(
                f"Terms ask for {terms.scheme}/{terms.network}, but payments are encoded for "
                f"{self.encoder.scheme}/{self.encoder.network}"
            )
        max_atomic = self.settings.max_amount_atomic
        if max_atomic is not None and terms.amount_atomic > max_atomic:
            raise InvalidAmount(
                f"Payment requirement exceeds allowed maximum: required {terms.amount_atomic}, max_value {max_atomic}."
            )

    # ------------------------------------------------------------------ #
    # Pipeline
    # ------------------------------------------------------------------ #
    async def pay(self, terms: Optional[PaymentTerms] = None) -> PaymentOutcome:
        """Build, sign, verify, encode and send one payment for ``terms``.

        Failures come back as an unsuccessful outcome with ``error_type`` set;
        nothing is retried with the same authorization.
        """
        terms = terms or self.configured_terms()
        try:
            self._check_terms(terms)
            signer = self._get_signer()
            now = int(self.clock())
            logger.info("Processing payment with wallet %s", signer.address)
            authorization = build_authorization(
                payer=signer.address,
                payee=terms.pay_to,
                amount=terms.amount_atomic,
                now=now,
                nonce_source=self.nonce_source,
            )
            logger.info("Signing EIP-3009 authorization...")
            signed = await asyncio.to_thread(signer.sign, authorization, now)
            header_value = self.encoder.encode(signed)
        except PaymentError as exc:
            logger.error("Payment processing failed before sending: %s", exc)
            return PaymentOutcome.from_error(exc)

        outcome = await self.transport.request_with_payment(terms.resource, header_value)
        if outcome.success:
            logger.info("Payment successful, resource received")
        else:
            logger.error("Payment failed: %s", outcome.error)
        return outcome

    async def fetch_without_payment(self, terms: Optional[PaymentTerms] = None) -> PaymentOutcome:
        terms = terms or self.configured_terms()
        return await self.transport.request_without_payment(terms.resource)
