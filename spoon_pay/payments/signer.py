"""
EIP-712 signing of EIP-3009 ``TransferWithAuthorization`` messages.

The typed-data layout below is part of the token contract's interface: the
field order, names and types must match what the contract hashes, otherwise
the facilitator rejects the payment even though local recovery succeeds.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data

from .config import PaymentSettings
from .exceptions import ConfigError, SignatureError
from .models import Authorization, SignedAuthorization, TokenDomain

logger = logging.getLogger(__name__)

PRIMARY_TYPE = "TransferWithAuthorization"

EIP712_DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

TRANSFER_WITH_AUTHORIZATION_FIELDS = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
    {"name": "nonce", "type": "bytes32"},
]


def build_typed_data(domain: TokenDomain, authorization: Authorization) -> Dict[str, Any]:
    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_FIELDS,
            PRIMARY_TYPE: TRANSFER_WITH_AUTHORIZATION_FIELDS,
        },
        "primaryType": PRIMARY_TYPE,
        "domain": domain.to_eip712(),
        "message": authorization.to_message(),
    }


def encode_authorization(domain: TokenDomain, authorization: Authorization) -> SignableMessage:
    return encode_typed_data(full_message=build_typed_data(domain, authorization))


def recover_authorization_signer(domain: TokenDomain, signed: SignedAuthorization) -> str:
    """Recover the address that produced ``signed.signature`` under ``domain``.

    Raises:
        SignatureError: If the signature cannot be recovered at all.
    """
    signable = encode_authorization(domain, signed.authorization)
    try:
        return Account.recover_message(signable, signature=bytes.fromhex(signed.signature[2:]))
    except Exception as exc:
        raise SignatureError(f"Unable to recover signer from signature: {exc}") from exc


class TypedDataSigner:
    """Signs transfer authorizations for one account under one token domain.

    The private key is pulled from ``key_source`` for each signing call and
    not kept on the instance.
    """

    def __init__(self, domain: TokenDomain, key_source: Callable[[], str]):
        self.domain = domain
        self._key_source = key_source
        try:
            self._address = Account.from_key(key_source()).address
        except ValueError as exc:
            raise ConfigError(f"Invalid signing key: {exc}") from None

    @classmethod
    def from_settings(cls, settings: PaymentSettings) -> "TypedDataSigner":
        return cls(settings.token_domain(), settings.client.key_source())

    @property
    def address(self) -> str:
        return self._address

    def __repr__(self) -> str:
        return f"TypedDataSigner(address={self._address!r}, chain_id={self.domain.chain_id})"

    def _sign_typed_data(self, signable: SignableMessage) -> bytes:
        signed = Account.sign_message(signable, private_key=self._key_source())
        return bytes(signed.signature)

    def sign(self, authorization: Authorization, now: Optional[int] = None) -> SignedAuthorization:
        """Sign ``authorization`` and prove the signature recovers to this account.

        Raises:
            SignatureError: If the authorization does not belong to this account,
                is outside its validity window, or the fresh signature does not
                recover to :attr:`address`.
        """
        if authorization.from_address != self._address:
            raise SignatureError(
                f"Authorization payer {authorization.from_address} does not match signing account {self._address}"
            )
        if now is None:
            now = int(time.time())
        if not authorization.is_valid_at(now):
            raise SignatureError("Refusing to sign an authorization outside its validity window")

        signature = self._sign_typed_data(encode_authorization(self.domain, authorization))
        signed = SignedAuthorization(signature="0x" + signature.hex(), authorization=authorization)
        logger.info("Signature created: %s...", signed.signature[:20])

        recovered = recover_authorization_signer(self.domain, signed)
        if recovered != self._address:
            logger.error("Signature verification failed: recovered %s, expected %s", recovered, self._address)
            raise SignatureError("Signature verification failed")

        logger.info("Signature verified successfully")
        return signed

    def recover(self, signed: SignedAuthorization) -> str:
        return recover_authorization_signer(self.domain, signed)

    def verify(
        self,
        signed: SignedAuthorization,
        expected: Optional[str] = None,
        now: Optional[int] = None,
    ) -> bool:
        """Check signer identity and, when ``now`` is given, the validity window."""
        expected_address = expected or self._address
        try:
            recovered = self.recover(signed)
        except SignatureError:
            return False
        if recovered.lower() != expected_address.lower():
            return False
        if recovered != signed.authorization.from_address:
            return False
        if now is not None and not signed.authorization.is_valid_at(now):
            return False
        return True
