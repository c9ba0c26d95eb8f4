from __future__ import annotations

import logging
import time
from typing import Optional

from .exceptions import InvalidAmount
from .models import Authorization
from .nonce import NonceSource, create_nonce

logger = logging.getLogger(__name__)

# Tolerate payer clocks running up to ten minutes ahead of the verifier.
VALID_AFTER_SKEW_SECONDS = 600
VALIDITY_SECONDS = 3600


def build_authorization(
    payer: str,
    payee: str,
    amount: int,
    now: Optional[int] = None,
    nonce_source: NonceSource = create_nonce,
) -> Authorization:
    """Assemble an unsigned transfer authorization.

    Args:
        payer: Address of the signing account (the key is not needed here).
        payee: Address receiving the transfer.
        amount: Amount in the token's smallest unit.
        now: Current unix time in seconds; defaults to the system clock.
        nonce_source: Callable returning a fresh 32-byte hex nonce.

    Raises:
        InvalidAmount: If ``amount`` is not a positive integer.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"Payment amount must be a positive integer of atomic units, got {amount!r}")

    if now is None:
        now = int(time.time())

    authorization = Authorization(
        from_address=payer,
        to=payee,
        value=amount,
        valid_after=now - VALID_AFTER_SKEW_SECONDS,
        valid_before=now + VALIDITY_SECONDS,
        nonce=nonce_source(),
    )
    logger.debug(
        "Built authorization value=%s validAfter=%s validBefore=%s",
        authorization.value,
        authorization.valid_after,
        authorization.valid_before,
    )
    return authorization
