"""Single-use nonces for transfer authorizations."""

import secrets
from typing import Callable

NONCE_BYTES = 32

NonceSource = Callable[[], str]


def create_nonce() -> str:
    """Return a fresh 32-byte nonce from the OS CSPRNG as ``0x``-prefixed hex."""
    return "0x" + secrets.token_bytes(NONCE_BYTES).hex()
