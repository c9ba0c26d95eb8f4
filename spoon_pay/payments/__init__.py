from .authorization import VALID_AFTER_SKEW_SECONDS, VALIDITY_SECONDS, build_authorization
from .config import PaymentClientConfig, PaymentSettings
from .encoding import (
    PAYMENT_HEADER,
    PAYMENT_RESPONSE_HEADER,
    PaymentEncoder,
    build_payment_payload,
    decode_payment_header,
    decode_payment_response,
    encode_payment_header,
)
from .exceptions import (
    ConfigError,
    InvalidAmount,
    PaymentError,
    ProtocolError,
    SignatureError,
    StateError,
    TransportError,
)
from .models import (
    Authorization,
    PaymentOutcome,
    PaymentPrompt,
    PaymentReceipt,
    PaymentTerms,
    SignedAuthorization,
    TokenDomain,
)
from .nonce import create_nonce
from .service import PaymentService
from .signer import TypedDataSigner, recover_authorization_signer
from .transport import PaymentTransport

__all__ = [
    "Authorization",
    "ConfigError",
    "InvalidAmount",
    "PAYMENT_HEADER",
    "PAYMENT_RESPONSE_HEADER",
    "PaymentClientConfig",
    "PaymentEncoder",
    "PaymentError",
    "PaymentOutcome",
    "PaymentPrompt",
    "PaymentReceipt",
    "PaymentService",
    "PaymentSettings",
    "PaymentTerms",
    "PaymentTransport",
    "ProtocolError",
    "SignatureError",
    "SignedAuthorization",
    "StateError",
    "TokenDomain",
    "TransportError",
    "TypedDataSigner",
    "VALIDITY_SECONDS",
    "VALID_AFTER_SKEW_SECONDS",
    "build_authorization",
    "build_payment_payload",
    "create_nonce",
    "decode_payment_header",
    "decode_payment_response",
    "encode_payment_header",
    "recover_authorization_signer",
]
