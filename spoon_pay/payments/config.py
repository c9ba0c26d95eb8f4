from __future__ import annotations

import os
import re
from decimal import Decimal, ROUND_DOWN
from typing import Any, Callable, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator
from x402.chains import get_chain_id

from spoon_pay.utils.config_manager import ConfigManager

from .exceptions import ConfigError
from .models import PaymentTerms, TokenDomain, checksum_address

_HEX_KEY_PATTERN = re.compile(r"^(0x)?[a-fA-F0-9]{64}$")

DEFAULT_NEW_REQUEST_KEYWORDS = (
    "weather",
    "temperature",
    "forecast",
    "climate",
    "weather report",
    "weather forecast",
)


def normalize_private_key(value: str) -> str:
    key = value.strip()
    return key if key.startswith("0x") else f"0x{key}"


class PaymentClientConfig(BaseModel):
    """Signing key configuration for outbound payments."""

    private_key: Optional[SecretStr] = Field(default=None, description="0x-prefixed hex private key")
    private_key_env: str = Field(default="X402_AGENT_PRIVATE_KEY")

    @classmethod
    def from_raw(cls, raw: Optional[Dict[str, Any]] = None) -> "PaymentClientConfig":
        raw = raw or {}
        private_key_env = raw.get("private_key_env") or "X402_AGENT_PRIVATE_KEY"
        private_key = (
            raw.get("private_key")
            or os.getenv(private_key_env)
            or os.getenv("X402_AGENT_PRIVATE_KEY")
            or os.getenv("PRIVATE_KEY")
        )
        return cls(private_key=private_key, private_key_env=private_key_env)

    def key_source(self) -> Callable[[], str]:
        """Return a callable that yields the normalized key at signing time.

        Raises ConfigError immediately when no usable key is configured.
        """
        if self.private_key is None or not self.private_key.get_secret_value().strip():
            raise ConfigError(
                f"Payment signing key not configured. Set {self.private_key_env} or configure x402.client.private_key."
            )
        if not _HEX_KEY_PATTERN.match(self.private_key.get_secret_value().strip()):
            raise ConfigError(f"{self.private_key_env} is not a 32-byte hex private key")
        secret = self.private_key
        return lambda: normalize_private_key(secret.get_secret_value())


class PaymentSettings(BaseModel):
    """Resolved configuration for the approval-gated payment engine."""

    network: str = Field(default="base-sepolia")
    scheme: str = Field(default="exact")

    asset: str = Field(default="0x036CbD53842c5426634e7929541eC2318f3dCF7e")
    asset_name: str = Field(default="USDC", description="EIP-712 domain name of the token")
    asset_version: str = Field(default="2")
    asset_symbol: str = Field(default="USDC")
    asset_decimals: int = Field(default=6)
    chain_id: Optional[int] = Field(default=None, description="Defaults to the chain id of `network`")

    pay_to: str = Field(default="0x903918bB1903714E0518Ea2122aCeBfa27f11b6F")
    resource: str = Field(default="https://api-qvuk23ycha-uc.a.run.app/weather")
    resource_label: str = Field(default="weather reports")
    description: str = Field(default="Weather report")
    amount: Decimal = Field(default=Decimal("0.001"), description="Price in whole-token units")
    max_amount: Optional[Decimal] = Field(default=Decimal("0.10"), description="Refuse terms above this")
    negotiate_terms: bool = Field(default=False, description="Read terms from the resource's 402 challenge")

    request_timeout: float = Field(default=10.0, gt=0)
    max_retries: int = Field(default=2, ge=0)

    history_window: int = Field(default=10, gt=0)
    prompt_ttl_seconds: Optional[float] = Field(default=900.0)
    action_label: str = Field(default="PAID_RESOURCE_REQUEST")
    request_keywords: tuple[str, ...] = Field(default=DEFAULT_NEW_REQUEST_KEYWORDS)

    client: PaymentClientConfig = Field(default_factory=PaymentClientConfig)

    @field_validator("resource")
    @classmethod
    def _ensure_http_scheme(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ConfigError("Resource URL must start with http:// or https://")
        return value.rstrip("/")

    @field_validator("asset", "pay_to")
    @classmethod
    def _checksum(cls, value: str) -> str:
        return checksum_address(value)

    @property
    def resolved_chain_id(self) -> int:
        if self.chain_id is not None:
            return self.chain_id
        try:
            return int(get_chain_id(self.network))
        except Exception as exc:
            raise ConfigError(f"Unknown network {self.network!r}; set X402_CHAIN_ID explicitly") from exc

    def to_atomic(self, amount: Decimal) -> int:
        scaled = (amount * (Decimal(10) ** self.asset_decimals)).quantize(Decimal("1"), rounding=ROUND_DOWN)
        return int(scaled)

    @property
    def amount_atomic(self) -> int:
        return self.to_atomic(self.amount)

    @property
    def max_amount_atomic(self) -> Optional[int]:
        if self.max_amount is None:
            return None
        return self.to_atomic(self.max_amount)

    def token_domain(self) -> TokenDomain:
        """Build the EIP-712 domain as a single unit from the asset settings."""
        return TokenDomain(
            name=self.asset_name,
            version=self.asset_version,
            chain_id=self.resolved_chain_id,
            verifying_contract=self.asset,
        )

    def payment_terms(self) -> PaymentTerms:
        return PaymentTerms(
            amount_atomic=self.amount_atomic,
            pay_to=self.pay_to,
            asset=self.asset,
            asset_name=self.asset_symbol,
            decimals=self.asset_decimals,
            network=self.network,
            scheme=self.scheme,
            resource=self.resource,
            description=self.description,
        )

    @classmethod
    def load(cls, config_manager: Optional[ConfigManager] = None, *, dotenv: bool = True) -> "PaymentSettings":
        """Load settings from config.json with environment overrides."""
        if dotenv:
            load_dotenv()
        manager = config_manager or ConfigManager()
        raw_config = manager.get("x402", {}) or {}
        defaults = cls.model_fields

        def pick(env_name: str, key: str) -> Any:
            return os.getenv(env_name, raw_config.get(key, defaults[key].default))

        asset_metadata = raw_config.get("asset_metadata", {}) or {}
        chain_id = os.getenv("X402_CHAIN_ID", raw_config.get("chain_id"))
        max_amount = os.getenv("X402_MAX_AMOUNT_USDC", raw_config.get("max_amount", defaults["max_amount"].default))
        ttl = raw_config.get("prompt_ttl_seconds", defaults["prompt_ttl_seconds"].default)
        keywords = raw_config.get("request_keywords")

        try:
            return cls(
                network=pick("X402_DEFAULT_NETWORK", "network"),
                scheme=pick("X402_DEFAULT_SCHEME", "scheme"),
                asset=pick("X402_DEFAULT_ASSET", "asset"),
                asset_name=asset_metadata.get("name", defaults["asset_name"].default),
                asset_version=asset_metadata.get("version", defaults["asset_version"].default),
                asset_symbol=asset_metadata.get("symbol", defaults["asset_symbol"].default),
                asset_decimals=int(raw_config.get("asset_decimals", defaults["asset_decimals"].default)),
                chain_id=int(chain_id) if chain_id is not None else None,
                pay_to=pick("X402_RECEIVER_ADDRESS", "pay_to"),
                resource=pick("X402_RESOURCE_URL", "resource"),
                resource_label=raw_config.get("resource_label", defaults["resource_label"].default),
                description=raw_config.get("description", defaults["description"].default),
                amount=Decimal(str(pick("X402_DEFAULT_AMOUNT_USDC", "amount"))),
                max_amount=Decimal(str(max_amount)) if max_amount is not None else None,
                negotiate_terms=str(pick("X402_NEGOTIATE_TERMS", "negotiate_terms")).lower() in {"1", "true", "yes"},
                request_timeout=float(pick("X402_REQUEST_TIMEOUT", "request_timeout")),
                max_retries=int(pick("X402_MAX_RETRIES", "max_retries")),
                history_window=int(raw_config.get("history_window", defaults["history_window"].default)),
                prompt_ttl_seconds=float(ttl) if ttl is not None else None,
                action_label=raw_config.get("action_label", defaults["action_label"].default),
                request_keywords=tuple(keywords) if keywords else DEFAULT_NEW_REQUEST_KEYWORDS,
                client=PaymentClientConfig.from_raw(raw_config.get("client")),
            )
        except (ValidationError, ArithmeticError, ValueError) as exc:
            raise ConfigError(f"Invalid x402 configuration: {exc}") from exc
