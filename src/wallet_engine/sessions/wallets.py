"""Per-wallet rules: amount limits, payer phone format, presentation shape.

Provider differences are resolved here, once, when a session is created.
Everything downstream handles a provider-tagged Presentation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal

from wallet_engine.errors import SessionCreationFailed
from wallet_engine.sessions.types import Presentation, WalletProvider

_PHONE_PATTERN = re.compile(r"^(77|78|76|70|75)\d{7}$")
_PHONE_NOISE = re.compile(r"[\s\-()]")
_QR_PREFIX = "data:image/png;base64,"


@dataclass(frozen=True)
class WalletConfig:
    """
    Gateway-facing rules for one wallet provider.

    Attributes:
        provider: The wallet this configuration applies to.
        gateway_method: Method code sent to the gateway ("OM", "WAVE").
        service_name: Gateway service routing name.
        min_amount / max_amount: Inclusive bounds for one collection.
        phone_prefixes: Operator prefixes accepted for the payer phone.
        requires_native_link: Session payload must carry a provider deep link.
        requires_web_link: Session payload must carry a web payment link.
    """

    provider: WalletProvider
    gateway_method: str
    service_name: str
    min_amount: Decimal = Decimal("100")
    max_amount: Decimal = Decimal("5000000")
    phone_prefixes: tuple[str, ...] = ("77", "78", "76", "70", "75")
    requires_native_link: bool = False
    requires_web_link: bool = False

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.min_amount <= 0:
            raise ValueError("min_amount must be positive")
        if self.max_amount < self.min_amount:
            raise ValueError("max_amount cannot be lower than min_amount")
        if not self.gateway_method:
            raise ValueError("gateway_method is required")
        if not self.phone_prefixes:
            raise ValueError("phone_prefixes cannot be empty")


DEFAULT_WALLETS: dict[WalletProvider, WalletConfig] = {
    WalletProvider.WALLET_A: WalletConfig(
        provider=WalletProvider.WALLET_A,
        gateway_method="OM",
        service_name="OFMS",
        max_amount=Decimal("2000000"),
        phone_prefixes=("77", "78"),
        requires_native_link=True,
    ),
    WalletProvider.WALLET_B: WalletConfig(
        provider=WalletProvider.WALLET_B,
        gateway_method="WAVE",
        service_name="INTOUCH",
        requires_web_link=True,
    ),
}


def normalize_phone(phone: str) -> str:
    """Strip separators and the +221/221 country prefix."""
    cleaned = _PHONE_NOISE.sub("", phone)
    if cleaned.startswith("+221"):
        cleaned = cleaned[4:]
    elif cleaned.startswith("221") and len(cleaned) == 12:
        cleaned = cleaned[3:]
    return cleaned


def validate_phone(phone: str, config: WalletConfig) -> str:
    """Return the normalized phone, or raise SessionCreationFailed."""
    normalized = normalize_phone(phone)
    if not _PHONE_PATTERN.match(normalized):
        raise SessionCreationFailed(
            f"Invalid payer phone number {phone!r}; expected format 77XXXXXXX"
        )
    if normalized[:2] not in config.phone_prefixes:
        raise SessionCreationFailed(
            f"{config.provider.value} requires a number starting with "
            f"{', '.join(config.phone_prefixes)}"
        )
    return normalized


def validate_amount(amount: Decimal, config: WalletConfig) -> None:
    """Raise SessionCreationFailed if the amount is outside the wallet limits."""
    if amount < config.min_amount:
        raise SessionCreationFailed(
            f"Minimum amount for {config.provider.value} is {config.min_amount}"
        )
    if amount > config.max_amount:
        raise SessionCreationFailed(
            f"Maximum amount for {config.provider.value} is {config.max_amount}"
        )


def format_qr_code(qr_code: str) -> str:
    """Normalize a gateway QR payload into a data URI."""
    if not qr_code:
        return ""
    if qr_code.startswith("data:image"):
        return qr_code
    return f"{_QR_PREFIX}{qr_code}"


def build_presentation(
    config: WalletConfig,
    *,
    qr_code: str,
    deep_link_primary: str | None,
    deep_link_fallback: str | None,
) -> Presentation:
    """Validate a new session's payload against the wallet's link shape."""
    if not qr_code and not deep_link_primary and not deep_link_fallback:
        raise SessionCreationFailed(
            f"Gateway returned no payment artifact for {config.provider.value}"
        )
    if config.requires_native_link and not deep_link_primary:
        raise SessionCreationFailed(
            f"Gateway returned no native deep link for {config.provider.value}"
        )
    if config.requires_web_link and not deep_link_fallback:
        raise SessionCreationFailed(
            f"Gateway returned no payment link for {config.provider.value}"
        )
    if not config.requires_native_link:
        deep_link_primary = None

    return Presentation(
        provider=config.provider,
        qr_code=format_qr_code(qr_code),
        deep_link_primary=deep_link_primary,
        deep_link_fallback=deep_link_fallback,
    )
