"""Process-wide settings, read from the environment once at startup."""

import json
import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.environ.get(name)
    if not value:
        return default
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class ShippingTier:
    max_subtotal: int | None
    cost: int


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    currency: str = "INR"

    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_webhook_secret: str = ""
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    gateway_timeout_seconds: float = 10.0

    payment_methods: tuple[str, ...] = ("cod", "razorpay", "stripe")

    # Amounts are integer minor units
    shipping_method: str = "flat"
    shipping_flat_rate: int = 5000
    free_shipping_threshold: int = 0
    shipping_tiers: tuple[ShippingTier, ...] = field(default_factory=tuple)
    tax_enabled: bool = False
    tax_rate: float = 0.0
    min_order_value: int = 0

    cart_ttl_hours: int = 72
    max_quantity_per_item: int = 10

    ledger_database_url: str = ""

    # bearer token -> "user_id" or "user_id:admin"
    api_tokens: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "Settings":
        tiers = tuple(
            ShippingTier(max_subtotal=tier.get("max_subtotal"), cost=int(tier["cost"]))
            for tier in json.loads(os.environ.get("SHIPPING_TIERS", "[]"))
        )
        return cls(
            environment=os.environ.get("PROTEAN_ENV", "development"),
            currency=os.environ.get("CURRENCY", "INR"),
            razorpay_key_id=os.environ.get("RAZORPAY_KEY_ID", ""),
            razorpay_key_secret=os.environ.get("RAZORPAY_KEY_SECRET", ""),
            razorpay_webhook_secret=os.environ.get("RAZORPAY_WEBHOOK_SECRET", ""),
            stripe_secret_key=os.environ.get("STRIPE_SECRET_KEY", ""),
            stripe_webhook_secret=os.environ.get("STRIPE_WEBHOOK_SECRET", ""),
            gateway_timeout_seconds=float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "10")),
            payment_methods=_env_list("PAYMENT_METHODS", ("cod", "razorpay", "stripe")),
            shipping_method=os.environ.get("SHIPPING_METHOD", "flat"),
            shipping_flat_rate=_env_int("SHIPPING_FLAT_RATE", 5000),
            free_shipping_threshold=_env_int("FREE_SHIPPING_THRESHOLD", 0),
            shipping_tiers=tiers,
            tax_enabled=_env_bool("TAX_ENABLED", False),
            tax_rate=float(os.environ.get("TAX_RATE", "0")),
            min_order_value=_env_int("MIN_ORDER_VALUE", 0),
            cart_ttl_hours=_env_int("CART_TTL_HOURS", 72),
            max_quantity_per_item=_env_int("MAX_QUANTITY_PER_ITEM", 10),
            ledger_database_url=os.environ.get("LEDGER_DATABASE_URL", ""),
            api_tokens=json.loads(os.environ.get("API_TOKENS", "{}")),
        )
