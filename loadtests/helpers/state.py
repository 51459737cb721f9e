"""Per-user state tracking for Locust load test scenarios.

Each Locust user instance maintains its own state; no cross-user sharing.
State tracks entity IDs returned by creation endpoints so follow-up
operations can reference them.
"""

from dataclasses import dataclass, field


@dataclass
class CheckoutState:
    """Tracks one cart through checkout, payment and fulfilment."""

    product_ids: list[str] = field(default_factory=list)
    cart_id: str | None = None
    order_id: str | None = None
    order_status: str | None = None
    payment_id: str | None = None
    provider_order_id: str | None = None
    total: int = 0
