"""Order pricing: shipping, tax and the minimum order value.

All amounts are integer minor units. ``quote()`` returns the dict that
becomes the order's frozen ``OrderPricing``.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from protean.exceptions import ValidationError

from orderflow.config import Settings, ShippingTier

EXPRESS_MULTIPLIER = 2


@dataclass(frozen=True)
class PricingPolicy:
    currency: str = "INR"
    shipping_method: str = "flat"  # free | flat | tiered
    flat_rate: int = 5000
    free_threshold: int = 0  # 0 disables free shipping
    tiers: tuple[ShippingTier, ...] = ()
    tax_enabled: bool = False
    tax_rate: float = 0.0
    min_order_value: int = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "PricingPolicy":
        return cls(
            currency=settings.currency,
            shipping_method=settings.shipping_method,
            flat_rate=settings.shipping_flat_rate,
            free_threshold=settings.free_shipping_threshold,
            tiers=settings.shipping_tiers,
            tax_enabled=settings.tax_enabled,
            tax_rate=settings.tax_rate,
            min_order_value=settings.min_order_value,
        )

    def shipping_cost(self, after_discount: int, shipping_method: str = "standard") -> int:
        if self.shipping_method == "free":
            cost = 0
        elif self.shipping_method == "tiered":
            cost = next(
                (tier.cost for tier in self.tiers if tier.max_subtotal is None or after_discount <= tier.max_subtotal),
                0,
            )
        else:
            cost = 0 if self.free_threshold and after_discount >= self.free_threshold else self.flat_rate

        if shipping_method == "express":
            cost *= EXPRESS_MULTIPLIER
        return cost

    def tax(self, after_discount: int) -> int:
        if not self.tax_enabled or not self.tax_rate:
            return 0
        amount = Decimal(after_discount) * Decimal(str(self.tax_rate)) / Decimal(100)
        return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))

    def quote(self, subtotal: int, discount_amount: int = 0, discount_code=None, shipping_method="standard") -> dict:
        discount_amount = min(discount_amount or 0, subtotal)
        after_discount = subtotal - discount_amount
        if after_discount < self.min_order_value:
            raise ValidationError(
                {"cart": [f"Minimum order value is {self.min_order_value}, cart totals {after_discount}"]}
            )

        shipping = self.shipping_cost(after_discount, shipping_method)
        tax = self.tax(after_discount)
        return {
            "subtotal": subtotal,
            "discount_code": discount_code if discount_amount else None,
            "discount_amount": discount_amount,
            "shipping_cost": shipping,
            "tax_amount": tax,
            "total": after_discount + shipping + tax,
            "currency": self.currency,
        }
