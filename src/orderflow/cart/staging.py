"""Cart Staging: re-validate a cart against the live catalogue before checkout.

Two-tier policy: a stock shortfall blocks checkout, a price drift does not.
Drifted prices are refreshed on the cart and reported so the customer sees
what changed. Lines whose product vanished or was deactivated are dropped.
"""

from dataclasses import dataclass, field

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from orderflow.cart.cart import CartStatus, ShoppingCart
from orderflow.catalogue.lookup import resolve_line
from orderflow.inventory.coordinator import InventoryCoordinator

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PriceChange:
    item_id: str
    product_id: str
    variant_sku: str | None
    name: str
    old_price: int
    new_price: int


@dataclass(frozen=True)
class RemovedItem:
    item_id: str
    product_id: str
    variant_sku: str | None
    reason: str


@dataclass(frozen=True)
class StockShortfall:
    item_id: str
    product_id: str
    variant_sku: str | None
    name: str
    requested: int
    available: int

    @property
    def message(self) -> str:
        return f"Only {self.available} available for {self.name} (requested {self.requested})"


@dataclass
class StagingReport:
    errors: list[str] = field(default_factory=list)
    shortfalls: list[StockShortfall] = field(default_factory=list)
    price_changes: list[PriceChange] = field(default_factory=list)
    removed_items: list[RemovedItem] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


class CartStaging:
    def __init__(self, inventory: InventoryCoordinator):
        self.inventory = inventory

    def stage(self, cart: ShoppingCart) -> StagingReport:
        """Validate every line, drop dead lines, refresh prices and persist the cart."""
        if CartStatus(cart.status) != CartStatus.ACTIVE:
            raise ValidationError({"cart": ["Only an active cart can be checked out"]})
        if cart.is_expired():
            raise ValidationError({"cart": ["Cart has expired"]})
        if not cart.items:
            raise ValidationError({"cart": ["Cart is empty"]})

        report = StagingReport()
        for item in cart.lines():
            resolution = resolve_line(item.product_id, item.variant_sku)
            if resolution is None or not resolution.is_active:
                report.removed_items.append(
                    RemovedItem(
                        item_id=str(item.id),
                        product_id=str(item.product_id),
                        variant_sku=item.variant_sku,
                        reason="Product no longer available" if resolution is None else "Product is not active",
                    )
                )
                continue

            if resolution.track_inventory:
                unit = self.inventory.level(str(item.product_id), item.variant_sku)
                available = unit.quantity if unit is not None else 0
                if available < item.quantity:
                    shortfall = StockShortfall(
                        item_id=str(item.id),
                        product_id=str(item.product_id),
                        variant_sku=item.variant_sku,
                        name=resolution.name,
                        requested=item.quantity,
                        available=available,
                    )
                    report.shortfalls.append(shortfall)
                    report.errors.append(shortfall.message)

            if resolution.unit_price != item.price_at_add:
                report.price_changes.append(
                    PriceChange(
                        item_id=str(item.id),
                        product_id=str(item.product_id),
                        variant_sku=item.variant_sku,
                        name=resolution.name,
                        old_price=item.price_at_add,
                        new_price=resolution.unit_price,
                    )
                )
                cart.reprice_item(item.id, resolution.unit_price)

        for removed in report.removed_items:
            cart.remove_item(removed.item_id, reason=removed.reason)

        if not cart.items:
            report.errors.append("Cart is empty after removing unavailable items")

        current_domain.repository_for(ShoppingCart).add(cart)

        logger.info(
            "cart_staged",
            cart_id=str(cart.id),
            valid=report.valid,
            shortfalls=len(report.shortfalls),
            price_changes=len(report.price_changes),
            removed=len(report.removed_items),
        )
        return report
