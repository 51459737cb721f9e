"""Inventory Coordinator: atomic commit/restore of per-variant stock.

Stock is committed late, at payment confirmation (or immediately for cash on
delivery), never at order creation.
"""

from dataclasses import dataclass

import structlog

from orderflow.errors import InsufficientStock
from orderflow.inventory.ledger import NO_VARIANT, StockLedger, StockUnit

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StockLine:
    product_id: str
    variant_key: str | None
    quantity: int


class InventoryCoordinator:
    def __init__(self, ledger: StockLedger):
        self.ledger = ledger

    def register(
        self,
        product_id: str,
        variant_key: str | None = None,
        quantity: int = 0,
        track_inventory: bool = True,
    ) -> StockUnit:
        unit = self.ledger.put(
            StockUnit(
                product_id=product_id,
                variant_key=variant_key or NO_VARIANT,
                quantity=quantity,
                is_available=quantity > 0,
                track_inventory=track_inventory,
            )
        )
        logger.info(
            "stock_registered",
            product_id=product_id,
            variant_key=variant_key,
            quantity=quantity,
            track_inventory=track_inventory,
        )
        return unit

    def level(self, product_id: str, variant_key: str | None = None) -> StockUnit | None:
        return self.ledger.get(product_id, variant_key or NO_VARIANT)

    def commit(self, product_id: str, variant_key: str | None, quantity: int) -> StockUnit:
        """Decrement stock in one conditional step or raise InsufficientStock."""
        unit = self.ledger.decrement(product_id, variant_key or NO_VARIANT, quantity)
        if unit is None:
            current = self.level(product_id, variant_key)
            available = current.quantity if current is not None else 0
            logger.warning(
                "stock_commit_rejected",
                product_id=product_id,
                variant_key=variant_key,
                requested=quantity,
                available=available,
            )
            raise InsufficientStock(product_id, variant_key, quantity, available)

        logger.info(
            "stock_committed",
            product_id=product_id,
            variant_key=variant_key,
            quantity=quantity,
            remaining=unit.quantity,
        )
        return unit

    def restore(self, product_id: str, variant_key: str | None, quantity: int) -> StockUnit | None:
        unit = self.ledger.increment(product_id, variant_key or NO_VARIANT, quantity)
        if unit is None:
            logger.warning("stock_restore_unknown_unit", product_id=product_id, variant_key=variant_key)
        else:
            logger.info(
                "stock_restored",
                product_id=product_id,
                variant_key=variant_key,
                quantity=quantity,
                remaining=unit.quantity,
            )
        return unit

    def commit_all(self, lines: list[StockLine]) -> list[StockLine]:
        """Commit every line or none of them.

        Lines committed before a shortfall are restored before the
        InsufficientStock error propagates.
        """
        committed: list[StockLine] = []
        try:
            for line in lines:
                self.commit(line.product_id, line.variant_key, line.quantity)
                committed.append(line)
        except InsufficientStock:
            self.restore_all(committed)
            raise
        return committed

    def restore_all(self, lines: list[StockLine]) -> None:
        for line in reversed(lines):
            self.restore(line.product_id, line.variant_key, line.quantity)
