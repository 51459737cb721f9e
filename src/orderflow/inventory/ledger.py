"""Stock ledger: the single writer of inventory-unit counts.

Every mutation is one atomic conditional step. The in-memory adapter holds a
lock around check-and-decrement; the SQL adapter issues one
``UPDATE ... WHERE quantity >= :requested`` and inspects the row count.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace

from sqlalchemy import Boolean, Column, Engine, Integer, String, Table, case, select, update

from orderflow.utils.db import ledger_metadata

# Key used for products sold without variants
NO_VARIANT = ""


@dataclass(frozen=True)
class StockUnit:
    product_id: str
    variant_key: str
    quantity: int
    is_available: bool
    track_inventory: bool = True


class StockLedger(ABC):
    @abstractmethod
    def put(self, unit: StockUnit) -> StockUnit:
        """Create or replace a unit. Used when registering catalogue stock."""

    @abstractmethod
    def get(self, product_id: str, variant_key: str = NO_VARIANT) -> StockUnit | None: ...

    @abstractmethod
    def decrement(self, product_id: str, variant_key: str, quantity: int) -> StockUnit | None:
        """Decrement only if enough stock remains.

        Returns the updated unit, the unchanged unit when the product does not
        track inventory, or None when the unit is missing or short.
        """

    @abstractmethod
    def increment(self, product_id: str, variant_key: str, quantity: int) -> StockUnit | None: ...


class InMemoryStockLedger(StockLedger):
    def __init__(self):
        self._units: dict[tuple[str, str], StockUnit] = {}
        self._lock = threading.Lock()

    def put(self, unit: StockUnit) -> StockUnit:
        unit = replace(unit, is_available=unit.quantity > 0 or not unit.track_inventory)
        with self._lock:
            self._units[(unit.product_id, unit.variant_key)] = unit
        return unit

    def get(self, product_id: str, variant_key: str = NO_VARIANT) -> StockUnit | None:
        with self._lock:
            return self._units.get((product_id, variant_key))

    def decrement(self, product_id: str, variant_key: str, quantity: int) -> StockUnit | None:
        key = (product_id, variant_key)
        with self._lock:
            unit = self._units.get(key)
            if unit is None:
                return None
            if not unit.track_inventory:
                return unit
            if unit.quantity < quantity:
                return None
            remaining = unit.quantity - quantity
            unit = replace(unit, quantity=remaining, is_available=remaining > 0)
            self._units[key] = unit
            return unit

    def increment(self, product_id: str, variant_key: str, quantity: int) -> StockUnit | None:
        key = (product_id, variant_key)
        with self._lock:
            unit = self._units.get(key)
            if unit is None:
                return None
            if not unit.track_inventory:
                return unit
            unit = replace(unit, quantity=unit.quantity + quantity, is_available=True)
            self._units[key] = unit
            return unit


stock_units = Table(
    "stock_units",
    ledger_metadata,
    Column("product_id", String(64), primary_key=True),
    Column("variant_key", String(64), primary_key=True, default=NO_VARIANT),
    Column("quantity", Integer, nullable=False, default=0),
    Column("is_available", Boolean, nullable=False, default=True),
    Column("track_inventory", Boolean, nullable=False, default=True),
)


class SqlStockLedger(StockLedger):
    def __init__(self, engine: Engine):
        self.engine = engine

    @staticmethod
    def _row_to_unit(row) -> StockUnit:
        return StockUnit(
            product_id=row.product_id,
            variant_key=row.variant_key,
            quantity=row.quantity,
            is_available=row.is_available,
            track_inventory=row.track_inventory,
        )

    def _select(self, conn, product_id, variant_key):
        row = conn.execute(
            select(stock_units).where(
                stock_units.c.product_id == product_id,
                stock_units.c.variant_key == variant_key,
            )
        ).first()
        return self._row_to_unit(row) if row is not None else None

    def put(self, unit: StockUnit) -> StockUnit:
        values = {
            "quantity": unit.quantity,
            "is_available": unit.quantity > 0 or not unit.track_inventory,
            "track_inventory": unit.track_inventory,
        }
        with self.engine.begin() as conn:
            result = conn.execute(
                update(stock_units)
                .where(
                    stock_units.c.product_id == unit.product_id,
                    stock_units.c.variant_key == unit.variant_key,
                )
                .values(**values)
            )
            if result.rowcount == 0:
                conn.execute(
                    stock_units.insert().values(
                        product_id=unit.product_id, variant_key=unit.variant_key, **values
                    )
                )
            return self._select(conn, unit.product_id, unit.variant_key)

    def get(self, product_id: str, variant_key: str = NO_VARIANT) -> StockUnit | None:
        with self.engine.connect() as conn:
            return self._select(conn, product_id, variant_key)

    def decrement(self, product_id: str, variant_key: str, quantity: int) -> StockUnit | None:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(stock_units)
                .where(
                    stock_units.c.product_id == product_id,
                    stock_units.c.variant_key == variant_key,
                    stock_units.c.track_inventory.is_(True),
                    stock_units.c.quantity >= quantity,
                )
                .values(
                    quantity=stock_units.c.quantity - quantity,
                    is_available=case((stock_units.c.quantity - quantity > 0, True), else_=False),
                )
            )
            unit = self._select(conn, product_id, variant_key)
            if result.rowcount == 1:
                return unit
            if unit is not None and not unit.track_inventory:
                return unit
            return None

    def increment(self, product_id: str, variant_key: str, quantity: int) -> StockUnit | None:
        with self.engine.begin() as conn:
            conn.execute(
                update(stock_units)
                .where(
                    stock_units.c.product_id == product_id,
                    stock_units.c.variant_key == variant_key,
                    stock_units.c.track_inventory.is_(True),
                )
                .values(quantity=stock_units.c.quantity + quantity, is_available=True)
            )
            return self._select(conn, product_id, variant_key)
