"""Payment ledger: compare-and-set storage for payment status and refunds.

The Payment aggregate is the record of what happened; this ledger decides who
gets to make it happen. Confirmation paths race (client verify vs provider
webhook), so the winner is whoever swaps the status first. Refund requests
race too, so the refundable remainder is reserved in one conditional write.
"""

import threading
from abc import ABC, abstractmethod
from collections.abc import Collection
from dataclasses import dataclass, replace
from enum import Enum

from sqlalchemy import Column, Engine, Integer, String, Table, case, select, update
from sqlalchemy.exc import IntegrityError

from orderflow.utils.db import ledger_metadata


class Settlement(Enum):
    """Whether the order's stock has been committed against this payment."""

    PENDING = "pending"
    SETTLING = "settling"
    SETTLED = "settled"
    RELEASED = "released"


@dataclass(frozen=True)
class LedgerEntry:
    payment_id: str
    amount: int
    status: str
    settlement: str = Settlement.PENDING.value
    total_refunded: int = 0


class PaymentLedger(ABC):
    @abstractmethod
    def open(
        self,
        payment_id: str,
        amount: int,
        status: str,
        settlement: str = Settlement.PENDING.value,
        total_refunded: int = 0,
    ) -> LedgerEntry:
        """Create the entry unless it exists; returns the stored entry either way."""

    @abstractmethod
    def get(self, payment_id: str) -> LedgerEntry | None: ...

    @abstractmethod
    def swap_status(
        self, payment_id: str, expected: Collection[str], new: str, claim_settlement: bool = False
    ) -> LedgerEntry | None:
        """Set ``new`` only if the current status is one of ``expected``.

        With ``claim_settlement`` the settlement marker moves from pending to
        settling in the same step, so the caller that confirms a payment also
        owns its inventory phase. Returns the updated entry, or None if the
        swap lost.
        """

    @abstractmethod
    def swap_settlement(self, payment_id: str, expected: str, new: str) -> bool: ...

    @abstractmethod
    def reserve_refund(self, payment_id: str, amount: int, refundable: Collection[str]) -> LedgerEntry | None:
        """Add ``amount`` to the refunded total if the remainder allows it.

        Moves the status to ``refunded`` or ``partially_refunded`` in the same
        step. Returns the updated entry, or None if the reservation failed.
        """

    @abstractmethod
    def release_refund(self, payment_id: str, amount: int, restore_status: str) -> LedgerEntry | None:
        """Undo a reservation whose provider refund call failed."""


class InMemoryPaymentLedger(PaymentLedger):
    def __init__(self):
        self._entries: dict[str, LedgerEntry] = {}
        self._lock = threading.Lock()

    def open(
        self,
        payment_id: str,
        amount: int,
        status: str,
        settlement: str = Settlement.PENDING.value,
        total_refunded: int = 0,
    ) -> LedgerEntry:
        entry = LedgerEntry(
            payment_id=payment_id,
            amount=amount,
            status=status,
            settlement=settlement,
            total_refunded=total_refunded,
        )
        with self._lock:
            self._entries.setdefault(payment_id, entry)
            return self._entries[payment_id]

    def get(self, payment_id: str) -> LedgerEntry | None:
        with self._lock:
            return self._entries.get(payment_id)

    def swap_status(
        self, payment_id: str, expected: Collection[str], new: str, claim_settlement: bool = False
    ) -> LedgerEntry | None:
        with self._lock:
            entry = self._entries.get(payment_id)
            if entry is None or entry.status not in expected:
                return None
            settlement = entry.settlement
            if claim_settlement and settlement == Settlement.PENDING.value:
                settlement = Settlement.SETTLING.value
            entry = replace(entry, status=new, settlement=settlement)
            self._entries[payment_id] = entry
            return entry

    def swap_settlement(self, payment_id: str, expected: str, new: str) -> bool:
        with self._lock:
            entry = self._entries.get(payment_id)
            if entry is None or entry.settlement != expected:
                return False
            self._entries[payment_id] = replace(entry, settlement=new)
            return True

    def reserve_refund(self, payment_id: str, amount: int, refundable: Collection[str]) -> LedgerEntry | None:
        with self._lock:
            entry = self._entries.get(payment_id)
            if entry is None or entry.status not in refundable:
                return None
            total = entry.total_refunded + amount
            if total > entry.amount:
                return None
            entry = replace(
                entry,
                total_refunded=total,
                status="refunded" if total == entry.amount else "partially_refunded",
            )
            self._entries[payment_id] = entry
            return entry

    def release_refund(self, payment_id: str, amount: int, restore_status: str) -> LedgerEntry | None:
        with self._lock:
            entry = self._entries.get(payment_id)
            if entry is None:
                return None
            total = max(entry.total_refunded - amount, 0)
            entry = replace(
                entry,
                total_refunded=total,
                status=restore_status if total == 0 else "partially_refunded",
            )
            self._entries[payment_id] = entry
            return entry


payment_ledger = Table(
    "payment_ledger",
    ledger_metadata,
    Column("payment_id", String(64), primary_key=True),
    Column("amount", Integer, nullable=False),
    Column("status", String(32), nullable=False),
    Column("settlement", String(16), nullable=False, default=Settlement.PENDING.value),
    Column("total_refunded", Integer, nullable=False, default=0),
)


class SqlPaymentLedger(PaymentLedger):
    def __init__(self, engine: Engine):
        self.engine = engine

    def _select(self, conn, payment_id):
        row = conn.execute(select(payment_ledger).where(payment_ledger.c.payment_id == payment_id)).first()
        if row is None:
            return None
        return LedgerEntry(
            payment_id=row.payment_id,
            amount=row.amount,
            status=row.status,
            settlement=row.settlement,
            total_refunded=row.total_refunded,
        )

    def open(
        self,
        payment_id: str,
        amount: int,
        status: str,
        settlement: str = Settlement.PENDING.value,
        total_refunded: int = 0,
    ) -> LedgerEntry:
        try:
            with self.engine.begin() as conn:
                existing = self._select(conn, payment_id)
                if existing is not None:
                    return existing
                conn.execute(
                    payment_ledger.insert().values(
                        payment_id=payment_id,
                        amount=amount,
                        status=status,
                        settlement=settlement,
                        total_refunded=total_refunded,
                    )
                )
                return self._select(conn, payment_id)
        except IntegrityError:
            # Lost the insert race; the winner's entry stands
            return self.get(payment_id)

    def get(self, payment_id: str) -> LedgerEntry | None:
        with self.engine.connect() as conn:
            return self._select(conn, payment_id)

    def swap_status(
        self, payment_id: str, expected: Collection[str], new: str, claim_settlement: bool = False
    ) -> LedgerEntry | None:
        values = {"status": new}
        if claim_settlement:
            values["settlement"] = case(
                (payment_ledger.c.settlement == Settlement.PENDING.value, Settlement.SETTLING.value),
                else_=payment_ledger.c.settlement,
            )
        with self.engine.begin() as conn:
            result = conn.execute(
                update(payment_ledger)
                .where(payment_ledger.c.payment_id == payment_id, payment_ledger.c.status.in_(list(expected)))
                .values(**values)
            )
            if result.rowcount != 1:
                return None
            return self._select(conn, payment_id)

    def swap_settlement(self, payment_id: str, expected: str, new: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(payment_ledger)
                .where(payment_ledger.c.payment_id == payment_id, payment_ledger.c.settlement == expected)
                .values(settlement=new)
            )
            return result.rowcount == 1

    def reserve_refund(self, payment_id: str, amount: int, refundable: Collection[str]) -> LedgerEntry | None:
        new_total = payment_ledger.c.total_refunded + amount
        with self.engine.begin() as conn:
            result = conn.execute(
                update(payment_ledger)
                .where(
                    payment_ledger.c.payment_id == payment_id,
                    payment_ledger.c.status.in_(list(refundable)),
                    new_total <= payment_ledger.c.amount,
                )
                .values(
                    total_refunded=new_total,
                    status=case((new_total == payment_ledger.c.amount, "refunded"), else_="partially_refunded"),
                )
            )
            if result.rowcount != 1:
                return None
            return self._select(conn, payment_id)

    def release_refund(self, payment_id: str, amount: int, restore_status: str) -> LedgerEntry | None:
        new_total = payment_ledger.c.total_refunded - amount
        with self.engine.begin() as conn:
            conn.execute(
                update(payment_ledger)
                .where(payment_ledger.c.payment_id == payment_id)
                .values(
                    total_refunded=new_total,
                    status=case((new_total <= 0, restore_status), else_="partially_refunded"),
                )
            )
            return self._select(conn, payment_id)
