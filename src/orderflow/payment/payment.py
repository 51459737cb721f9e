"""Payment aggregate (CQRS): money movement for one order against one provider.

The aggregate keeps the record (status, provider identifiers, refund log);
the payment ledger arbitrates the races. A confirmation or refund is only
applied here after the ledger's compare-and-set has been won.

State Machine:
    INITIATED → PENDING | AUTHORIZED | CAPTURED | COMPLETED | FAILED
    PENDING → AUTHORIZED | CAPTURED | COMPLETED | FAILED
    AUTHORIZED → CAPTURED | COMPLETED | FAILED
    CAPTURED | COMPLETED → PARTIALLY_REFUNDED | REFUNDED
    PARTIALLY_REFUNDED → PARTIALLY_REFUNDED | REFUNDED
    FAILED, REFUNDED (terminal)
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, HasMany, Identifier, Integer, String
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.errors import InvalidRefund, InvalidTransition
from orderflow.payment.events import (
    PaymentCompleted,
    PaymentFailed,
    PaymentInitiated,
    PaymentIntentCreated,
    PaymentReleased,
    PaymentSettled,
    RefundProcessed,
)
from orderflow.payment.ledger import Settlement


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PaymentStatus(Enum):
    INITIATED = "initiated"
    PENDING = "pending"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PaymentProvider(Enum):
    RAZORPAY = "razorpay"
    STRIPE = "stripe"
    PAYPAL = "paypal"
    COD = "cod"
    FAKE = "fake"


_VALID_TRANSITIONS = {
    PaymentStatus.INITIATED: frozenset(
        {
            PaymentStatus.PENDING,
            PaymentStatus.AUTHORIZED,
            PaymentStatus.CAPTURED,
            PaymentStatus.COMPLETED,
            PaymentStatus.FAILED,
        }
    ),
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED, PaymentStatus.COMPLETED, PaymentStatus.FAILED}
    ),
    PaymentStatus.AUTHORIZED: frozenset({PaymentStatus.CAPTURED, PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.CAPTURED: frozenset({PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset({PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),  # Terminal
    PaymentStatus.REFUNDED: frozenset(),  # Terminal
}

# Money has been received
RECEIVED_STATES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.CAPTURED})

# A confirmation may still move the payment to COMPLETED
CONFIRMABLE_STATES = frozenset({PaymentStatus.INITIATED, PaymentStatus.PENDING, PaymentStatus.AUTHORIZED})

# A further refund may be issued against what is left
REFUNDABLE_STATES = RECEIVED_STATES | {PaymentStatus.PARTIALLY_REFUNDED}


def allowed_next(status: PaymentStatus) -> frozenset[PaymentStatus]:
    """Statuses reachable in one step from ``status``."""
    return _VALID_TRANSITIONS[status]


def status_values(states) -> frozenset[str]:
    return frozenset(state.value for state in states)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@orderflow.entity(part_of="Payment")
class Refund:
    """A refund issued against this payment."""

    amount = Integer(required=True, min_value=1)
    reason = String(max_length=500)
    status = String(max_length=20, default="processed")
    provider_refund_id = String(max_length=255)
    processed_by = String(max_length=100)
    created_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@orderflow.aggregate
class Payment:
    order_id = Identifier()  # Linked once, right after the order exists
    customer_id = Identifier(required=True)
    provider = String(required=True, choices=PaymentProvider)
    amount = Integer(required=True, min_value=0)
    currency = String(max_length=3, default="INR")
    status = String(choices=PaymentStatus, default=PaymentStatus.INITIATED.value)
    settlement = String(choices=Settlement, default=Settlement.PENDING.value)
    refunds = HasMany(Refund)
    total_refunded = Integer(default=0, min_value=0)
    provider_order_id = String(max_length=255)
    provider_payment_id = String(max_length=255)
    webhook_verified = Boolean(default=False)
    error_message = String(max_length=500)
    error_code = String(max_length=100)
    created_at = DateTime()
    updated_at = DateTime()
    completed_at = DateTime()
    failed_at = DateTime()

    @invariant.post
    def refunds_cannot_exceed_amount(self):
        if (self.total_refunded or 0) > self.amount:
            raise ValidationError({"total_refunded": ["Total refunded cannot exceed the payment amount"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, customer_id, provider, amount, currency="INR", order_id=None):
        now = datetime.now(UTC)
        payment = cls(
            customer_id=customer_id,
            provider=provider,
            amount=amount,
            currency=currency,
            order_id=order_id,
            status=PaymentStatus.INITIATED.value,
            created_at=now,
            updated_at=now,
        )
        payment.raise_(
            PaymentInitiated(
                payment_id=str(payment.id),
                order_id=str(order_id) if order_id else None,
                customer_id=str(customer_id),
                provider=provider,
                amount=amount,
                currency=currency,
                initiated_at=now,
            )
        )
        return payment

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def refundable_amount(self) -> int:
        if PaymentStatus(self.status) not in REFUNDABLE_STATES:
            return 0
        return self.amount - (self.total_refunded or 0)

    @property
    def is_settled(self) -> bool:
        return self.settlement == Settlement.SETTLED.value

    def is_owned_by(self, user_id) -> bool:
        return user_id is not None and str(self.customer_id) == str(user_id)

    # -------------------------------------------------------------------
    # State transition helper
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status):
        current = PaymentStatus(self.status)
        if target_status not in allowed_next(current):
            raise InvalidTransition(current.value, target_status.value, machine="payment")

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def link_order(self, order_id):
        if self.order_id and str(self.order_id) != str(order_id):
            raise ValidationError({"order_id": ["Payment is already linked to an order"]})
        self.order_id = order_id
        self.updated_at = datetime.now(UTC)

    def record_intent(self, provider_order_id):
        """The provider accepted the intent; wait for the customer to pay."""
        self._assert_can_transition(PaymentStatus.PENDING)
        self.provider_order_id = provider_order_id
        self.status = PaymentStatus.PENDING.value
        self.updated_at = datetime.now(UTC)
        self.raise_(
            PaymentIntentCreated(
                payment_id=str(self.id),
                provider=self.provider,
                provider_order_id=provider_order_id,
            )
        )

    def confirm(self, provider_payment_id=None, provider_order_id=None, webhook_verified=False):
        self._assert_can_transition(PaymentStatus.COMPLETED)

        now = datetime.now(UTC)
        self.status = PaymentStatus.COMPLETED.value
        if provider_payment_id:
            self.provider_payment_id = provider_payment_id
        if provider_order_id and not self.provider_order_id:
            self.provider_order_id = provider_order_id
        self.webhook_verified = bool(self.webhook_verified or webhook_verified)
        self.completed_at = now
        self.updated_at = now

        self.raise_(
            PaymentCompleted(
                payment_id=str(self.id),
                order_id=str(self.order_id) if self.order_id else None,
                amount=self.amount,
                provider=self.provider,
                provider_payment_id=self.provider_payment_id,
                webhook_verified=self.webhook_verified,
                completed_at=now,
            )
        )

    def fail(self, reason=None, error_code=None):
        self._assert_can_transition(PaymentStatus.FAILED)

        now = datetime.now(UTC)
        self.status = PaymentStatus.FAILED.value
        self.error_message = reason
        self.error_code = error_code
        self.failed_at = now
        self.updated_at = now

        self.raise_(
            PaymentFailed(
                payment_id=str(self.id),
                order_id=str(self.order_id) if self.order_id else None,
                reason=reason,
                error_code=error_code,
                failed_at=now,
            )
        )

    def mark_settled(self):
        now = datetime.now(UTC)
        self.settlement = Settlement.SETTLED.value
        self.updated_at = now
        self.raise_(PaymentSettled(payment_id=str(self.id), order_id=str(self.order_id), settled_at=now))

    def mark_released(self):
        now = datetime.now(UTC)
        self.settlement = Settlement.RELEASED.value
        self.updated_at = now
        self.raise_(PaymentReleased(payment_id=str(self.id), order_id=str(self.order_id), released_at=now))

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def process_refund(self, amount, reason=None, provider_refund_id=None, processed_by=None):
        """Record a refund, or raise InvalidRefund."""
        if amount is None or amount <= 0:
            raise InvalidRefund({"amount": ["Refund amount must be positive"]})
        if PaymentStatus(self.status) not in REFUNDABLE_STATES:
            raise InvalidRefund(f"Payment in status '{self.status}' cannot be refunded")

        remaining = self.amount - (self.total_refunded or 0)
        if amount > remaining:
            raise InvalidRefund({"amount": [f"Refund of {amount} exceeds refundable amount {remaining}"]})

        now = datetime.now(UTC)
        total = (self.total_refunded or 0) + amount
        target = PaymentStatus.REFUNDED if total == self.amount else PaymentStatus.PARTIALLY_REFUNDED
        self._assert_can_transition(target)

        refund = Refund(
            id=f"REF-{uuid4().hex[:12].upper()}",
            amount=amount,
            reason=reason,
            provider_refund_id=provider_refund_id,
            processed_by=processed_by,
            created_at=now,
        )
        self.add_refunds(refund)
        self.total_refunded = total
        self.status = target.value
        self.updated_at = now

        self.raise_(
            RefundProcessed(
                payment_id=str(self.id),
                refund_id=str(refund.id),
                amount=amount,
                total_refunded=total,
                reason=reason,
                provider_refund_id=provider_refund_id,
                processed_at=now,
            )
        )
        return refund


# ---------------------------------------------------------------------------
# Finders
# ---------------------------------------------------------------------------
def find_payment_by_provider_order(provider, provider_order_id):
    if not provider_order_id:
        return None
    results = (
        current_domain.repository_for(Payment)
        ._dao.query.filter(provider=provider, provider_order_id=provider_order_id)
        .all()
        .items
    )
    return results[0] if results else None
