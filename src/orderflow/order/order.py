"""Order aggregate (CQRS): the immutable record of a checkout.

Line items and pricing are frozen copies taken at creation and are never
re-read from the live catalogue. Afterwards only status, tracking and the
append-only notes log change.

State Machine (9 states):
    PAYMENT_PENDING → PENDING | PROCESSING | CANCELLED
    PENDING → PROCESSING | CANCELLED
    PROCESSING → SHIPPED | ON_HOLD | CANCELLED
    SHIPPED → DELIVERED
    DELIVERED → COMPLETED | REFUNDED
    COMPLETED → REFUNDED
    ON_HOLD → PROCESSING | CANCELLED
    CANCELLED, REFUNDED (terminal)
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import (
    DateTime,
    HasMany,
    Identifier,
    Integer,
    String,
    ValueObject,
)

from orderflow.domain import orderflow
from orderflow.errors import InvalidTransition
from orderflow.order.events import (
    OrderCreated,
    OrderNoteAdded,
    OrderPaymentLinked,
    OrderStatusChanged,
    OrderTrackingUpdated,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PAYMENT_PENDING = "payment_pending"
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    ON_HOLD = "on_hold"


_VALID_TRANSITIONS = {
    OrderStatus.PAYMENT_PENDING: frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.ON_HOLD, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED, OrderStatus.REFUNDED}),
    OrderStatus.COMPLETED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.ON_HOLD: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.CANCELLED: frozenset(),  # Terminal
    OrderStatus.REFUNDED: frozenset(),  # Terminal
}

# Status-specific timestamp fields
_STATUS_TIMESTAMPS = {
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
    OrderStatus.REFUNDED: "refunded_at",
}


def allowed_next(status: OrderStatus) -> frozenset[OrderStatus]:
    """Statuses reachable in one step from ``status``."""
    return _VALID_TRANSITIONS[status]


def parse_status(value) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError({"status": [f"Unknown order status '{value}'"]}) from None


def generate_order_number(now: datetime | None = None) -> str:
    """``ORD-YYYYMMDD-XXXXXX``: date prefix plus six random hex characters."""
    now = now or datetime.now(UTC)
    return f"ORD-{now:%Y%m%d}-{uuid4().hex[:6].upper()}"


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@orderflow.value_object(part_of="Order")
class ShippingAddress:
    """Where the order ships to, as entered at checkout.

    Snapshotted on the order; later edits to the customer's address book do
    not reach it.
    """

    first_name = String(required=True, max_length=100)
    last_name = String(max_length=100)
    email = String(required=True, max_length=254)
    phone = String(required=True, max_length=20)
    street = String(required=True, max_length=255)
    city = String(required=True, max_length=100)
    state = String(required=True, max_length=100)
    postal_code = String(required=True, max_length=20)
    country = String(max_length=100, default="India")


@orderflow.value_object(part_of="Order")
class OrderPricing:
    """Price breakdown in integer minor currency units, locked at checkout."""

    subtotal = Integer(required=True, min_value=0)
    discount_code = String(max_length=50)
    discount_amount = Integer(default=0, min_value=0)
    shipping_cost = Integer(default=0, min_value=0)
    tax_amount = Integer(default=0, min_value=0)
    total = Integer(required=True, min_value=0)
    currency = String(max_length=3, default="INR")

    @invariant.post
    def total_must_add_up(self):
        expected = self.subtotal - (self.discount_amount or 0) + (self.shipping_cost or 0) + (self.tax_amount or 0)
        if self.total != expected:
            raise ValidationError({"total": [f"Total {self.total} does not match breakdown {expected}"]})


@orderflow.value_object(part_of="Order")
class TrackingInfo:
    number = String(required=True, max_length=100)
    url = String(max_length=1024)
    carrier = String(max_length=100)
    updated_at = DateTime()


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@orderflow.entity(part_of="Order")
class OrderItem:
    """Frozen copy of a cart line at the moment the order was placed."""

    product_id = Identifier(required=True)
    variant_sku = String(max_length=64)
    name = String(required=True, max_length=255)
    image = String(max_length=1024)
    sku = String(required=True, max_length=64)
    options = String(max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Integer(required=True, min_value=0)
    subtotal = Integer(required=True, min_value=0)
    position = Integer(default=0)


@orderflow.entity(part_of="Order")
class StatusChange:
    sequence = Integer(required=True, min_value=1)
    status = String(required=True, choices=OrderStatus)
    changed_at = DateTime(required=True)
    actor = String(max_length=100)
    note = String(max_length=1000)


@orderflow.entity(part_of="Order")
class AdminNote:
    note = String(required=True, max_length=1000)
    author = String(max_length=100)
    created_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@orderflow.aggregate
class Order:
    order_number = String(required=True, max_length=32)
    customer_id = Identifier(required=True)
    cart_id = Identifier()
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    items = HasMany(OrderItem)
    shipping_address = ValueObject(ShippingAddress)
    pricing = ValueObject(OrderPricing)
    payment_id = Identifier()
    payment_method = String(required=True, max_length=20)
    shipping_method = String(max_length=20, default="standard")
    status_history = HasMany(StatusChange)
    admin_notes = HasMany(AdminNote)
    tracking = ValueObject(TrackingInfo)
    created_at = DateTime()
    updated_at = DateTime()
    shipped_at = DateTime()
    delivered_at = DateTime()
    completed_at = DateTime()
    cancelled_at = DateTime()
    refunded_at = DateTime()

    @invariant.post
    def items_must_add_up_to_subtotal(self):
        if not self.items or self.pricing is None:
            return
        if sum(item.subtotal for item in self.items) != self.pricing.subtotal:
            raise ValidationError({"pricing": ["Line item subtotals must add up to the order subtotal"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        customer_id,
        items_data,
        shipping_address,
        pricing,
        payment_method,
        shipping_method="standard",
        status=OrderStatus.PENDING,
        cart_id=None,
        actor=None,
    ):
        """Create a new order from a staged cart.

        Args:
            customer_id: The customer placing the order.
            items_data: List of dicts with product_id, variant_sku, name, image,
                        sku, options, quantity, unit_price.
            shipping_address: Dict matching ShippingAddress.
            pricing: Dict matching OrderPricing.
            status: PENDING for cash on delivery, PAYMENT_PENDING for online.
        """
        if not items_data:
            raise ValidationError({"items": ["An order needs at least one item"]})

        status = parse_status(status)
        if status not in (OrderStatus.PENDING, OrderStatus.PAYMENT_PENDING):
            raise ValidationError({"status": ["Orders start as pending or payment_pending"]})

        items = [
            OrderItem(
                product_id=data["product_id"],
                variant_sku=data.get("variant_sku"),
                name=data["name"],
                image=data.get("image"),
                sku=data["sku"],
                options=data.get("options"),
                quantity=data["quantity"],
                unit_price=data["unit_price"],
                subtotal=data["unit_price"] * data["quantity"],
                position=position,
            )
            for position, data in enumerate(items_data, start=1)
        ]
        order_pricing = OrderPricing(**pricing)
        if sum(item.subtotal for item in items) != order_pricing.subtotal:
            raise ValidationError({"pricing": ["Line item subtotals must add up to the order subtotal"]})

        now = datetime.now(UTC)
        order = cls(
            order_number=generate_order_number(now),
            customer_id=customer_id,
            cart_id=cart_id,
            status=status.value,
            items=items,
            shipping_address=ShippingAddress(**shipping_address),
            pricing=order_pricing,
            payment_method=payment_method,
            shipping_method=shipping_method,
            created_at=now,
            updated_at=now,
        )
        # The audit trail starts at creation, before any transition
        order.add_status_history(
            StatusChange(sequence=1, status=status.value, changed_at=now, actor=actor, note="Order created")
        )
        order.raise_(
            OrderCreated(
                order_id=str(order.id),
                order_number=order.order_number,
                customer_id=str(customer_id),
                status=status.value,
                item_count=len(items),
                subtotal=order_pricing.subtotal,
                total=order_pricing.total,
                currency=order_pricing.currency,
                payment_method=payment_method,
                created_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def lines(self):
        return sorted(self.items, key=lambda item: item.position or 0)

    def history(self):
        return sorted(self.status_history, key=lambda entry: entry.sequence)

    def can_transition_to(self, new_status) -> bool:
        return parse_status(new_status) in allowed_next(OrderStatus(self.status))

    def is_owned_by(self, user_id) -> bool:
        return user_id is not None and str(self.customer_id) == str(user_id)

    # -------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------
    def transition(self, new_status, actor=None, note=None):
        """Move to ``new_status`` or raise InvalidTransition."""
        current = OrderStatus(self.status)
        target = parse_status(new_status)
        if target not in allowed_next(current):
            raise InvalidTransition(current.value, target.value)

        now = datetime.now(UTC)
        self.status = target.value
        self.updated_at = now
        timestamp_field = _STATUS_TIMESTAMPS.get(target)
        if timestamp_field:
            setattr(self, timestamp_field, now)

        self.add_status_history(
            StatusChange(
                sequence=len(self.status_history) + 1,
                status=target.value,
                changed_at=now,
                actor=actor,
                note=note,
            )
        )
        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                order_number=self.order_number,
                previous_status=current.value,
                new_status=target.value,
                actor=actor,
                note=note,
                changed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Mutable annotations
    # -------------------------------------------------------------------
    def link_payment(self, payment_id):
        """Attach the order's payment. Set once, never replaced."""
        if self.payment_id and str(self.payment_id) != str(payment_id):
            raise ValidationError({"payment_id": ["Order is already linked to a payment"]})
        if self.payment_id:
            return

        self.payment_id = payment_id
        self.updated_at = datetime.now(UTC)
        self.raise_(OrderPaymentLinked(order_id=str(self.id), payment_id=str(payment_id)))

    def update_tracking(self, number, carrier=None, url=None):
        if not number or not number.strip():
            raise ValidationError({"tracking_number": ["Tracking number is required"]})

        now = datetime.now(UTC)
        self.tracking = TrackingInfo(number=number.strip(), carrier=carrier, url=url, updated_at=now)
        self.updated_at = now
        self.raise_(
            OrderTrackingUpdated(
                order_id=str(self.id),
                tracking_number=self.tracking.number,
                carrier=carrier,
                tracking_url=url,
            )
        )

    def add_note(self, note, author=None):
        if not note or not note.strip():
            raise ValidationError({"note": ["Note cannot be empty"]})

        now = datetime.now(UTC)
        self.add_admin_notes(AdminNote(note=note.strip(), author=author, created_at=now))
        self.updated_at = now
        self.raise_(OrderNoteAdded(order_id=str(self.id), note=note.strip(), author=author, added_at=now))
