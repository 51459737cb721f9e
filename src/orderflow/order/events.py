"""Domain events for the Order aggregate.

Every status change, note and tracking update is raised as an immutable,
versioned fact alongside the append-only logs kept on the aggregate itself.
"""

from protean.fields import DateTime, Identifier, Integer, String

from orderflow.domain import orderflow


@orderflow.event(part_of="Order")
class OrderCreated:
    """An order was snapshotted from a staged cart at checkout."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    status = String(required=True)
    item_count = Integer(required=True)
    subtotal = Integer(required=True)
    total = Integer(required=True)
    currency = String(required=True)
    payment_method = String(required=True)
    created_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class OrderStatusChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    actor = String()
    note = String(max_length=1000)
    changed_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class OrderPaymentLinked:
    __version__ = 1

    order_id = Identifier(required=True)
    payment_id = Identifier(required=True)


@orderflow.event(part_of="Order")
class OrderTrackingUpdated:
    __version__ = 1

    order_id = Identifier(required=True)
    tracking_number = String(required=True)
    carrier = String()
    tracking_url = String(max_length=1024)


@orderflow.event(part_of="Order")
class OrderNoteAdded:
    __version__ = 1

    order_id = Identifier(required=True)
    note = String(required=True, max_length=1000)
    author = String()
    added_at = DateTime(required=True)
