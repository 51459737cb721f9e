"""Domain events for the Payment aggregate."""

from protean.fields import Boolean, DateTime, Identifier, Integer, String

from orderflow.domain import orderflow


@orderflow.event(part_of="Payment")
class PaymentInitiated:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier()
    customer_id = Identifier(required=True)
    provider = String(required=True)
    amount = Integer(required=True)
    currency = String(required=True)
    initiated_at = DateTime(required=True)


@orderflow.event(part_of="Payment")
class PaymentIntentCreated:
    __version__ = 1

    payment_id = Identifier(required=True)
    provider = String(required=True)
    provider_order_id = String(required=True)


@orderflow.event(part_of="Payment")
class PaymentCompleted:
    """Money received; raised once per payment no matter how many confirmations arrive."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier()
    amount = Integer(required=True)
    provider = String(required=True)
    provider_payment_id = String()
    webhook_verified = Boolean(default=False)
    completed_at = DateTime(required=True)


@orderflow.event(part_of="Payment")
class PaymentFailed:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier()
    reason = String(max_length=500)
    error_code = String()
    failed_at = DateTime(required=True)


@orderflow.event(part_of="Payment")
class PaymentSettled:
    """Stock for the paid order has been committed."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    settled_at = DateTime(required=True)


@orderflow.event(part_of="Payment")
class PaymentReleased:
    """Stock committed for the order has been handed back."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    released_at = DateTime(required=True)


@orderflow.event(part_of="Payment")
class RefundProcessed:
    __version__ = 1

    payment_id = Identifier(required=True)
    refund_id = String(required=True)
    amount = Integer(required=True)
    total_refunded = Integer(required=True)
    reason = String(max_length=500)
    provider_refund_id = String()
    processed_at = DateTime(required=True)
