"""Workflow Orchestrator: the only caller that sequences staging, orders,
payments and inventory.

    stage cart → create order → open payment → create intent (skipped for COD)
    → confirmation (client verify or provider webhook) → commit stock
    → finalize order/payment; on failure or cancellation, roll back

Confirmation paths race. The payment ledger's compare-and-set decides the
single winner, and that winner also owns the inventory phase (the
settlement marker). If the inventory phase fails the payment stays
``completed`` with settlement ``pending`` and the order stays where it was;
any later confirmation delivery, or an explicit ``settle_order``, re-runs
only the inventory phase.
"""

import threading
from dataclasses import dataclass

import structlog
from protean import UnitOfWork
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from orderflow.cart.cart import CartStatus, ShoppingCart
from orderflow.cart.staging import CartStaging, StagingReport
from orderflow.catalogue.lookup import resolve_line
from orderflow.collaborators import SYSTEM_ACTOR, Identity, OrderNotifier
from orderflow.errors import (
    CartInvalid,
    Conflict,
    Forbidden,
    GatewayError,
    InsufficientStock,
    InvalidRefund,
    InvalidTransition,
    Unauthorized,
)
from orderflow.gateway import GatewayRegistry
from orderflow.gateway.port import PaymentIntent, WebhookKind
from orderflow.inventory.coordinator import InventoryCoordinator, StockLine
from orderflow.order.order import Order, OrderStatus, parse_status
from orderflow.payment.ledger import LedgerEntry, PaymentLedger, Settlement
from orderflow.payment.payment import (
    CONFIRMABLE_STATES,
    RECEIVED_STATES,
    REFUNDABLE_STATES,
    Payment,
    PaymentStatus,
    find_payment_by_provider_order,
    status_values,
)
from orderflow.workflow.pricing import PricingPolicy

logger = structlog.get_logger(__name__)

_CONFIRMABLE = status_values(CONFIRMABLE_STATES)
_REFUNDABLE = status_values(REFUNDABLE_STATES)
_PAID = status_values(RECEIVED_STATES | {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED})


@dataclass(frozen=True)
class CheckoutResult:
    order: Order
    payment: Payment
    report: StagingReport
    intent: PaymentIntent | None = None


@dataclass(frozen=True)
class PaymentConfirmation:
    provider_payment_id: str | None = None
    provider_order_id: str | None = None
    source: str = "client"  # client | webhook


@dataclass(frozen=True)
class ConfirmationResult:
    payment: Payment
    order: Order
    # False when the confirmation had already been applied
    applied: bool


@dataclass(frozen=True)
class WebhookOutcome:
    status: str  # processed | duplicate | ignored | error
    payment_id: str | None = None
    event_type: str | None = None


class _KeyedLocks:
    """A fixed pool of striped locks, so read-modify-write of one record stays in order.

    Keys sharing a stripe merely serialise with each other. Callers never hold
    two stripes at once.
    """

    def __init__(self, stripes: int = 64):
        self._locks = tuple(threading.RLock() for _ in range(stripes))

    def __call__(self, key) -> threading.RLock:
        return self._locks[hash(str(key)) % len(self._locks)]


class CheckoutWorkflow:
    def __init__(
        self,
        gateways: GatewayRegistry,
        inventory: InventoryCoordinator,
        payments: PaymentLedger,
        notifier: OrderNotifier,
        pricing: PricingPolicy | None = None,
    ):
        self.gateways = gateways
        self.inventory = inventory
        self.payments = payments
        self.notifier = notifier
        self.pricing = pricing or PricingPolicy()
        self.staging = CartStaging(inventory)
        self._record_lock = _KeyedLocks()

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------
    @staticmethod
    def _order(order_id) -> Order:
        return current_domain.repository_for(Order).get(order_id)

    @staticmethod
    def _payment(payment_id) -> Payment:
        return current_domain.repository_for(Payment).get(payment_id)

    def _ledger_entry(self, payment: Payment) -> LedgerEntry:
        """The payment's ledger entry, reseeded from the record if the ledger lost it."""
        entry = self.payments.get(str(payment.id))
        if entry is None:
            entry = self.payments.open(
                str(payment.id),
                payment.amount,
                payment.status,
                settlement=payment.settlement,
                total_refunded=payment.total_refunded or 0,
            )
        return entry

    @staticmethod
    def _stock_lines(order: Order) -> list[StockLine]:
        return [StockLine(str(item.product_id), item.variant_sku, item.quantity) for item in order.lines()]

    def _notify(self, event: str, order: Order, **context) -> None:
        try:
            self.notifier.notify(event, order, **context)
        except Exception:
            logger.exception("notification_failed", notification=event, order_id=str(order.id))

    def payment_methods(self) -> list[str]:
        return self.gateways.methods()

    # -------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------
    def checkout(
        self,
        cart_id,
        identity: Identity,
        shipping_address: dict,
        payment_method: str,
        shipping_method: str = "standard",
        session_id: str | None = None,
    ) -> CheckoutResult:
        """Stage the cart, create the order and start payment."""
        if payment_method not in self.gateways:
            raise ValidationError({"payment_method": [f"Payment method '{payment_method}' is not available"]})
        gateway = self.gateways.get(payment_method)

        cart = current_domain.repository_for(ShoppingCart).get(cart_id)
        if not cart.is_owned_by(identity.user_id, session_id):
            raise Forbidden("Cart belongs to someone else")

        order, report = self.create_order_from_cart(
            cart, identity, shipping_address, payment_method, shipping_method
        )
        payment = self._open_payment(order)

        if not gateway.requires_confirmation:
            try:
                order = self.process_cod_order(order.id, actor=identity.actor)
            except InsufficientStock:
                self._cancel_unpaid(order.id, "Insufficient stock when confirming cash on delivery order")
                raise
            return CheckoutResult(order=order, payment=self._payment(payment.id), report=report)

        intent = self._create_intent(order, payment, gateway)
        return CheckoutResult(order=self._order(order.id), payment=self._payment(payment.id), report=report, intent=intent)

    def create_order_from_cart(
        self,
        cart: ShoppingCart,
        identity: Identity,
        shipping_address: dict,
        payment_method: str,
        shipping_method: str = "standard",
    ) -> tuple[Order, StagingReport]:
        """Snapshot a staged cart into a new order. Never touches stock."""
        report = self.staging.stage(cart)
        if not report.valid:
            logger.info("checkout_rejected", cart_id=str(cart.id), errors=report.errors)
            raise CartInvalid(report)

        items_data = []
        for item in cart.lines():
            resolution = resolve_line(item.product_id, item.variant_sku)
            if resolution is None:
                raise CartInvalid(report)
            items_data.append(
                {
                    "product_id": str(item.product_id),
                    "variant_sku": item.variant_sku,
                    "name": resolution.name,
                    "image": resolution.image,
                    "sku": resolution.sku,
                    "options": resolution.options,
                    "quantity": item.quantity,
                    "unit_price": item.price_at_add,
                }
            )

        subtotal = sum(data["unit_price"] * data["quantity"] for data in items_data)
        pricing = self.pricing.quote(
            subtotal,
            discount_amount=cart.discount_amount or 0,
            discount_code=cart.discount_code,
            shipping_method=shipping_method,
        )
        gateway = self.gateways.get(payment_method)
        status = OrderStatus.PAYMENT_PENDING if gateway.requires_confirmation else OrderStatus.PENDING

        order = Order.create(
            customer_id=identity.user_id,
            items_data=items_data,
            shipping_address=shipping_address,
            pricing=pricing,
            payment_method=payment_method,
            shipping_method=shipping_method,
            status=status,
            cart_id=str(cart.id),
            actor=identity.actor,
        )
        current_domain.repository_for(Order).add(order)

        logger.info(
            "order_created",
            order_id=str(order.id),
            order_number=order.order_number,
            status=order.status,
            total=order.pricing.total,
            payment_method=payment_method,
            price_changes=len(report.price_changes),
        )
        return order, report

    def _open_payment(self, order: Order) -> Payment:
        payment = Payment.create(
            customer_id=order.customer_id,
            provider=order.payment_method,
            amount=order.pricing.total,
            currency=order.pricing.currency,
            order_id=str(order.id),
        )
        order.link_payment(str(payment.id))
        with UnitOfWork():
            current_domain.repository_for(Payment).add(payment)
            current_domain.repository_for(Order).add(order)
        self.payments.open(str(payment.id), payment.amount, payment.status)
        return payment

    def _create_intent(self, order: Order, payment: Payment, gateway) -> PaymentIntent:
        try:
            intent = gateway.create_intent(
                payment.amount, payment.currency, order.order_number, str(payment.id)
            )
        except GatewayError as exc:
            logger.warning(
                "payment_intent_failed",
                order_id=str(order.id),
                payment_id=str(payment.id),
                provider=gateway.name,
                error=str(exc.messages),
            )
            self.handle_payment_failure(
                payment.id,
                reason="Payment gateway unavailable",
                error_code="gateway_unavailable",
                actor=SYSTEM_ACTOR,
            )
            raise

        with self._record_lock(payment.id):
            if self.payments.swap_status(str(payment.id), {PaymentStatus.INITIATED.value}, PaymentStatus.PENDING.value):
                payment = self._payment(payment.id)
                payment.record_intent(intent.provider_order_id)
                current_domain.repository_for(Payment).add(payment)

        logger.info(
            "payment_intent_created",
            order_id=str(order.id),
            payment_id=str(payment.id),
            provider=gateway.name,
            provider_order_id=intent.provider_order_id,
        )
        return intent

    # -------------------------------------------------------------------
    # Settlement (inventory phase)
    # -------------------------------------------------------------------
    def _settle(self, order_id, payment_id, actor: str, note: str) -> Order:
        """Commit stock for the order and advance it. Caller holds the settlement claim."""
        order = self._order(order_id)
        if not order.can_transition_to(OrderStatus.PROCESSING):
            self.payments.swap_settlement(str(payment_id), Settlement.SETTLING.value, Settlement.PENDING.value)
            raise InvalidTransition(order.status, OrderStatus.PROCESSING.value)

        try:
            committed = self.inventory.commit_all(self._stock_lines(order))
        except InsufficientStock as exc:
            self.payments.swap_settlement(str(payment_id), Settlement.SETTLING.value, Settlement.PENDING.value)
            logger.error(
                "settlement_failed",
                order_id=str(order.id),
                payment_id=str(payment_id),
                product_id=exc.product_id,
                variant_key=exc.variant_key,
            )
            raise

        try:
            with self._record_lock(payment_id):
                payment = self._payment(payment_id)
                payment.mark_settled()
                order.transition(OrderStatus.PROCESSING, actor=actor, note=note)
                with UnitOfWork():
                    current_domain.repository_for(Payment).add(payment)
                    current_domain.repository_for(Order).add(order)
        except Exception:
            self.inventory.restore_all(committed)
            self.payments.swap_settlement(str(payment_id), Settlement.SETTLING.value, Settlement.PENDING.value)
            raise

        self.payments.swap_settlement(str(payment_id), Settlement.SETTLING.value, Settlement.SETTLED.value)
        logger.info("order_settled", order_id=str(order.id), payment_id=str(payment_id), lines=len(committed))

        self._convert_cart(order)
        self._notify("order_confirmed", order, total=order.pricing.total)
        return order

    def _convert_cart(self, order: Order) -> None:
        if not order.cart_id:
            return
        repo = current_domain.repository_for(ShoppingCart)
        try:
            cart = repo.get(order.cart_id)
        except ObjectNotFoundError:
            return
        if cart.status != CartStatus.ACTIVE.value or not cart.items:
            logger.info("cart_not_converted", cart_id=str(cart.id), status=cart.status)
            return
        cart.convert(str(order.id))
        repo.add(cart)

    def process_cod_order(self, order_id, actor: str = SYSTEM_ACTOR) -> Order:
        """Confirm a cash-on-delivery order: commit stock and move it to processing.

        A shortfall restores whatever was already committed and leaves the order
        pending, so it can be settled again after restocking or cancelled.
        """
        order = self._order(order_id)
        payment = self._payment(order.payment_id)
        entry = self._ledger_entry(payment)
        if entry.settlement == Settlement.SETTLED.value:
            return order

        if not self.payments.swap_settlement(str(payment.id), Settlement.PENDING.value, Settlement.SETTLING.value):
            raise Conflict(f"Order {order.order_number} is already being confirmed or was cancelled")

        return self._settle(order.id, payment.id, actor=actor, note="Cash on delivery order confirmed")

    def process_online_payment_order(self, payment_id, confirmation: PaymentConfirmation) -> ConfirmationResult:
        """Apply a verified confirmation exactly once.

        Duplicate or late deliveries are no-ops, except that a payment whose
        inventory phase previously failed gets that phase re-run.
        """
        payment = self._payment(payment_id)
        entry = self._ledger_entry(payment)
        actor = f"gateway:{payment.provider}" if confirmation.source == "webhook" else SYSTEM_ACTOR

        won = self.payments.swap_status(
            str(payment.id), _CONFIRMABLE, PaymentStatus.COMPLETED.value, claim_settlement=True
        )
        if won is not None:
            with self._record_lock(payment.id):
                payment = self._payment(payment_id)
                payment.confirm(
                    provider_payment_id=confirmation.provider_payment_id,
                    provider_order_id=confirmation.provider_order_id,
                    webhook_verified=confirmation.source == "webhook",
                )
                current_domain.repository_for(Payment).add(payment)
            logger.info(
                "payment_confirmed",
                payment_id=str(payment.id),
                order_id=str(payment.order_id),
                source=confirmation.source,
            )

            if won.settlement != Settlement.SETTLING.value:
                # Order was cancelled before the money arrived
                logger.warning(
                    "payment_received_for_cancelled_order",
                    payment_id=str(payment.id),
                    order_id=str(payment.order_id),
                )
                return ConfirmationResult(payment=payment, order=self._order(payment.order_id), applied=True)

            order = self._settle(payment.order_id, payment.id, actor=actor, note="Payment confirmed")
            return ConfirmationResult(payment=self._payment(payment.id), order=order, applied=True)

        entry = self.payments.get(str(payment.id))
        if entry.status == PaymentStatus.FAILED.value:
            raise Conflict(f"Payment {payment.id} has already failed")

        if entry.status in _PAID and entry.settlement == Settlement.PENDING.value:
            if self.payments.swap_settlement(str(payment.id), Settlement.PENDING.value, Settlement.SETTLING.value):
                logger.info("settlement_retried", payment_id=str(payment.id), source=confirmation.source)
                order = self._settle(payment.order_id, payment.id, actor=actor, note="Payment confirmed")
                return ConfirmationResult(payment=self._payment(payment.id), order=order, applied=False)

        logger.info(
            "payment_confirmation_duplicate",
            payment_id=str(payment.id),
            status=entry.status,
            settlement=entry.settlement,
            source=confirmation.source,
        )
        return ConfirmationResult(
            payment=self._payment(payment.id), order=self._order(payment.order_id), applied=False
        )

    def settle_order(self, order_id, actor: str = SYSTEM_ACTOR) -> Order:
        """Re-run the inventory phase for an order whose payment is in but stock is not."""
        order = self._order(order_id)
        if not order.payment_id:
            raise Conflict(f"Order {order.order_number} has no payment")
        payment = self._payment(order.payment_id)
        if not self.gateways.get(payment.provider).requires_confirmation:
            return self.process_cod_order(order_id, actor=actor)

        entry = self._ledger_entry(payment)
        if entry.settlement == Settlement.SETTLED.value:
            return order
        if entry.status not in _PAID:
            raise Conflict(f"Payment for order {order.order_number} has not been confirmed")
        if not self.payments.swap_settlement(str(payment.id), Settlement.PENDING.value, Settlement.SETTLING.value):
            raise Conflict(f"Order {order.order_number} is already being settled or was cancelled")
        return self._settle(order.id, payment.id, actor=actor, note="Settlement retried")

    # -------------------------------------------------------------------
    # Confirmation paths
    # -------------------------------------------------------------------
    def verify_payment(
        self,
        payment_id,
        identity: Identity,
        provider_payment_id: str | None,
        provider_order_id: str | None,
        signature: str | None,
    ) -> ConfirmationResult:
        """Synchronous, client-submitted confirmation."""
        payment = self._payment(payment_id)
        if not identity.is_admin and not payment.is_owned_by(identity.user_id):
            raise Forbidden("Payment belongs to someone else")

        gateway = self.gateways.get(payment.provider)
        if not gateway.requires_confirmation:
            raise ValidationError({"provider": ["Cash on delivery payments need no verification"]})

        entry = self._ledger_entry(payment)
        confirmation = PaymentConfirmation(
            provider_payment_id=provider_payment_id,
            provider_order_id=provider_order_id or payment.provider_order_id,
            source="client",
        )
        if entry.status == PaymentStatus.FAILED.value:
            raise Conflict(f"Payment {payment.id} has already failed")
        if entry.status not in _CONFIRMABLE:
            return self.process_online_payment_order(payment.id, confirmation)

        if payment.provider_order_id and confirmation.provider_order_id != payment.provider_order_id:
            valid = False
        else:
            valid = gateway.verify_signature(confirmation.provider_order_id, provider_payment_id, signature)

        if not valid:
            logger.warning("payment_signature_invalid", payment_id=str(payment.id), provider=payment.provider)
            self.handle_payment_failure(
                payment.id,
                reason="Payment verification failed - invalid signature",
                error_code="invalid_signature",
                actor=identity.actor,
            )
            raise ValidationError({"signature": ["Payment verification failed - invalid signature"]})

        return self.process_online_payment_order(payment.id, confirmation)

    def report_payment_failure(self, payment_id, identity: Identity, reason=None, error_code=None) -> Payment:
        """Client-reported failure (customer abandoned or the provider declined)."""
        payment = self._payment(payment_id)
        if not identity.is_admin and not payment.is_owned_by(identity.user_id):
            raise Forbidden("Payment belongs to someone else")
        return self.handle_payment_failure(
            payment.id,
            reason=reason or "Payment failed",
            error_code=error_code,
            actor=identity.actor,
        )

    def handle_payment_failure(self, payment_id, reason, error_code=None, actor: str = SYSTEM_ACTOR) -> Payment:
        """Fail the payment and cancel the order. No stock was committed, so none is restored.

        Cash on delivery payments and payments whose stock is already committed
        cannot fail; those orders go through ``cancel_order`` instead.
        """
        payment = self._payment(payment_id)
        entry = self._ledger_entry(payment)
        if entry.status == PaymentStatus.FAILED.value:
            return payment

        if not self.gateways.get(payment.provider).requires_confirmation:
            raise Conflict("Cash on delivery payments cannot fail, cancel the order instead")
        if entry.settlement in (Settlement.SETTLING.value, Settlement.SETTLED.value):
            raise Conflict(f"Payment {payment.id} is already settled, cancel the order instead")

        if self.payments.swap_status(str(payment.id), _CONFIRMABLE, PaymentStatus.FAILED.value) is None:
            raise Conflict(f"Payment {payment.id} is already {self.payments.get(str(payment.id)).status}")
        self.payments.swap_settlement(str(payment.id), Settlement.PENDING.value, Settlement.RELEASED.value)

        with self._record_lock(payment.id):
            payment = self._payment(payment_id)
            payment.fail(reason=reason, error_code=error_code)
            order = self._order(payment.order_id)
            if order.can_transition_to(OrderStatus.CANCELLED):
                order.transition(OrderStatus.CANCELLED, actor=actor, note=reason)
            with UnitOfWork():
                current_domain.repository_for(Payment).add(payment)
                current_domain.repository_for(Order).add(order)

        logger.info(
            "payment_failed",
            payment_id=str(payment.id),
            order_id=str(order.id),
            reason=reason,
            error_code=error_code,
        )
        self._notify("order_cancelled", order, reason=reason)
        return payment

    def handle_webhook(self, provider: str, raw_body: bytes, signature: str | None) -> WebhookOutcome:
        """Asynchronous confirmation path.

        Raises Unauthorized for a bad signature. Once the signature checks out,
        every failure is logged and reported as an outcome instead of raised,
        so the provider sees success and stops retrying.
        """
        gateway = self.gateways.get(provider)
        if not gateway.verify_webhook_signature(raw_body, signature or ""):
            logger.warning("webhook_signature_invalid", provider=provider)
            raise Unauthorized("Invalid webhook signature")

        event_type = None
        payment_id = None
        try:
            event = gateway.parse_webhook(raw_body)
            event_type = event.event_type
            if event.kind is WebhookKind.IGNORED:
                logger.info("webhook_ignored", provider=provider, event_type=event_type)
                return WebhookOutcome(status="ignored", event_type=event_type)

            payment = self._find_webhook_payment(provider, event)
            if payment is None:
                logger.warning(
                    "webhook_payment_not_found",
                    provider=provider,
                    event_type=event_type,
                    provider_order_id=event.provider_order_id,
                )
                return WebhookOutcome(status="ignored", event_type=event_type)
            payment_id = str(payment.id)

            if event.kind is WebhookKind.CAPTURED:
                result = self.process_online_payment_order(
                    payment.id,
                    PaymentConfirmation(
                        provider_payment_id=event.provider_payment_id,
                        provider_order_id=event.provider_order_id,
                        source="webhook",
                    ),
                )
                status = "processed" if result.applied else "duplicate"
            else:
                if self._ledger_entry(payment).status == PaymentStatus.FAILED.value:
                    status = "duplicate"
                else:
                    self.handle_payment_failure(
                        payment.id,
                        reason=event.failure_reason or "Payment failed at provider",
                        error_code="provider_reported",
                        actor=f"gateway:{provider}",
                    )
                    status = "processed"
        except Exception:
            logger.exception("webhook_processing_failed", provider=provider, event_type=event_type, payment_id=payment_id)
            return WebhookOutcome(status="error", payment_id=payment_id, event_type=event_type)

        logger.info("webhook_handled", provider=provider, event_type=event_type, payment_id=payment_id, outcome=status)
        return WebhookOutcome(status=status, payment_id=payment_id, event_type=event_type)

    @staticmethod
    def _find_webhook_payment(provider: str, event) -> Payment | None:
        if event.payment_reference:
            try:
                payment = current_domain.repository_for(Payment).get(event.payment_reference)
            except ObjectNotFoundError:
                payment = None
            if payment is not None and payment.provider == provider:
                return payment
        return find_payment_by_provider_order(provider, event.provider_order_id)

    def payment_status(self, payment_id, identity: Identity) -> dict:
        payment = self._payment(payment_id)
        if not identity.is_admin and not payment.is_owned_by(identity.user_id):
            raise Forbidden("Payment belongs to someone else")
        order = self._order(payment.order_id) if payment.order_id else None
        return {
            "payment_id": str(payment.id),
            "status": payment.status,
            "provider": payment.provider,
            "amount": payment.amount,
            "currency": payment.currency,
            "total_refunded": payment.total_refunded or 0,
            "settlement": payment.settlement,
            "order_id": str(order.id) if order else None,
            "order_number": order.order_number if order else None,
            "order_status": order.status if order else None,
        }

    # -------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------
    def update_order_status(self, order_id, new_status, identity: Identity, note=None, tracking: dict | None = None) -> Order:
        """Move an order along the graph, routing side-effecting targets to their workflows."""
        if not identity.is_admin:
            raise Forbidden("Only admins can change order status")

        target = parse_status(new_status)
        order = self._order(order_id)
        if not order.can_transition_to(target):
            raise InvalidTransition(order.status, target.value)

        if target is OrderStatus.CANCELLED:
            return self.cancel_order(order_id, identity, reason=note)
        if target is OrderStatus.PROCESSING and order.status != OrderStatus.ON_HOLD.value:
            return self.settle_order(order_id, actor=identity.actor)

        payment = self._payment(order.payment_id) if order.payment_id else None
        if target is OrderStatus.REFUNDED and payment is not None and payment.provider != "cod":
            if payment.status != PaymentStatus.REFUNDED.value:
                raise Conflict("Refund the payment in full before marking the order refunded")

        with self._record_lock(order.payment_id or order.id):
            order = self._order(order_id)
            order.transition(target, actor=identity.actor, note=note)
            if target is OrderStatus.SHIPPED and tracking and tracking.get("number"):
                order.update_tracking(tracking["number"], carrier=tracking.get("carrier"), url=tracking.get("url"))

            collected = False
            if target is OrderStatus.DELIVERED and payment is not None and payment.provider == "cod":
                collected = self._collect_cash(payment)

            with UnitOfWork():
                current_domain.repository_for(Order).add(order)
                if collected:
                    current_domain.repository_for(Payment).add(payment)

        logger.info("order_status_updated", order_id=str(order.id), status=order.status, actor=identity.actor)
        if target in (OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            self._notify(f"order_{target.value}", order)
        return order

    def _collect_cash(self, payment: Payment) -> bool:
        """Cash on delivery: the money arrives with the parcel."""
        if self.payments.swap_status(str(payment.id), _CONFIRMABLE, PaymentStatus.COMPLETED.value) is None:
            return False
        payment.confirm()
        logger.info("cash_collected", payment_id=str(payment.id), amount=payment.amount)
        return True

    def cancel_order(self, order_id, identity: Identity, reason=None) -> Order:
        """Cancel an order, handing back any stock it had committed."""
        order = self._order(order_id)
        if not identity.is_admin and not order.is_owned_by(identity.user_id):
            raise Forbidden("Order belongs to someone else")
        if not order.can_transition_to(OrderStatus.CANCELLED):
            raise InvalidTransition(order.status, OrderStatus.CANCELLED.value)
        return self._cancel(order, identity.actor, reason or "Cancelled on request")

    def _cancel_unpaid(self, order_id, reason: str) -> Order:
        return self._cancel(self._order(order_id), SYSTEM_ACTOR, reason)

    def _cancel(self, order: Order, actor: str, reason: str) -> Order:
        payment = self._payment(order.payment_id) if order.payment_id else None
        restored = False
        if payment is not None:
            self._ledger_entry(payment)
            pid = str(payment.id)
            if self.payments.swap_settlement(pid, Settlement.SETTLED.value, Settlement.RELEASED.value):
                self.inventory.restore_all(self._stock_lines(order))
                restored = True
            elif not self.payments.swap_settlement(pid, Settlement.PENDING.value, Settlement.RELEASED.value):
                if self.payments.get(pid).settlement == Settlement.SETTLING.value:
                    raise Conflict(f"Order {order.order_number} is being confirmed, try again")

        with self._record_lock(order.payment_id or order.id):
            order = self._order(order.id)
            order.transition(OrderStatus.CANCELLED, actor=actor, note=reason)
            if payment is not None:
                payment = self._payment(payment.id)
                if payment.settlement != Settlement.RELEASED.value:
                    payment.mark_released()
            with UnitOfWork():
                current_domain.repository_for(Order).add(order)
                if payment is not None:
                    current_domain.repository_for(Payment).add(payment)

        logger.info("order_cancelled", order_id=str(order.id), actor=actor, stock_restored=restored)
        self._notify("order_cancelled", order, reason=reason)
        return order

    def refund_payment(self, payment_id, amount: int, reason, identity: Identity) -> Payment:
        """Refund part or all of a payment.

        The ledger reserves the amount first, so concurrent refunds can never
        exceed what was paid. A provider failure hands the reservation back.
        """
        if not identity.is_admin:
            raise Forbidden("Only admins can issue refunds")
        if amount is None or amount <= 0:
            raise InvalidRefund({"amount": ["Refund amount must be positive"]})

        payment = self._payment(payment_id)
        gateway = self.gateways.get(payment.provider)
        if not gateway.requires_confirmation:
            raise InvalidRefund("COD orders cannot be refunded online")

        self._ledger_entry(payment)
        pid = str(payment.id)
        restore_status = (
            PaymentStatus.CAPTURED.value if payment.status == PaymentStatus.CAPTURED.value else PaymentStatus.COMPLETED.value
        )
        if self.payments.reserve_refund(pid, amount, _REFUNDABLE) is None:
            current = self.payments.get(pid)
            if current.status not in _REFUNDABLE:
                raise InvalidRefund(f"Payment in status '{current.status}' cannot be refunded")
            remaining = current.amount - current.total_refunded
            raise InvalidRefund({"amount": [f"Refund of {amount} exceeds refundable amount {remaining}"]})

        try:
            result = gateway.create_refund(payment.provider_payment_id, amount, reason)
        except GatewayError:
            self.payments.release_refund(pid, amount, restore_status)
            logger.warning("refund_failed_at_provider", payment_id=pid, amount=amount)
            raise

        with self._record_lock(pid):
            payment = self._payment(pid)
            refund = payment.process_refund(
                amount, reason=reason, provider_refund_id=result.provider_refund_id, processed_by=identity.actor
            )
            order = self._order(payment.order_id)
            if payment.status == PaymentStatus.REFUNDED.value and order.can_transition_to(OrderStatus.REFUNDED):
                order.transition(OrderStatus.REFUNDED, actor=identity.actor, note=reason or "Payment refunded in full")
            with UnitOfWork():
                current_domain.repository_for(Payment).add(payment)
                current_domain.repository_for(Order).add(order)

        logger.info(
            "refund_processed",
            payment_id=pid,
            refund_id=str(refund.id),
            amount=amount,
            total_refunded=payment.total_refunded,
        )
        self._notify("refund_processed", order, amount=amount, refund_id=str(refund.id))
        return payment
