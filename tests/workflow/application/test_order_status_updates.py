"""Admin status changes routed through the workflow."""

import pytest
from orderflow.errors import Conflict, Forbidden, InvalidTransition
from orderflow.order.order import OrderStatus
from orderflow.payment.payment import PaymentStatus
from protean.exceptions import ValidationError


@pytest.fixture()
def cod_order(workflow, shop, customer):
    product_id = shop.product(stock=5)
    return workflow.checkout(shop.cart([(product_id, 1)]), customer, shop.address(), "cod").order


class TestFulfilment:
    def test_ship_with_tracking(self, workflow, cod_order, admin, notifier):
        order = workflow.update_order_status(
            cod_order.id,
            "shipped",
            admin,
            note="Handed to courier",
            tracking={"number": " AWB123 ", "carrier": "BlueDart"},
        )

        assert order.status == OrderStatus.SHIPPED.value
        assert order.shipped_at is not None
        assert order.tracking.number == "AWB123"
        assert order.history()[-1].actor == "admin:admin-001"
        assert notifier.events_for(order.id)[-1] == "order_shipped"

    def test_delivery_collects_cash(self, workflow, cod_order, admin, notifier):
        workflow.update_order_status(cod_order.id, "shipped", admin)
        order = workflow.update_order_status(cod_order.id, "delivered", admin)

        payment = workflow._payment(order.payment_id)
        assert order.status == OrderStatus.DELIVERED.value
        assert payment.status == PaymentStatus.COMPLETED.value
        assert workflow.payments.get(str(payment.id)).status == PaymentStatus.COMPLETED.value
        assert notifier.events_for(order.id)[-1] == "order_delivered"

    def test_hold_and_resume(self, workflow, cod_order, admin, shop):
        workflow.update_order_status(cod_order.id, "on_hold", admin, note="Address check")
        order = workflow.update_order_status(cod_order.id, "processing", admin)

        assert order.status == OrderStatus.PROCESSING.value
        assert [entry.status for entry in order.history()] == ["pending", "processing", "on_hold", "processing"]

    def test_cancel_routes_through_cancellation(self, workflow, cod_order, admin, shop):
        product_id = str(cod_order.lines()[0].product_id)
        order = workflow.update_order_status(cod_order.id, "cancelled", admin, note="Fraud check")

        assert order.status == OrderStatus.CANCELLED.value
        assert shop.level(product_id) == 5

    def test_cod_order_can_be_marked_refunded_after_delivery(self, workflow, cod_order, admin):
        workflow.update_order_status(cod_order.id, "shipped", admin)
        workflow.update_order_status(cod_order.id, "delivered", admin)
        order = workflow.update_order_status(cod_order.id, "refunded", admin, note="Cash returned")
        assert order.status == OrderStatus.REFUNDED.value


class TestStatusGuards:
    def test_admins_only(self, workflow, cod_order, customer):
        with pytest.raises(Forbidden):
            workflow.update_order_status(cod_order.id, "shipped", customer)

    def test_skipping_states_is_rejected(self, workflow, cod_order, admin):
        workflow.update_order_status(cod_order.id, "shipped", admin)
        with pytest.raises(InvalidTransition) as exc:
            workflow.update_order_status(cod_order.id, "completed", admin)
        assert exc.value.messages == {"status": ["Cannot transition order from 'shipped' to 'completed'"]}

    def test_unknown_status(self, workflow, cod_order, admin):
        with pytest.raises(ValidationError):
            workflow.update_order_status(cod_order.id, "teleported", admin)

    def test_online_order_needs_refunded_payment(self, workflow, razorpay, online_checkout, customer, admin):
        provider_order_id = online_checkout.intent.provider_order_id
        workflow.verify_payment(
            online_checkout.payment.id,
            customer,
            "pay_rzp_001",
            provider_order_id,
            razorpay.sign(provider_order_id, "pay_rzp_001"),
        )
        workflow.update_order_status(online_checkout.order.id, "shipped", admin)
        workflow.update_order_status(online_checkout.order.id, "delivered", admin)

        with pytest.raises(Conflict):
            workflow.update_order_status(online_checkout.order.id, "refunded", admin)

    def test_processing_an_unpaid_online_order(self, workflow, online_checkout, admin):
        with pytest.raises(Conflict):
            workflow.update_order_status(online_checkout.order.id, "processing", admin)
