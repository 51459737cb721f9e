"""Refunds through the provider, capped by the payment ledger."""

import pytest
from orderflow.errors import Forbidden, GatewayError, InvalidRefund
from orderflow.order.order import OrderStatus
from orderflow.payment.payment import PaymentStatus


@pytest.fixture()
def paid(workflow, razorpay, online_checkout, customer):
    provider_order_id = online_checkout.intent.provider_order_id
    workflow.verify_payment(
        online_checkout.payment.id,
        customer,
        "pay_rzp_001",
        provider_order_id,
        razorpay.sign(provider_order_id, "pay_rzp_001"),
    )
    return online_checkout


class TestRefunds:
    def test_partial_then_overdraw_then_remainder(self, workflow, paid, admin, razorpay):
        payment = workflow.refund_payment(paid.payment.id, 400_000, "Damaged box", admin)
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED.value
        assert payment.total_refunded == 400_000

        with pytest.raises(InvalidRefund) as exc:
            workflow.refund_payment(paid.payment.id, 700_000, None, admin)
        assert exc.value.messages == {"amount": ["Refund of 700000 exceeds refundable amount 600000"]}

        payment = workflow.refund_payment(paid.payment.id, 600_000, None, admin)
        assert payment.status == PaymentStatus.REFUNDED.value
        assert payment.total_refunded == 1_000_000

        refunds = [call for call in razorpay.calls if call["method"] == "create_refund"]
        assert [call["amount"] for call in refunds] == [400_000, 600_000]
        assert refunds[0]["provider_payment_id"] == "pay_rzp_001"

    def test_provider_failure_releases_the_reservation(self, workflow, paid, admin, razorpay):
        razorpay.configure(should_succeed=False)

        with pytest.raises(GatewayError):
            workflow.refund_payment(paid.payment.id, 400_000, None, admin)

        entry = workflow.payments.get(str(paid.payment.id))
        assert entry.total_refunded == 0
        assert entry.status == PaymentStatus.COMPLETED.value

        razorpay.configure(should_succeed=True)
        assert workflow.refund_payment(paid.payment.id, 1_000_000, None, admin).status == PaymentStatus.REFUNDED.value

    def test_full_refund_of_delivered_order_refunds_the_order(self, workflow, paid, admin, notifier):
        workflow.update_order_status(paid.order.id, "shipped", admin)
        workflow.update_order_status(paid.order.id, "delivered", admin)

        workflow.refund_payment(paid.payment.id, 1_000_000, "Returned", admin)

        assert workflow._order(paid.order.id).status == OrderStatus.REFUNDED.value
        assert notifier.events_for(paid.order.id)[-1] == "refund_processed"

    def test_full_refund_leaves_processing_order_alone(self, workflow, paid, admin):
        workflow.refund_payment(paid.payment.id, 1_000_000, None, admin)
        assert workflow._order(paid.order.id).status == OrderStatus.PROCESSING.value


class TestRefundGuards:
    def test_unpaid_payment(self, workflow, online_checkout, admin):
        with pytest.raises(InvalidRefund) as exc:
            workflow.refund_payment(online_checkout.payment.id, 100, None, admin)
        assert exc.value.messages == {"refund": ["Payment in status 'pending' cannot be refunded"]}

    def test_cod_cannot_be_refunded_online(self, workflow, shop, customer, admin):
        product_id = shop.product()
        result = workflow.checkout(shop.cart([(product_id, 1)]), customer, shop.address(), "cod")

        with pytest.raises(InvalidRefund):
            workflow.refund_payment(result.payment.id, 100, None, admin)

    @pytest.mark.parametrize("amount", [0, -5])
    def test_amount_must_be_positive(self, workflow, paid, admin, amount):
        with pytest.raises(InvalidRefund):
            workflow.refund_payment(paid.payment.id, amount, None, admin)

    def test_admins_only(self, workflow, paid, customer):
        with pytest.raises(Forbidden):
            workflow.refund_payment(paid.payment.id, 100, None, customer)
