"""Tests for refund accounting on the Payment aggregate."""

import pytest
from orderflow.errors import InvalidRefund
from orderflow.payment.payment import Payment, PaymentStatus


@pytest.fixture()
def completed_payment():
    payment = Payment.create(customer_id="cust-001", provider="razorpay", amount=1_000_000, order_id="ord-001")
    payment.confirm(provider_payment_id="pay_rzp_1")
    payment._events.clear()
    return payment


class TestPartialRefunds:
    def test_partial_refund_then_overdraw_rejected(self, completed_payment):
        completed_payment.process_refund(400_000, reason="Damaged box")
        assert completed_payment.status == PaymentStatus.PARTIALLY_REFUNDED.value
        assert completed_payment.total_refunded == 400_000
        assert completed_payment.refundable_amount == 600_000

        with pytest.raises(InvalidRefund) as exc:
            completed_payment.process_refund(700_000)
        assert "exceeds refundable amount 600000" in exc.value.messages["amount"][0]
        assert completed_payment.total_refunded == 400_000

    def test_refund_of_remainder_completes_refund(self, completed_payment):
        completed_payment.process_refund(400_000)
        completed_payment.process_refund(600_000)
        assert completed_payment.status == PaymentStatus.REFUNDED.value
        assert completed_payment.total_refunded == completed_payment.amount
        assert completed_payment.refundable_amount == 0

    def test_refund_records_are_appended(self, completed_payment):
        refund = completed_payment.process_refund(
            250_000, reason="Late delivery", provider_refund_id="rfnd_1", processed_by="admin:ops"
        )
        assert refund.id.startswith("REF-")
        assert len(completed_payment.refunds) == 1
        assert completed_payment.refunds[0].provider_refund_id == "rfnd_1"
        event = completed_payment._events[-1]
        assert event.__class__.__name__ == "RefundProcessed"
        assert event.total_refunded == 250_000


class TestRefundGuards:
    def test_full_refund(self, completed_payment):
        completed_payment.process_refund(1_000_000)
        assert completed_payment.status == PaymentStatus.REFUNDED.value

    def test_fully_refunded_cannot_refund_again(self, completed_payment):
        completed_payment.process_refund(1_000_000)
        with pytest.raises(InvalidRefund):
            completed_payment.process_refund(1)

    @pytest.mark.parametrize("amount", [0, -100])
    def test_non_positive_amount_rejected(self, completed_payment, amount):
        with pytest.raises(InvalidRefund):
            completed_payment.process_refund(amount)

    def test_unpaid_payment_cannot_be_refunded(self):
        payment = Payment.create(customer_id="cust-001", provider="razorpay", amount=50_000)
        with pytest.raises(InvalidRefund):
            payment.process_refund(10_000)

    def test_total_refunded_never_exceeds_amount(self, completed_payment):
        for amount in (300_000, 300_000, 300_000, 300_000):
            try:
                completed_payment.process_refund(amount)
            except InvalidRefund:
                pass
            assert completed_payment.total_refunded <= completed_payment.amount
        assert completed_payment.total_refunded == 900_000
