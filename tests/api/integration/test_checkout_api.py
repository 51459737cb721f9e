"""Checkout, payment and order administration endpoints via TestClient."""

import json
import threading

import pytest

CUSTOMER = {"Authorization": "Bearer customer-token"}
OTHER = {"Authorization": "Bearer other-token"}
ADMIN = {"Authorization": "Bearer admin-token"}


@pytest.fixture()
def online(client, store):
    product_id = store.product(name="Headphones", price=995_000, stock=5)
    response = store.checkout(store.cart((product_id, 1)), method="razorpay")
    assert response.status_code == 201, response.text
    body = response.json()
    body["product_id"] = product_id
    return body


def _verify(client, razorpay, online, provider_payment_id="pay_rzp_001", signature=None):
    provider_order_id = online["intent"]["provider_order_id"]
    return client.post(
        f"/payments/{online['payment_id']}/verify",
        json={
            "provider_payment_id": provider_payment_id,
            "provider_order_id": provider_order_id,
            "signature": signature or razorpay.sign(provider_order_id, provider_payment_id),
        },
        headers=CUSTOMER,
    )


class TestCheckout:
    def test_cod_checkout(self, client, store, shop):
        mug = store.product(name="Mug", price=50000)
        lamp = store.product(name="Lamp", price=150000)

        response = store.checkout(store.cart((mug, 2), (lamp, 1)))

        assert response.status_code == 201
        body = response.json()
        assert body["order_status"] == "processing"
        assert body["total"] == 255000
        assert body["payment_status"] == "initiated"
        assert body["intent"] is None
        assert shop.level(mug) == 8

    def test_online_checkout_returns_intent(self, online):
        assert online["order_status"] == "payment_pending"
        assert online["payment_status"] == "pending"
        assert online["total"] == 1_000_000
        assert online["intent"]["provider"] == "razorpay"
        assert online["intent"]["provider_order_id"]

    def test_stock_shortfall(self, client, store):
        product_id = store.product(name="Lamp", stock=3)
        response = store.checkout(store.cart((product_id, 5)))

        assert response.status_code == 400
        assert response.json() == {
            "error": "CartInvalid",
            "messages": {"cart": ["Only 3 available for Lamp (requested 5)"]},
        }

    def test_unknown_payment_method(self, store):
        product_id = store.product()
        assert store.checkout(store.cart((product_id, 1)), method="paypal").status_code == 400

    def test_someone_elses_cart(self, store):
        product_id = store.product()
        cart_id = store.cart((product_id, 1))
        assert store.checkout(cart_id, headers=OTHER).status_code == 403

    def test_gateway_outage(self, store, razorpay):
        razorpay.configure(available=False)
        product_id = store.product()
        response = store.checkout(store.cart((product_id, 1)), method="razorpay")
        assert response.status_code == 502
        assert response.json()["error"] == "GatewayUnavailable"


class TestPaymentConfirmation:
    def test_verify(self, client, razorpay, online, shop):
        response = _verify(client, razorpay, online)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["order_status"] == "processing"
        assert body["settlement"] == "settled"
        assert shop.level(online["product_id"]) == 4

    def test_invalid_signature(self, client, razorpay, online):
        response = _verify(client, razorpay, online, signature="forged")

        assert response.status_code == 400
        status = client.get(f"/payments/{online['payment_id']}/status", headers=CUSTOMER).json()
        assert status["status"] == "failed"
        assert status["order_status"] == "cancelled"

    def test_verify_after_failure_conflicts(self, client, razorpay, online):
        client.post(f"/payments/{online['payment_id']}/failed", json={"error_message": "Closed"}, headers=CUSTOMER)
        assert _verify(client, razorpay, online).status_code == 409

    def test_webhook_then_duplicate(self, client, razorpay, online, shop):
        body = json.dumps(
            {"event": "payment.captured", "provider_order_id": online["intent"]["provider_order_id"]}
        ).encode()
        headers = {"X-Razorpay-Signature": razorpay.sign_webhook(body), "Content-Type": "application/json"}

        first = client.post("/payments/webhooks/razorpay", content=body, headers=headers)
        second = client.post("/payments/webhooks/razorpay", content=body, headers=headers)

        assert (first.status_code, first.json()) == (200, {"status": "processed"})
        assert (second.status_code, second.json()) == (200, {"status": "duplicate"})
        assert shop.level(online["product_id"]) == 4

    def test_verify_and_webhook_racing_commit_stock_once(self, client, razorpay, online, shop):
        body = json.dumps(
            {"event": "payment.captured", "provider_order_id": online["intent"]["provider_order_id"]}
        ).encode()
        headers = {"X-Razorpay-Signature": razorpay.sign_webhook(body), "Content-Type": "application/json"}
        start = threading.Barrier(2)
        responses = {}

        def deliver_webhook():
            start.wait()
            responses["webhook"] = client.post("/payments/webhooks/razorpay", content=body, headers=headers)

        def submit_verification():
            start.wait()
            responses["verify"] = _verify(client, razorpay, online)

        threads = [threading.Thread(target=deliver_webhook), threading.Thread(target=submit_verification)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert responses["verify"].status_code == 200, responses["verify"].text
        assert responses["verify"].json()["status"] == "completed"
        assert responses["webhook"].status_code == 200
        assert responses["webhook"].json()["status"] in ("processed", "duplicate")
        assert shop.level(online["product_id"]) == 4

    def test_webhook_bad_signature(self, client, online):
        response = client.post(
            "/payments/webhooks/razorpay",
            content=b'{"event":"payment.captured"}',
            headers={"X-Razorpay-Signature": "forged"},
        )
        assert response.status_code == 401

    def test_webhook_unknown_provider(self, client):
        assert client.post("/payments/webhooks/paypal", content=b"{}").status_code == 404

    def test_status_is_private(self, client, online):
        assert client.get(f"/payments/{online['payment_id']}/status", headers=OTHER).status_code == 403


class TestRefundsApi:
    def test_partial_then_overdraw(self, client, razorpay, online):
        _verify(client, razorpay, online)

        first = client.post(f"/payments/{online['payment_id']}/refunds", json={"amount": 400_000}, headers=ADMIN)
        assert first.json() == {
            "payment_id": online["payment_id"],
            "status": "partially_refunded",
            "total_refunded": 400_000,
            "refundable_amount": 600_000,
        }

        second = client.post(f"/payments/{online['payment_id']}/refunds", json={"amount": 700_000}, headers=ADMIN)
        assert second.status_code == 400
        assert second.json()["messages"] == {"amount": ["Refund of 700000 exceeds refundable amount 600000"]}

    def test_customers_cannot_refund(self, client, razorpay, online):
        _verify(client, razorpay, online)
        response = client.post(f"/payments/{online['payment_id']}/refunds", json={"amount": 100}, headers=CUSTOMER)
        assert response.status_code == 403

    def test_non_positive_amount_is_rejected_by_schema(self, client, online):
        response = client.post(f"/payments/{online['payment_id']}/refunds", json={"amount": 0}, headers=ADMIN)
        assert response.status_code == 422


class TestOrderAdministration:
    @pytest.fixture()
    def cod_order(self, store):
        product_id = store.product(stock=5)
        body = store.checkout(store.cart((product_id, 1))).json()
        body["product_id"] = product_id
        return body

    def test_get_order(self, client, cod_order):
        body = client.get(f"/orders/{cod_order['order_id']}", headers=CUSTOMER).json()
        assert body["order_number"] == cod_order["order_number"]
        assert [entry["status"] for entry in body["status_history"]] == ["pending", "processing"]
        assert body["shipping_address"]["city"] == "Bengaluru"

    def test_get_order_forbidden_for_others(self, client, cod_order):
        assert client.get(f"/orders/{cod_order['order_id']}", headers=OTHER).status_code == 403
        assert client.get(f"/orders/{cod_order['order_id']}", headers=ADMIN).status_code == 200

    def test_ship_and_deliver(self, client, cod_order):
        shipped = client.put(
            f"/orders/{cod_order['order_id']}/status",
            json={"status": "shipped", "tracking": {"number": "AWB123", "carrier": "BlueDart"}},
            headers=ADMIN,
        )
        assert shipped.json()["tracking"]["number"] == "AWB123"

        delivered = client.put(f"/orders/{cod_order['order_id']}/status", json={"status": "delivered"}, headers=ADMIN)
        assert delivered.json()["status"] == "delivered"
        payment = client.get(f"/payments/{cod_order['payment_id']}/status", headers=CUSTOMER).json()
        assert payment["status"] == "completed"

    def test_invalid_transition(self, client, cod_order):
        response = client.put(f"/orders/{cod_order['order_id']}/status", json={"status": "delivered"}, headers=ADMIN)
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidTransition"

    def test_status_change_requires_admin(self, client, cod_order):
        response = client.put(f"/orders/{cod_order['order_id']}/status", json={"status": "shipped"}, headers=CUSTOMER)
        assert response.status_code == 403

    def test_customer_cancels(self, client, cod_order, shop):
        response = client.post(f"/orders/{cod_order['order_id']}/cancel", json={"reason": "Changed mind"}, headers=CUSTOMER)
        assert response.json()["status"] == "cancelled"
        assert shop.level(cod_order["product_id"]) == 5

    def test_notes_and_tracking(self, client, cod_order):
        noted = client.post(f"/orders/{cod_order['order_id']}/notes", json={"note": "Gift wrap"}, headers=ADMIN)
        assert noted.status_code == 201
        tracked = client.post(
            f"/orders/{cod_order['order_id']}/tracking", json={"number": "AWB999"}, headers=ADMIN
        )
        assert tracked.json() == {"status": "tracking_updated"}

        body = client.get(f"/orders/{cod_order['order_id']}", headers=ADMIN).json()
        assert body["notes"][0]["note"] == "Gift wrap"
        assert body["notes"][0]["author"] == "admin:admin-001"
        assert body["tracking"]["number"] == "AWB999"
