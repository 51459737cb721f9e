"""Checkout load test scenarios.

Three stateful SequentialTaskSet journeys: cash-on-delivery checkout,
online payment through the fake gateway (client confirmation racing a
webhook), and an admin fulfilment pass that ships, delivers and refunds.

The server must run with PAYMENT_METHODS=cod,fake and an API_TOKENS table
holding the customer and admin tokens below.
"""

import os
import random

from locust import HttpUser, SequentialTaskSet, between, task

from loadtests.data_generators import captured_webhook, checkout_data, product_data, verify_data
from loadtests.helpers.response import extract_error_detail
from loadtests.helpers.state import CheckoutState

CUSTOMER_HEADERS = {"Authorization": f"Bearer {os.environ.get('LOADTEST_CUSTOMER_TOKEN', 'customer-token')}"}
ADMIN_HEADERS = {"Authorization": f"Bearer {os.environ.get('LOADTEST_ADMIN_TOKEN', 'admin-token')}"}


class _CartJourney(SequentialTaskSet):
    """Registers products and fills a cart; subclasses pay for it."""

    payment_method = "cod"

    def on_start(self):
        self.state = CheckoutState()

    @task
    def register_products(self):
        for _ in range(random.randint(1, 3)):
            with self.client.post(
                "/products",
                json=product_data(),
                headers=ADMIN_HEADERS,
                catch_response=True,
                name="POST /products",
            ) as resp:
                if resp.status_code == 201:
                    self.state.product_ids.append(resp.json()["product_id"])
                else:
                    resp.failure(f"Register product failed: {resp.status_code} - {extract_error_detail(resp)}")
                    self.interrupt()

    @task
    def create_cart(self):
        with self.client.post(
            "/carts",
            json={},
            headers=CUSTOMER_HEADERS,
            catch_response=True,
            name="POST /carts",
        ) as resp:
            if resp.status_code == 201:
                self.state.cart_id = resp.json()["cart_id"]
            else:
                resp.failure(f"Create cart failed: {resp.status_code} - {extract_error_detail(resp)}")
                self.interrupt()

    @task
    def add_items(self):
        for product_id in self.state.product_ids:
            with self.client.post(
                f"/carts/{self.state.cart_id}/items",
                json={"product_id": product_id, "quantity": random.randint(1, 3)},
                headers=CUSTOMER_HEADERS,
                catch_response=True,
                name="POST /carts/{id}/items",
            ) as resp:
                if resp.status_code != 201:
                    resp.failure(f"Add cart item failed: {resp.status_code} - {extract_error_detail(resp)}")
                    self.interrupt()

    @task
    def checkout(self):
        with self.client.post(
            "/checkout",
            json=checkout_data(self.state.cart_id, self.payment_method),
            headers=CUSTOMER_HEADERS,
            catch_response=True,
            name="POST /checkout",
        ) as resp:
            if resp.status_code == 201:
                body = resp.json()
                self.state.order_id = body["order_id"]
                self.state.order_status = body["order_status"]
                self.state.payment_id = body["payment_id"]
                self.state.total = body["total"]
                if body.get("intent"):
                    self.state.provider_order_id = body["intent"]["provider_order_id"]
            else:
                resp.failure(f"Checkout failed: {resp.status_code} - {extract_error_detail(resp)}")
                self.interrupt()


class CashOnDeliveryJourney(_CartJourney):
    """Register -> Cart -> Checkout (COD) -> Read Order.

    The order is confirmed during checkout, so it must already be processing.
    """

    @task
    def read_order(self):
        with self.client.get(
            f"/orders/{self.state.order_id}",
            headers=CUSTOMER_HEADERS,
            catch_response=True,
            name="GET /orders/{id}",
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Get order failed: {resp.status_code} - {extract_error_detail(resp)}")
            elif resp.json()["status"] != "processing":
                resp.failure(f"COD order not confirmed: {resp.json()['status']}")

    @task
    def done(self):
        self.interrupt()


class _OnlinePaymentJourney(_CartJourney):
    """Register -> Cart -> Checkout (fake gateway) -> Webhook + Verify -> Status.

    The webhook and the client confirmation both report the same capture;
    whichever lands second must be absorbed as a duplicate.
    """

    payment_method = "fake"

    @task
    def webhook(self):
        body, signature = captured_webhook(self.state.provider_order_id)
        with self.client.post(
            "/payments/webhooks/fake",
            data=body,
            headers={"X-Gateway-Signature": signature, "Content-Type": "application/json"},
            catch_response=True,
            name="POST /payments/webhooks/{provider}",
        ) as resp:
            if resp.status_code != 200 or resp.json()["status"] not in ("processed", "duplicate"):
                resp.failure(f"Webhook failed: {resp.status_code} - {extract_error_detail(resp)}")

    @task
    def verify(self):
        with self.client.post(
            f"/payments/{self.state.payment_id}/verify",
            json=verify_data(self.state.provider_order_id),
            headers=CUSTOMER_HEADERS,
            catch_response=True,
            name="POST /payments/{id}/verify",
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Verify failed: {resp.status_code} - {extract_error_detail(resp)}")

    @task
    def payment_status(self):
        with self.client.get(
            f"/payments/{self.state.payment_id}/status",
            headers=CUSTOMER_HEADERS,
            catch_response=True,
            name="GET /payments/{id}/status",
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Payment status failed: {resp.status_code} - {extract_error_detail(resp)}")
            elif resp.json()["status"] != "completed":
                resp.failure(f"Payment not completed: {resp.json()['status']}")


class OnlinePaymentJourney(_OnlinePaymentJourney):
    @task
    def done(self):
        self.interrupt()


class FulfilmentJourney(_OnlinePaymentJourney):
    """Paid online order -> Ship -> Deliver -> Partial Refund -> Refund Remainder."""

    def _set_status(self, status, **extra):
        with self.client.put(
            f"/orders/{self.state.order_id}/status",
            json={"status": status, **extra},
            headers=ADMIN_HEADERS,
            catch_response=True,
            name="PUT /orders/{id}/status",
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Set status {status} failed: {resp.status_code} - {extract_error_detail(resp)}")
                self.interrupt()

    def _refund(self, amount):
        with self.client.post(
            f"/payments/{self.state.payment_id}/refunds",
            json={"amount": amount, "reason": "Load test refund"},
            headers=ADMIN_HEADERS,
            catch_response=True,
            name="POST /payments/{id}/refunds",
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Refund failed: {resp.status_code} - {extract_error_detail(resp)}")
                self.interrupt()

    @task
    def ship(self):
        self._set_status("shipped", tracking={"number": f"AWB{random.randint(100000, 999999)}", "carrier": "BlueDart"})

    @task
    def deliver(self):
        self._set_status("delivered")

    @task
    def partial_refund(self):
        self._refund(self.state.total // 2)

    @task
    def refund_remainder(self):
        self._refund(self.state.total - self.state.total // 2)

    @task
    def done(self):
        self.interrupt()


class CheckoutUser(HttpUser):
    """Storefront traffic: mostly COD, some online, a few fulfilment passes."""

    wait_time = between(0.5, 2.0)
    tasks = {
        CashOnDeliveryJourney: 5,
        OnlinePaymentJourney: 4,
        FulfilmentJourney: 1,
    }
