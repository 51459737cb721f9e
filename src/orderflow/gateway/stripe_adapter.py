"""Stripe adapter (Checkout Sessions + signed webhooks) on stripe-python.

Stripe has no client-side signature; the synchronous path confirms by
reading the session back and checking it is paid.
"""

import json
from contextlib import contextmanager

import requests
import stripe
import structlog

from orderflow.errors import GatewayError, GatewayUnavailable
from orderflow.gateway.port import PaymentGateway, PaymentIntent, RefundResult, WebhookEvent, WebhookKind

logger = structlog.get_logger(__name__)

_FAILED_EVENTS = ("checkout.session.async_payment_failed", "checkout.session.expired")


class StripeGateway(PaymentGateway):
    name = "stripe"

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        success_url: str = "http://localhost:3000/checkout/success",
        cancel_url: str = "http://localhost:3000/checkout/cancel",
        tolerance_seconds: int = 300,
        client: stripe.StripeClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.timeout = timeout
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.tolerance_seconds = tolerance_seconds
        self.client = client
        if self.client is None and api_key:
            self.client = stripe.StripeClient(
                api_key,
                http_client=stripe.RequestsClient(timeout=timeout, session=session),
            )

    @contextmanager
    def _call(self, operation: str):
        """Translate stripe-python errors into the gateway error taxonomy."""
        if not self.api_key or self.client is None:
            raise GatewayUnavailable("Stripe credentials are not configured")
        try:
            yield
        except stripe.APIConnectionError as exc:
            logger.warning("gateway_unreachable", provider=self.name, operation=operation, error=str(exc))
            raise GatewayUnavailable(f"{self.name} is unreachable") from exc
        except stripe.StripeError as exc:
            status = exc.http_status or 0
            if status >= 500 or status == 429:
                logger.warning("gateway_server_error", provider=self.name, operation=operation, status=status)
                raise GatewayUnavailable(f"{self.name} returned HTTP {status}") from exc
            logger.warning("gateway_rejected_request", provider=self.name, operation=operation, status=status)
            raise GatewayError(f"{self.name} rejected the request: {exc.user_message or exc}") from exc

    def create_intent(self, amount: int, currency: str, reference: str, payment_id: str) -> PaymentIntent:
        with self._call("create_checkout_session"):
            session = self.client.v1.checkout.sessions.create(
                params={
                    "mode": "payment",
                    "line_items": [
                        {
                            "price_data": {
                                "currency": currency.lower(),
                                "unit_amount": amount,
                                "product_data": {"name": f"Order {reference}"},
                            },
                            "quantity": 1,
                        }
                    ],
                    "metadata": {"payment_id": payment_id, "order_number": reference},
                    "success_url": f"{self.success_url}?session_id={{CHECKOUT_SESSION_ID}}",
                    "cancel_url": self.cancel_url,
                }
            )
        return PaymentIntent(
            provider=self.name,
            provider_order_id=session["id"],
            client_payload={"session_id": session["id"], "url": session.get("url")},
        )

    def verify_signature(self, provider_order_id: str, provider_payment_id: str, signature: str) -> bool:  # noqa: ARG002
        if not provider_order_id:
            return False
        with self._call("retrieve_checkout_session"):
            session = self.client.v1.checkout.sessions.retrieve(provider_order_id)
        if session.get("payment_status") != "paid":
            return False
        return not provider_payment_id or session.get("payment_intent") == provider_payment_id

    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        if not signature or not self.webhook_secret:
            return False
        try:
            stripe.Webhook.construct_event(raw_body, signature, self.webhook_secret, tolerance=self.tolerance_seconds)
        except (stripe.SignatureVerificationError, ValueError):
            return False
        return True

    def create_refund(self, provider_payment_id: str, amount: int, reason: str | None = None) -> RefundResult:
        with self._call("refund"):
            refund = self.client.v1.refunds.create(
                params={"payment_intent": provider_payment_id, "amount": amount, "metadata": {"reason": reason or ""}}
            )
        return RefundResult(provider_refund_id=refund["id"], status=refund.get("status", "succeeded"))

    def parse_webhook(self, raw_body: bytes) -> WebhookEvent:
        event = json.loads(raw_body)
        event_type = event.get("type", "")
        session = event.get("data", {}).get("object", {})
        metadata = session.get("metadata") or {}

        if event_type == "checkout.session.completed" and session.get("payment_status", "paid") == "paid":
            kind = WebhookKind.CAPTURED
        elif event_type == "checkout.session.async_payment_succeeded":
            kind = WebhookKind.CAPTURED
        elif event_type in _FAILED_EVENTS:
            kind = WebhookKind.FAILED
        else:
            kind = WebhookKind.IGNORED

        return WebhookEvent(
            kind=kind,
            event_type=event_type,
            provider_order_id=session.get("id"),
            provider_payment_id=session.get("payment_intent"),
            payment_reference=metadata.get("payment_id"),
            failure_reason=event_type if kind is WebhookKind.FAILED else None,
        )
