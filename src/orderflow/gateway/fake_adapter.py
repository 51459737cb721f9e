"""Configurable fake payment gateway for development and testing.

Behaves like a signature-checking provider without any network calls:
- signatures are real HMAC-SHA256 digests, so tests exercise the same
  verification path production uses
- ``configure()`` toggles refund failures and outages at runtime
- every call is appended to ``calls`` for assertions
"""

import json
from uuid import uuid4

from orderflow.errors import GatewayError, GatewayUnavailable
from orderflow.gateway.port import (
    PaymentGateway,
    PaymentIntent,
    RefundResult,
    WebhookEvent,
    WebhookKind,
    hmac_hex,
    signatures_match,
)


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self, name: str = "fake", key_secret: str = "fake-secret", webhook_secret: str = "fake-webhook-secret") -> None:
        self.name = name
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.should_succeed: bool = True
        self.available: bool = True
        self.failure_reason: str = "Refund declined"
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool = True, available: bool = True, failure_reason: str = "Refund declined") -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.available = available
        self.failure_reason = failure_reason

    def _check_available(self) -> None:
        if not self.available:
            raise GatewayUnavailable(f"{self.name} is unreachable")

    # Helpers for tests and local tooling
    def sign(self, provider_order_id: str, provider_payment_id: str) -> str:
        return hmac_hex(self.key_secret, f"{provider_order_id}|{provider_payment_id}")

    def sign_webhook(self, raw_body: bytes) -> str:
        return hmac_hex(self.webhook_secret, raw_body)

    def create_intent(self, amount: int, currency: str, reference: str, payment_id: str) -> PaymentIntent:
        self.calls.append(
            {
                "method": "create_intent",
                "amount": amount,
                "currency": currency,
                "reference": reference,
                "payment_id": payment_id,
            }
        )
        self._check_available()
        provider_order_id = f"fake_order_{uuid4().hex[:12]}"
        return PaymentIntent(
            provider=self.name,
            provider_order_id=provider_order_id,
            client_payload={"order_id": provider_order_id, "amount": amount, "currency": currency},
        )

    def verify_signature(self, provider_order_id: str, provider_payment_id: str, signature: str) -> bool:
        self.calls.append({"method": "verify_signature", "provider_order_id": provider_order_id})
        if not provider_order_id or not provider_payment_id:
            return False
        return signatures_match(self.sign(provider_order_id, provider_payment_id), signature)

    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        return signatures_match(self.sign_webhook(raw_body), signature)

    def create_refund(self, provider_payment_id: str, amount: int, reason: str | None = None) -> RefundResult:
        self.calls.append(
            {
                "method": "create_refund",
                "provider_payment_id": provider_payment_id,
                "amount": amount,
                "reason": reason,
            }
        )
        self._check_available()
        if not self.should_succeed:
            raise GatewayError(self.failure_reason)
        return RefundResult(provider_refund_id=f"fake_ref_{uuid4().hex[:12]}")

    def parse_webhook(self, raw_body: bytes) -> WebhookEvent:
        event = json.loads(raw_body)
        event_type = event.get("event", "")
        kind = {
            "payment.captured": WebhookKind.CAPTURED,
            "payment.failed": WebhookKind.FAILED,
        }.get(event_type, WebhookKind.IGNORED)
        return WebhookEvent(
            kind=kind,
            event_type=event_type,
            provider_order_id=event.get("provider_order_id"),
            provider_payment_id=event.get("provider_payment_id"),
            payment_reference=event.get("payment_id"),
            failure_reason=event.get("reason"),
        )
