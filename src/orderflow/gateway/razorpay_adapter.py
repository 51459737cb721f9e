"""Razorpay adapter (Orders API + checkout.js signature scheme) on the razorpay SDK."""

import json
from contextlib import contextmanager

import razorpay
import requests
import structlog
from razorpay.errors import BadRequestError, ServerError, SignatureVerificationError

from orderflow.errors import GatewayError, GatewayUnavailable
from orderflow.gateway.port import PaymentGateway, PaymentIntent, RefundResult, WebhookEvent, WebhookKind

logger = structlog.get_logger(__name__)


class RazorpayGateway(PaymentGateway):
    name = "razorpay"

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        client: razorpay.Client | None = None,
    ) -> None:
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.timeout = timeout
        self.client = client or razorpay.Client(auth=(key_id, key_secret), session=session)

    @contextmanager
    def _call(self, operation: str):
        """Translate SDK and transport failures into the gateway error taxonomy."""
        if not self.key_id or not self.key_secret:
            raise GatewayUnavailable("Razorpay credentials are not configured")
        try:
            yield
        except requests.RequestException as exc:
            logger.warning("gateway_unreachable", provider=self.name, operation=operation, error=str(exc))
            raise GatewayUnavailable(f"{self.name} is unreachable: {exc.__class__.__name__}") from exc
        except ServerError as exc:
            logger.warning("gateway_server_error", provider=self.name, operation=operation, error=str(exc))
            raise GatewayUnavailable(f"{self.name} returned a server error") from exc
        except (BadRequestError, razorpay.errors.GatewayError) as exc:
            logger.warning("gateway_rejected_request", provider=self.name, operation=operation, error=str(exc))
            raise GatewayError(f"{self.name} rejected the request: {exc}") from exc

    def create_intent(self, amount: int, currency: str, reference: str, payment_id: str) -> PaymentIntent:
        with self._call("create_order"):
            order = self.client.order.create(
                data={
                    "amount": amount,
                    "currency": currency,
                    "receipt": reference,
                    "notes": {"payment_id": payment_id, "order_number": reference},
                },
                timeout=self.timeout,
            )
        return PaymentIntent(
            provider=self.name,
            provider_order_id=order["id"],
            client_payload={
                "key_id": self.key_id,
                "order_id": order["id"],
                "amount": amount,
                "currency": currency,
            },
        )

    def verify_signature(self, provider_order_id: str, provider_payment_id: str, signature: str) -> bool:
        if not provider_order_id or not provider_payment_id or not signature:
            return False
        try:
            return bool(
                self.client.utility.verify_payment_signature(
                    {
                        "razorpay_order_id": provider_order_id,
                        "razorpay_payment_id": provider_payment_id,
                        "razorpay_signature": signature,
                    }
                )
            )
        except SignatureVerificationError:
            return False

    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        if not signature or not self.webhook_secret:
            return False
        try:
            return bool(
                self.client.utility.verify_webhook_signature(raw_body.decode("utf-8"), signature, self.webhook_secret)
            )
        except (SignatureVerificationError, UnicodeDecodeError):
            return False

    def create_refund(self, provider_payment_id: str, amount: int, reason: str | None = None) -> RefundResult:
        with self._call("refund"):
            refund = self.client.payment.refund(
                provider_payment_id,
                {"amount": amount, "notes": {"reason": reason or ""}},
                timeout=self.timeout,
            )
        return RefundResult(provider_refund_id=refund["id"], status=refund.get("status", "processed"))

    def parse_webhook(self, raw_body: bytes) -> WebhookEvent:
        event = json.loads(raw_body)
        event_type = event.get("event", "")
        entity = event.get("payload", {}).get("payment", {}).get("entity", {})
        notes = entity.get("notes") or {}

        if event_type in ("payment.captured", "order.paid"):
            kind = WebhookKind.CAPTURED
        elif event_type == "payment.failed":
            kind = WebhookKind.FAILED
        else:
            kind = WebhookKind.IGNORED

        return WebhookEvent(
            kind=kind,
            event_type=event_type,
            provider_order_id=entity.get("order_id"),
            provider_payment_id=entity.get("id"),
            payment_reference=notes.get("payment_id") if isinstance(notes, dict) else None,
            failure_reason=entity.get("error_description"),
        )
