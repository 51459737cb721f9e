"""Cash on delivery: the degenerate provider.

No intent, no signature, no webhook. Money changes hands at the door, so
there is nothing to refund online either.
"""

from orderflow.errors import InvalidRefund
from orderflow.gateway.port import PaymentGateway, PaymentIntent, RefundResult, WebhookEvent, WebhookKind


class CashOnDeliveryGateway(PaymentGateway):
    name = "cod"
    requires_confirmation = False

    def create_intent(self, amount: int, currency: str, reference: str, payment_id: str) -> PaymentIntent:  # noqa: ARG002
        return PaymentIntent(provider=self.name)

    def verify_signature(self, provider_order_id: str, provider_payment_id: str, signature: str) -> bool:  # noqa: ARG002
        return False

    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:  # noqa: ARG002
        return False

    def create_refund(self, provider_payment_id: str, amount: int, reason: str | None = None) -> RefundResult:  # noqa: ARG002
        raise InvalidRefund("COD orders cannot be refunded online")

    def parse_webhook(self, raw_body: bytes) -> WebhookEvent:  # noqa: ARG002
        return WebhookEvent(kind=WebhookKind.IGNORED, event_type="")
