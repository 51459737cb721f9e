"""Payment gateway port (abstract interface).

Defines the contract every provider adapter implements: intent creation,
signature verification for both confirmation paths, refunds and webhook
parsing. The workflow only ever talks to this interface, so Razorpay, Stripe,
cash on delivery and the fake used in tests are interchangeable.
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum


class WebhookKind(Enum):
    CAPTURED = "captured"
    FAILED = "failed"
    IGNORED = "ignored"


@dataclass(frozen=True)
class PaymentIntent:
    """What the client needs to complete payment out-of-band."""

    provider: str
    provider_order_id: str | None = None
    client_payload: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RefundResult:
    provider_refund_id: str
    status: str = "processed"


@dataclass(frozen=True)
class WebhookEvent:
    kind: WebhookKind
    event_type: str
    provider_order_id: str | None = None
    provider_payment_id: str | None = None
    payment_reference: str | None = None
    failure_reason: str | None = None


def hmac_hex(secret: str, message: str | bytes) -> str:
    """HMAC-SHA256 hex digest of ``message`` keyed with ``secret``."""
    if isinstance(message, str):
        message = message.encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def signatures_match(expected: str, given: str | None) -> bool:
    if not given or not expected:
        return False
    return hmac.compare_digest(expected.encode(), given.encode())


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    name: str = ""
    # False for providers that confirm nothing (cash on delivery)
    requires_confirmation: bool = True

    @abstractmethod
    def create_intent(self, amount: int, currency: str, reference: str, payment_id: str) -> PaymentIntent:
        """Create a provider-side intent. Raises GatewayUnavailable when unreachable."""
        ...

    @abstractmethod
    def verify_signature(self, provider_order_id: str, provider_payment_id: str, signature: str) -> bool:
        """Check a client-submitted confirmation. Returns False on mismatch, never raises for it."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        """Verify that a webhook payload is authentically from the provider."""
        ...

    @abstractmethod
    def create_refund(self, provider_payment_id: str, amount: int, reason: str | None = None) -> RefundResult:
        ...

    @abstractmethod
    def parse_webhook(self, raw_body: bytes) -> WebhookEvent:
        ...
