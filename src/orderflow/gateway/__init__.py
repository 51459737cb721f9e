"""Payment gateway registry.

One adapter instance per provider, built once at process start from
``Settings`` and handed to the workflow. Nothing looks gateways up from
module-level state.
"""

from collections.abc import Iterable

import requests

from orderflow.config import Settings
from orderflow.errors import NotFound
from orderflow.gateway.cod_adapter import CashOnDeliveryGateway
from orderflow.gateway.fake_adapter import FakeGateway
from orderflow.gateway.port import PaymentGateway
from orderflow.gateway.razorpay_adapter import RazorpayGateway
from orderflow.gateway.stripe_adapter import StripeGateway

__all__ = [
    "CashOnDeliveryGateway",
    "FakeGateway",
    "GatewayRegistry",
    "PaymentGateway",
    "RazorpayGateway",
    "StripeGateway",
]


class GatewayRegistry:
    def __init__(self, gateways: Iterable[PaymentGateway] = ()) -> None:
        self._gateways: dict[str, PaymentGateway] = {}
        for gateway in gateways:
            self.register(gateway)

    def register(self, gateway: PaymentGateway) -> None:
        self._gateways[gateway.name] = gateway

    def get(self, provider: str) -> PaymentGateway:
        try:
            return self._gateways[provider]
        except KeyError:
            raise NotFound({"provider": [f"Unknown payment provider '{provider}'"]}) from None

    def __contains__(self, provider: str) -> bool:
        return provider in self._gateways

    def methods(self) -> list[str]:
        return list(self._gateways)

    @classmethod
    def from_settings(cls, settings: Settings, session: requests.Session | None = None) -> "GatewayRegistry":
        available = {
            "cod": lambda: CashOnDeliveryGateway(),
            "razorpay": lambda: RazorpayGateway(
                key_id=settings.razorpay_key_id,
                key_secret=settings.razorpay_key_secret,
                webhook_secret=settings.razorpay_webhook_secret,
                timeout=settings.gateway_timeout_seconds,
                session=session,
            ),
            "stripe": lambda: StripeGateway(
                api_key=settings.stripe_secret_key,
                webhook_secret=settings.stripe_webhook_secret,
                timeout=settings.gateway_timeout_seconds,
                session=session,
            ),
            "fake": lambda: FakeGateway(),
        }
        return cls(available[method]() for method in settings.payment_methods if method in available)
