"""Faker-based data generators for Locust load test scenarios.

Each generator produces payloads that match the field names expected by
the API's Pydantic request schemas. Amounts are integer minor units.
"""

import hashlib
import hmac
import json
import random
import uuid

from faker import Faker

fake = Faker("en_IN")

# The server must run with PAYMENT_METHODS including "fake"; FakeGateway's
# default secrets are used to sign client confirmations and webhooks.
FAKE_KEY_SECRET = "fake-secret"
FAKE_WEBHOOK_SECRET = "fake-webhook-secret"


def unique_sku(prefix: str = "LT") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8].upper()}"


def product_data(stock: int | None = None, price: int | None = None) -> dict:
    """Generate RegisterProductRequest payload."""
    return {
        "name": fake.catch_phrase()[:255],
        "sku": unique_sku(),
        "price": price or random.randint(199, 4999) * 100,
        "stock": random.randint(50, 500) if stock is None else stock,
    }


def variant_product_data() -> dict:
    """A product with two or three sized variants, some priced differently."""
    base = product_data()
    sizes = random.sample(["S", "M", "L", "XL"], k=random.randint(2, 3))
    base["variants"] = [
        {
            "sku": f"{base['sku']}-{size}",
            "options": f"Size: {size}",
            "price": base["price"] + (10000 if size == "XL" else 0),
            "stock": random.randint(10, 100),
        }
        for size in sizes
    ]
    return base


def shipping_address() -> dict:
    return {
        "first_name": fake.first_name()[:100],
        "last_name": fake.last_name()[:100],
        "email": fake.email(),
        "phone": f"9{random.randint(100000000, 999999999)}",
        "street": fake.street_address()[:255],
        "city": fake.city()[:100],
        "state": fake.state()[:100],
        "postal_code": f"{random.randint(110001, 855126)}",
    }


def checkout_data(cart_id: str, payment_method: str = "cod") -> dict:
    return {
        "cart_id": cart_id,
        "shipping_address": shipping_address(),
        "payment_method": payment_method,
        "shipping_method": random.choices(["standard", "express"], weights=[4, 1])[0],
    }


def verify_data(provider_order_id: str) -> dict:
    """VerifyPaymentRequest signed the way FakeGateway expects."""
    provider_payment_id = f"fake_pay_{uuid.uuid4().hex[:12]}"
    signature = hmac.new(
        FAKE_KEY_SECRET.encode(),
        f"{provider_order_id}|{provider_payment_id}".encode(),
        hashlib.sha256,
    ).hexdigest()
    return {
        "provider_payment_id": provider_payment_id,
        "provider_order_id": provider_order_id,
        "signature": signature,
    }


def captured_webhook(provider_order_id: str, provider_payment_id: str | None = None) -> tuple[bytes, str]:
    """Raw body and X-Gateway-Signature for a FakeGateway capture webhook."""
    body = json.dumps(
        {
            "event": "payment.captured",
            "provider_order_id": provider_order_id,
            "provider_payment_id": provider_payment_id,
        }
    ).encode()
    signature = hmac.new(FAKE_WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()
    return body, signature
