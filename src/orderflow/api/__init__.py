"""Orderflow HTTP API package."""

from orderflow.api.routes import cart_router, checkout_router, order_router, payment_router, product_router

__all__ = ["cart_router", "checkout_router", "order_router", "payment_router", "product_router"]
