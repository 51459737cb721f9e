"""Orderflow domain: carts, orders, payments and the stock they move.

Hosts the Shopping Cart, Order and Payment aggregates (all CQRS) plus the
catalogue read model that Cart Staging re-resolves against.
"""

from protean.domain import Domain

orderflow = Domain(name="orderflow")
