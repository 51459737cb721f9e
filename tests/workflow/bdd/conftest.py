"""Shared BDD fixtures and step definitions for checkout and payment flows."""

import json

import pytest
from orderflow.cart.cart import CartStatus, ShoppingCart
from orderflow.errors import OrderflowError
from orderflow.order.order import Order
from protean import current_domain
from protean.exceptions import ValidationError
from pytest_bdd import given, parsers, then, when


@pytest.fixture()
def catalog():
    """Product name to product id."""
    return {}


@pytest.fixture()
def context():
    """Holds the checkout result and anything the steps raised."""
    return {"checkout": None, "exc": None, "outcome": None, "payment": None}


def _capture(context, fn):
    try:
        return fn()
    except (OrderflowError, ValidationError) as exc:
        context["exc"] = exc
        return None


def _messages(exc):
    return [message for messages in exc.messages.values() for message in messages]


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('a product "{name}" priced {price:d} with {stock:d} in stock'))
def _(shop, catalog, name, price, stock):
    catalog[name] = shop.product(name=name, price=price, stock=stock)


@given(parsers.cfparse('the customer has a cart with {quantity:d} of "{name}"'), target_fixture="cart_id")
def _(shop, catalog, quantity, name):
    return shop.cart([(catalog[name], quantity)])


@given(parsers.cfparse('the cart also holds {quantity:d} of "{name}"'))
def _(cart_id, catalog, quantity, name):
    from orderflow.cart.items import AddToCart

    current_domain.process(AddToCart(cart_id=cart_id, product_id=catalog[name], quantity=quantity), asynchronous=False)


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.cfparse('the customer checks out paying with "{method}"'))
@given(parsers.cfparse('the customer checked out paying with "{method}"'))
def _(workflow, shop, customer, cart_id, context, method):
    context["checkout"] = _capture(
        context, lambda: workflow.checkout(cart_id, customer, shop.address(), method)
    )


@when("the customer verifies the payment with a valid signature")
@given("the customer verified the payment with a valid signature")
def _(workflow, razorpay, customer, context):
    checkout = context["checkout"]
    provider_order_id = checkout.intent.provider_order_id
    context["payment"] = workflow.verify_payment(
        checkout.payment.id,
        customer,
        "pay_rzp_001",
        provider_order_id,
        razorpay.sign(provider_order_id, "pay_rzp_001"),
    ).payment


@when("the customer submits a forged signature")
def _(workflow, customer, context):
    checkout = context["checkout"]
    _capture(
        context,
        lambda: workflow.verify_payment(
            checkout.payment.id, customer, "pay_rzp_001", checkout.intent.provider_order_id, "forged"
        ),
    )


@when("the provider sends a payment captured webhook")
def _(workflow, razorpay, context):
    body = json.dumps(
        {
            "event": "payment.captured",
            "provider_order_id": context["checkout"].intent.provider_order_id,
            "provider_payment_id": "pay_rzp_001",
        }
    ).encode()
    context["outcome"] = workflow.handle_webhook("razorpay", body, razorpay.sign_webhook(body))


@when(parsers.cfparse("the admin refunds {amount:d}"))
def _(workflow, admin, context, amount):
    context["exc"] = None
    payment = _capture(
        context, lambda: workflow.refund_payment(context["checkout"].payment.id, amount, None, admin)
    )
    if payment is not None:
        context["payment"] = payment


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order is "{status}"'))
def _(context, status):
    order = current_domain.repository_for(Order).get(context["checkout"].order.id)
    assert order.status == status


@then(parsers.cfparse("the order total is {total:d}"))
def _(context, total):
    assert context["checkout"].order.pricing.total == total


@then(parsers.cfparse('"{name}" has {quantity:d} left in stock'))
def _(shop, catalog, name, quantity):
    assert shop.level(catalog[name]) == quantity


@then("the cart is converted")
def _(cart_id):
    assert current_domain.repository_for(ShoppingCart).get(cart_id).status == CartStatus.CONVERTED.value


@then(parsers.cfparse('the payment is "{status}"'))
def _(workflow, context, status):
    payment = workflow._payment(context["checkout"].payment.id)
    assert payment.status == status


@then(parsers.cfparse("the total refunded is {amount:d}"))
def _(workflow, context, amount):
    assert workflow._payment(context["checkout"].payment.id).total_refunded == amount


@then(parsers.cfparse('the webhook is acknowledged as "{status}"'))
def _(context, status):
    assert context["outcome"].status == status


@then(parsers.cfparse('it is rejected with "{message}"'))
def _(context, message):
    assert context["exc"] is not None
    assert message in _messages(context["exc"])


@then("no order was created")
def _():
    assert current_domain.repository_for(Order)._dao.query.all().items == []
