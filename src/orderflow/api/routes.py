"""FastAPI routes for orderflow: carts, checkout, orders, payments and products."""

import functools
import json

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from protean.utils.globals import current_domain

from orderflow.api.schemas import (
    AddNoteRequest,
    AddToCartRequest,
    ApplyDiscountRequest,
    CancelOrderRequest,
    CartIdResponse,
    CartItemResponse,
    CartResponse,
    CheckoutRequest,
    CheckoutResponse,
    CreateCartRequest,
    MergeGuestCartRequest,
    OrderResponse,
    PaymentFailedRequest,
    PaymentMethodsResponse,
    PaymentStatusResponse,
    ProductIdResponse,
    RefundRequest,
    RefundResponse,
    RegisterProductRequest,
    StatusResponse,
    TrackingSchema,
    UpdateCartQuantityRequest,
    UpdateOrderStatusRequest,
    VerifyPaymentRequest,
    WebhookResponse,
)
from orderflow.cart.cart import ShoppingCart
from orderflow.cart.items import (
    AddToCart,
    ApplyCartDiscount,
    ClearCart,
    CreateCart,
    MergeGuestCart,
    RemoveCartDiscount,
    RemoveFromCart,
    UpdateCartQuantity,
)
from orderflow.catalogue.product import Product
from orderflow.catalogue.registration import RegisterProduct, stock_product
from orderflow.collaborators import Identity
from orderflow.domain import orderflow
from orderflow.errors import Forbidden
from orderflow.order.annotations import AddOrderNote, UpdateOrderTracking
from orderflow.order.order import Order
from orderflow.workflow.orchestrator import CheckoutWorkflow

# Provider-specific webhook signature headers; anything else uses X-Gateway-Signature
_SIGNATURE_HEADERS = {
    "razorpay": "x-razorpay-signature",
    "stripe": "stripe-signature",
}


def within_domain(handler):
    """Run a blocking handler inside the orderflow domain context of the worker thread.

    Handlers are plain functions so FastAPI runs them in its threadpool and the
    event loop never waits on a ledger lock or a gateway call.
    """

    @functools.wraps(handler)
    def wrapper(*args, **kwargs):
        with orderflow.domain_context():
            return handler(*args, **kwargs)

    return wrapper


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def get_workflow(request: Request) -> CheckoutWorkflow:
    return request.app.state.workflow


def current_identity(request: Request, authorization: str = Header(default="")) -> Identity:
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        token = ""
    return request.app.state.identity_resolver.resolve(token.strip())


def admin_identity(identity: Identity = Depends(current_identity)) -> Identity:
    if not identity.is_admin:
        raise Forbidden("Admin access required")
    return identity


def _owned_cart(cart_id: str, identity: Identity, session_id: str | None = None) -> ShoppingCart:
    cart = current_domain.repository_for(ShoppingCart).get(cart_id)
    if not identity.is_admin and not cart.is_owned_by(identity.user_id, session_id):
        raise Forbidden("Cart belongs to someone else")
    return cart


def _cart_response(cart: ShoppingCart) -> CartResponse:
    return CartResponse(
        cart_id=str(cart.id),
        status=cart.status,
        items=[
            CartItemResponse(
                item_id=str(item.id),
                product_id=str(item.product_id),
                variant_sku=item.variant_sku,
                quantity=item.quantity,
                price_at_add=item.price_at_add,
            )
            for item in cart.lines()
        ],
        subtotal=cart.subtotal,
        discount_code=cart.discount_code,
        discount_amount=cart.discount_amount or 0,
        expires_at=cart.expires_at,
    )


def _order_response(order: Order) -> OrderResponse:
    return OrderResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        customer_id=str(order.customer_id),
        status=order.status,
        items=[
            {
                "product_id": str(item.product_id),
                "variant_sku": item.variant_sku,
                "name": item.name,
                "sku": item.sku,
                "options": item.options,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "subtotal": item.subtotal,
            }
            for item in order.lines()
        ],
        pricing=order.pricing.to_dict(),
        shipping_address=order.shipping_address.to_dict(),
        payment_id=str(order.payment_id) if order.payment_id else None,
        payment_method=order.payment_method,
        shipping_method=order.shipping_method,
        tracking=order.tracking.to_dict() if order.tracking else None,
        status_history=[
            {"status": entry.status, "changed_at": entry.changed_at, "actor": entry.actor, "note": entry.note}
            for entry in order.history()
        ],
        notes=[
            {"note": note.note, "author": note.author, "created_at": note.created_at.isoformat()}
            for note in order.admin_notes
        ],
        created_at=order.created_at,
    )


# ---------------------------------------------------------------------------
# Cart Router
# ---------------------------------------------------------------------------
cart_router = APIRouter(prefix="/carts", tags=["carts"])


@cart_router.post("", status_code=201, response_model=CartIdResponse)
@within_domain
def create_cart(
    body: CreateCartRequest,
    request: Request,
    identity: Identity = Depends(current_identity),
) -> CartIdResponse:
    """Create a cart for the caller."""
    settings = request.app.state.settings
    command = CreateCart(
        customer_id=identity.user_id,
        session_id=body.session_id,
        ttl_hours=settings.cart_ttl_hours,
        item_limit=settings.max_quantity_per_item,
    )
    cart_id = current_domain.process(command, asynchronous=False)
    return CartIdResponse(cart_id=cart_id)


@cart_router.get("/{cart_id}", response_model=CartResponse)
@within_domain
def get_cart(cart_id: str, identity: Identity = Depends(current_identity)) -> CartResponse:
    return _cart_response(_owned_cart(cart_id, identity))


@cart_router.post("/{cart_id}/items", status_code=201, response_model=CartResponse)
@within_domain
def add_to_cart(
    cart_id: str,
    body: AddToCartRequest,
    identity: Identity = Depends(current_identity),
) -> CartResponse:
    """Add a product (or variant) at its live price."""
    _owned_cart(cart_id, identity)
    command = AddToCart(
        cart_id=cart_id,
        product_id=body.product_id,
        variant_sku=body.variant_sku,
        quantity=body.quantity,
    )
    current_domain.process(command, asynchronous=False)
    return _cart_response(current_domain.repository_for(ShoppingCart).get(cart_id))


@cart_router.put("/{cart_id}/items/{item_id}", response_model=CartResponse)
@within_domain
def update_cart_quantity(
    cart_id: str,
    item_id: str,
    body: UpdateCartQuantityRequest,
    identity: Identity = Depends(current_identity),
) -> CartResponse:
    _owned_cart(cart_id, identity)
    command = UpdateCartQuantity(cart_id=cart_id, item_id=item_id, new_quantity=body.quantity)
    current_domain.process(command, asynchronous=False)
    return _cart_response(current_domain.repository_for(ShoppingCart).get(cart_id))


@cart_router.delete("/{cart_id}/items/{item_id}", response_model=CartResponse)
@within_domain
def remove_from_cart(
    cart_id: str,
    item_id: str,
    identity: Identity = Depends(current_identity),
) -> CartResponse:
    _owned_cart(cart_id, identity)
    current_domain.process(RemoveFromCart(cart_id=cart_id, item_id=item_id), asynchronous=False)
    return _cart_response(current_domain.repository_for(ShoppingCart).get(cart_id))


@cart_router.delete("/{cart_id}/items", response_model=CartResponse)
@within_domain
def clear_cart(cart_id: str, identity: Identity = Depends(current_identity)) -> CartResponse:
    _owned_cart(cart_id, identity)
    current_domain.process(ClearCart(cart_id=cart_id), asynchronous=False)
    return _cart_response(current_domain.repository_for(ShoppingCart).get(cart_id))


@cart_router.post("/{cart_id}/discount", response_model=CartResponse)
@within_domain
def apply_discount(
    cart_id: str,
    body: ApplyDiscountRequest,
    identity: Identity = Depends(current_identity),
) -> CartResponse:
    _owned_cart(cart_id, identity)
    command = ApplyCartDiscount(cart_id=cart_id, code=body.code, amount=body.amount)
    current_domain.process(command, asynchronous=False)
    return _cart_response(current_domain.repository_for(ShoppingCart).get(cart_id))


@cart_router.delete("/{cart_id}/discount", response_model=CartResponse)
@within_domain
def remove_discount(cart_id: str, identity: Identity = Depends(current_identity)) -> CartResponse:
    _owned_cart(cart_id, identity)
    current_domain.process(RemoveCartDiscount(cart_id=cart_id), asynchronous=False)
    return _cart_response(current_domain.repository_for(ShoppingCart).get(cart_id))


@cart_router.post("/{cart_id}/merge", response_model=CartResponse)
@within_domain
def merge_guest_cart(
    cart_id: str,
    body: MergeGuestCartRequest,
    identity: Identity = Depends(current_identity),
) -> CartResponse:
    """Fold the cart a customer built before signing in into their own cart.

    The guest cart is proven by the session id it was created with.
    """
    _owned_cart(cart_id, identity)
    _owned_cart(body.guest_cart_id, identity, session_id=body.session_id)
    command = MergeGuestCart(cart_id=cart_id, guest_cart_id=body.guest_cart_id)
    current_domain.process(command, asynchronous=False)
    return _cart_response(current_domain.repository_for(ShoppingCart).get(cart_id))


# ---------------------------------------------------------------------------
# Checkout Router
# ---------------------------------------------------------------------------
checkout_router = APIRouter(prefix="/checkout", tags=["checkout"])


@checkout_router.post("", status_code=201, response_model=CheckoutResponse)
@within_domain
def checkout(
    body: CheckoutRequest,
    identity: Identity = Depends(current_identity),
    workflow: CheckoutWorkflow = Depends(get_workflow),
) -> CheckoutResponse:
    """Turn a cart into an order and start payment.

    Online methods return the provider's intent data for the client to
    complete payment; cash on delivery returns an order already processing.
    """
    result = workflow.checkout(
        body.cart_id,
        identity,
        shipping_address=body.shipping_address.model_dump(),
        payment_method=body.payment_method,
        shipping_method=body.shipping_method,
        session_id=body.session_id,
    )
    intent = None
    if result.intent is not None:
        intent = {
            "provider": result.intent.provider,
            "provider_order_id": result.intent.provider_order_id,
            **result.intent.client_payload,
        }
    return CheckoutResponse(
        order_id=str(result.order.id),
        order_number=result.order.order_number,
        order_status=result.order.status,
        payment_id=str(result.payment.id),
        payment_status=result.payment.status,
        total=result.order.pricing.total,
        currency=result.order.pricing.currency,
        provider=result.payment.provider,
        intent=intent,
        price_changes=[
            {
                "product_id": change.product_id,
                "variant_sku": change.variant_sku,
                "name": change.name,
                "old_price": change.old_price,
                "new_price": change.new_price,
            }
            for change in result.report.price_changes
        ],
        removed_items=[
            {"product_id": removed.product_id, "variant_sku": removed.variant_sku, "reason": removed.reason}
            for removed in result.report.removed_items
        ],
    )


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.get("/{order_id}", response_model=OrderResponse)
@within_domain
def get_order(order_id: str, identity: Identity = Depends(current_identity)) -> OrderResponse:
    order = current_domain.repository_for(Order).get(order_id)
    if not identity.is_admin and not order.is_owned_by(identity.user_id):
        raise Forbidden("Order belongs to someone else")
    return _order_response(order)


@order_router.put("/{order_id}/status", response_model=OrderResponse)
@within_domain
def update_order_status(
    order_id: str,
    body: UpdateOrderStatusRequest,
    identity: Identity = Depends(admin_identity),
    workflow: CheckoutWorkflow = Depends(get_workflow),
) -> OrderResponse:
    """Move an order along its transition graph."""
    order = workflow.update_order_status(
        order_id,
        body.status,
        identity,
        note=body.note,
        tracking=body.tracking.model_dump() if body.tracking else None,
    )
    return _order_response(order)


@order_router.post("/{order_id}/cancel", response_model=OrderResponse)
@within_domain
def cancel_order(
    order_id: str,
    body: CancelOrderRequest,
    identity: Identity = Depends(current_identity),
    workflow: CheckoutWorkflow = Depends(get_workflow),
) -> OrderResponse:
    return _order_response(workflow.cancel_order(order_id, identity, reason=body.reason))


@order_router.post("/{order_id}/notes", status_code=201, response_model=StatusResponse)
@within_domain
def add_note(
    order_id: str,
    body: AddNoteRequest,
    identity: Identity = Depends(admin_identity),
) -> StatusResponse:
    command = AddOrderNote(order_id=order_id, note=body.note, author=identity.actor)
    current_domain.process(command, asynchronous=False)
    return StatusResponse(status="note_added")


@order_router.post("/{order_id}/tracking", response_model=StatusResponse)
@within_domain
def update_tracking(
    order_id: str,
    body: TrackingSchema,
    identity: Identity = Depends(admin_identity),
) -> StatusResponse:
    command = UpdateOrderTracking(
        order_id=order_id,
        tracking_number=body.number,
        carrier=body.carrier,
        tracking_url=body.url,
    )
    current_domain.process(command, asynchronous=False)
    return StatusResponse(status="tracking_updated")


@order_router.post("/{order_id}/settle", response_model=OrderResponse)
@within_domain
def settle_order(
    order_id: str,
    identity: Identity = Depends(admin_identity),
    workflow: CheckoutWorkflow = Depends(get_workflow),
) -> OrderResponse:
    """Re-run the stock commit for an order whose payment went through."""
    return _order_response(workflow.settle_order(order_id, actor=identity.actor))


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.get("/methods", response_model=PaymentMethodsResponse)
@within_domain
def payment_methods(workflow: CheckoutWorkflow = Depends(get_workflow)) -> PaymentMethodsResponse:
    return PaymentMethodsResponse(methods=workflow.payment_methods())


@payment_router.post("/webhooks/{provider}", response_model=WebhookResponse)
async def payment_webhook(
    provider: str,
    request: Request,
    workflow: CheckoutWorkflow = Depends(get_workflow),
) -> WebhookResponse:
    """Provider callback. 401 on a bad signature, 200 for everything after that."""
    raw_body = await request.body()
    signature = request.headers.get(_SIGNATURE_HEADERS.get(provider, "x-gateway-signature"), "")
    outcome = await run_in_threadpool(within_domain(workflow.handle_webhook), provider, raw_body, signature)
    return WebhookResponse(status=outcome.status)


@payment_router.post("/{payment_id}/verify", response_model=PaymentStatusResponse)
@within_domain
def verify_payment(
    payment_id: str,
    body: VerifyPaymentRequest,
    identity: Identity = Depends(current_identity),
    workflow: CheckoutWorkflow = Depends(get_workflow),
) -> PaymentStatusResponse:
    workflow.verify_payment(
        payment_id,
        identity,
        provider_payment_id=body.provider_payment_id,
        provider_order_id=body.provider_order_id,
        signature=body.signature,
    )
    return PaymentStatusResponse(**workflow.payment_status(payment_id, identity))


@payment_router.post("/{payment_id}/failed", response_model=PaymentStatusResponse)
@within_domain
def payment_failed(
    payment_id: str,
    body: PaymentFailedRequest,
    identity: Identity = Depends(current_identity),
    workflow: CheckoutWorkflow = Depends(get_workflow),
) -> PaymentStatusResponse:
    workflow.report_payment_failure(payment_id, identity, reason=body.error_message, error_code=body.error_code)
    return PaymentStatusResponse(**workflow.payment_status(payment_id, identity))


@payment_router.get("/{payment_id}/status", response_model=PaymentStatusResponse)
@within_domain
def payment_status(
    payment_id: str,
    identity: Identity = Depends(current_identity),
    workflow: CheckoutWorkflow = Depends(get_workflow),
) -> PaymentStatusResponse:
    return PaymentStatusResponse(**workflow.payment_status(payment_id, identity))


@payment_router.post("/{payment_id}/refunds", response_model=RefundResponse)
@within_domain
def refund_payment(
    payment_id: str,
    body: RefundRequest,
    identity: Identity = Depends(admin_identity),
    workflow: CheckoutWorkflow = Depends(get_workflow),
) -> RefundResponse:
    payment = workflow.refund_payment(payment_id, body.amount, body.reason, identity)
    return RefundResponse(
        payment_id=str(payment.id),
        status=payment.status,
        total_refunded=payment.total_refunded,
        refundable_amount=payment.refundable_amount,
    )


# ---------------------------------------------------------------------------
# Product Router
# ---------------------------------------------------------------------------
product_router = APIRouter(prefix="/products", tags=["products"])


@product_router.post("", status_code=201, response_model=ProductIdResponse)
@within_domain
def register_product(
    body: RegisterProductRequest,
    identity: Identity = Depends(admin_identity),
    workflow: CheckoutWorkflow = Depends(get_workflow),
) -> ProductIdResponse:
    """Seed the catalogue read model and the product's stock units."""
    command = RegisterProduct(
        product_id=body.product_id,
        name=body.name,
        sku=body.sku,
        price=body.price,
        image=body.image,
        track_inventory=body.track_inventory,
        variants=json.dumps([variant.model_dump(exclude={"stock"}) for variant in body.variants]),
    )
    product_id = current_domain.process(command, asynchronous=False)

    product = current_domain.repository_for(Product).get(product_id)
    stock = {variant.sku: variant.stock for variant in body.variants} if body.variants else {None: body.stock}
    stock_product(workflow.inventory, product, stock)
    return ProductIdResponse(product_id=product_id)
