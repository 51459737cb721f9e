"""Pydantic request/response schemas for the orderflow API.

These are external contracts (anti-corruption layer), separate from the
internal Protean commands and aggregates. Amounts are integer minor units.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class ShippingAddressSchema(BaseModel):
    first_name: str
    last_name: str | None = None
    email: str
    phone: str
    street: str
    city: str
    state: str
    postal_code: str
    country: str = "India"


class TrackingSchema(BaseModel):
    number: str
    carrier: str | None = None
    url: str | None = None


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------
class CreateCartRequest(BaseModel):
    session_id: str | None = None


class AddToCartRequest(BaseModel):
    product_id: str
    variant_sku: str | None = None
    quantity: int = Field(default=1, ge=1)


class UpdateCartQuantityRequest(BaseModel):
    quantity: int = Field(ge=1)


class ApplyDiscountRequest(BaseModel):
    code: str
    amount: int = Field(ge=0)


class MergeGuestCartRequest(BaseModel):
    guest_cart_id: str
    session_id: str


class CartIdResponse(BaseModel):
    cart_id: str


class CartItemResponse(BaseModel):
    item_id: str
    product_id: str
    variant_sku: str | None = None
    quantity: int
    price_at_add: int


class CartResponse(BaseModel):
    cart_id: str
    status: str
    items: list[CartItemResponse]
    subtotal: int
    discount_code: str | None = None
    discount_amount: int = 0
    expires_at: datetime | None = None


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------
class CheckoutRequest(BaseModel):
    cart_id: str
    shipping_address: ShippingAddressSchema
    payment_method: str
    shipping_method: str = "standard"
    session_id: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "cart_id": "cart-001",
                    "shipping_address": {
                        "first_name": "Asha",
                        "email": "asha@example.com",
                        "phone": "9999999999",
                        "street": "12 MG Road",
                        "city": "Bengaluru",
                        "state": "KA",
                        "postal_code": "560001",
                    },
                    "payment_method": "razorpay",
                    "shipping_method": "standard",
                }
            ]
        }
    }


class PriceChangeSchema(BaseModel):
    product_id: str
    variant_sku: str | None = None
    name: str
    old_price: int
    new_price: int


class RemovedItemSchema(BaseModel):
    product_id: str
    variant_sku: str | None = None
    reason: str


class CheckoutResponse(BaseModel):
    order_id: str
    order_number: str
    order_status: str
    payment_id: str
    payment_status: str
    total: int
    currency: str
    provider: str
    intent: dict | None = None
    price_changes: list[PriceChangeSchema] = []
    removed_items: list[RemovedItemSchema] = []


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class UpdateOrderStatusRequest(BaseModel):
    status: str
    note: str | None = None
    tracking: TrackingSchema | None = None


class CancelOrderRequest(BaseModel):
    reason: str | None = None


class AddNoteRequest(BaseModel):
    note: str


class OrderItemResponse(BaseModel):
    product_id: str
    variant_sku: str | None = None
    name: str
    sku: str
    options: str | None = None
    quantity: int
    unit_price: int
    subtotal: int


class StatusChangeResponse(BaseModel):
    status: str
    changed_at: datetime
    actor: str | None = None
    note: str | None = None


class OrderResponse(BaseModel):
    order_id: str
    order_number: str
    customer_id: str
    status: str
    items: list[OrderItemResponse]
    pricing: dict
    shipping_address: dict
    payment_id: str | None = None
    payment_method: str
    shipping_method: str | None = None
    tracking: dict | None = None
    status_history: list[StatusChangeResponse]
    notes: list[dict] = []
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
class VerifyPaymentRequest(BaseModel):
    provider_payment_id: str | None = None
    provider_order_id: str | None = None
    signature: str | None = None


class PaymentFailedRequest(BaseModel):
    error_message: str | None = None
    error_code: str | None = None


class RefundRequest(BaseModel):
    amount: int = Field(gt=0)
    reason: str | None = None


class PaymentStatusResponse(BaseModel):
    payment_id: str
    status: str
    provider: str
    amount: int
    currency: str
    total_refunded: int = 0
    settlement: str | None = None
    order_id: str | None = None
    order_number: str | None = None
    order_status: str | None = None


class RefundResponse(BaseModel):
    payment_id: str
    status: str
    total_refunded: int
    refundable_amount: int


class WebhookResponse(BaseModel):
    status: str


class PaymentMethodsResponse(BaseModel):
    methods: list[str]


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------
class VariantSchema(BaseModel):
    sku: str
    options: str | None = None
    price: int | None = Field(default=None, ge=0)
    is_active: bool = True
    stock: int = Field(default=0, ge=0)


class RegisterProductRequest(BaseModel):
    product_id: str | None = None
    name: str
    sku: str
    price: int = Field(ge=0)
    image: str | None = None
    track_inventory: bool = True
    stock: int = Field(default=0, ge=0)
    variants: list[VariantSchema] = []


class ProductIdResponse(BaseModel):
    product_id: str


class StatusResponse(BaseModel):
    status: str
