"""Domain events raised by the ShoppingCart aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from orderflow.domain import orderflow


@orderflow.event(part_of="ShoppingCart")
class CartCreated:
    __version__ = 1

    cart_id = Identifier(required=True)
    customer_id = Identifier()
    session_id = String()
    expires_at = DateTime(required=True)


@orderflow.event(part_of="ShoppingCart")
class CartItemAdded:
    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_sku = String()
    quantity = Integer(required=True)
    price_at_add = Integer(required=True)


@orderflow.event(part_of="ShoppingCart")
class CartQuantityUpdated:
    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    previous_quantity = Integer(required=True)
    new_quantity = Integer(required=True)


@orderflow.event(part_of="ShoppingCart")
class CartItemRemoved:
    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    product_id = Identifier(required=True)
    reason = String()


@orderflow.event(part_of="ShoppingCart")
class CartItemRepriced:
    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    previous_price = Integer(required=True)
    new_price = Integer(required=True)


@orderflow.event(part_of="ShoppingCart")
class CartDiscountApplied:
    __version__ = 1

    cart_id = Identifier(required=True)
    discount_code = String(required=True)
    discount_amount = Integer(required=True)


@orderflow.event(part_of="ShoppingCart")
class CartConverted:
    __version__ = 1

    cart_id = Identifier(required=True)
    order_id = Identifier(required=True)
    converted_at = DateTime(required=True)


@orderflow.event(part_of="ShoppingCart")
class CartExpired:
    __version__ = 1

    cart_id = Identifier(required=True)
    expired_at = DateTime(required=True)


@orderflow.event(part_of="ShoppingCart")
class CartCleared:
    __version__ = 1

    cart_id = Identifier(required=True)
    item_count = Integer(required=True)


@orderflow.event(part_of="ShoppingCart")
class CartDiscountRemoved:
    __version__ = 1

    cart_id = Identifier(required=True)
    discount_code = String(required=True)


@orderflow.event(part_of="ShoppingCart")
class CartMerged:
    __version__ = 1

    cart_id = Identifier(required=True)
    guest_cart_id = Identifier(required=True)
    source_session_id = String()
    items_merged_count = Integer(required=True)
