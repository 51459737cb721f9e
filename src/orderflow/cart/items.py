"""Cart management: commands and handler."""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from orderflow.cart.cart import DEFAULT_ITEM_LIMIT, DEFAULT_TTL_HOURS, ShoppingCart
from orderflow.catalogue.lookup import resolve_line
from orderflow.domain import orderflow


@orderflow.command(part_of="ShoppingCart")
class CreateCart:
    customer_id = Identifier()
    session_id = String(max_length=255)
    ttl_hours = Integer(default=DEFAULT_TTL_HOURS, min_value=1)
    item_limit = Integer(default=DEFAULT_ITEM_LIMIT, min_value=1)


@orderflow.command(part_of="ShoppingCart")
class AddToCart:
    cart_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_sku = String(max_length=64)
    quantity = Integer(required=True, min_value=1)


@orderflow.command(part_of="ShoppingCart")
class UpdateCartQuantity:
    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    new_quantity = Integer(required=True, min_value=1)


@orderflow.command(part_of="ShoppingCart")
class RemoveFromCart:
    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)


@orderflow.command(part_of="ShoppingCart")
class ApplyCartDiscount:
    cart_id = Identifier(required=True)
    code = String(required=True, max_length=50)
    amount = Integer(required=True, min_value=0)


@orderflow.command(part_of="ShoppingCart")
class RemoveCartDiscount:
    cart_id = Identifier(required=True)


@orderflow.command(part_of="ShoppingCart")
class ClearCart:
    cart_id = Identifier(required=True)


@orderflow.command(part_of="ShoppingCart")
class MergeGuestCart:
    """Fold a guest session cart into a registered customer's cart."""

    cart_id = Identifier(required=True)
    guest_cart_id = Identifier(required=True)


@orderflow.command_handler(part_of=ShoppingCart)
class ManageCartHandler:
    @handle(CreateCart)
    def create_cart(self, command):
        cart = ShoppingCart.create(
            customer_id=command.customer_id,
            session_id=command.session_id,
            ttl_hours=command.ttl_hours or DEFAULT_TTL_HOURS,
            item_limit=command.item_limit or DEFAULT_ITEM_LIMIT,
        )
        current_domain.repository_for(ShoppingCart).add(cart)
        return str(cart.id)

    @handle(AddToCart)
    def add_to_cart(self, command):
        resolution = resolve_line(command.product_id, command.variant_sku)
        if resolution is None or not resolution.is_active:
            raise ValidationError({"product_id": ["Product is not available"]})

        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        item = cart.add_item(
            product_id=command.product_id,
            variant_sku=command.variant_sku,
            quantity=command.quantity,
            unit_price=resolution.unit_price,
        )
        repo.add(cart)
        return str(item.id)

    @handle(UpdateCartQuantity)
    def update_cart_quantity(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        cart.update_item_quantity(item_id=command.item_id, new_quantity=command.new_quantity)
        repo.add(cart)

    @handle(RemoveFromCart)
    def remove_from_cart(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        cart.remove_item(item_id=command.item_id)
        repo.add(cart)

    @handle(ApplyCartDiscount)
    def apply_discount(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        cart.apply_discount(command.code, command.amount)
        repo.add(cart)

    @handle(ClearCart)
    def clear_cart(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        cart.clear()
        repo.add(cart)

    @handle(RemoveCartDiscount)
    def remove_discount(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        cart.remove_discount()
        repo.add(cart)

    @handle(MergeGuestCart)
    def merge_guest_cart(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        guest_cart = repo.get(command.guest_cart_id)

        cart.merge_guest_cart(guest_cart)
        repo.add(cart)
        repo.add(guest_cart)
