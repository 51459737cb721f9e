"""Shopping Cart aggregate (CQRS): the mutable staging area before an order.

A cart belongs to a registered customer or an anonymous session, holds an
ordered list of line items with the price captured when each was added, an
optional discount, and an expiry. It is converted exactly once, at checkout.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String

from orderflow.cart.events import (
    CartCleared,
    CartConverted,
    CartCreated,
    CartDiscountApplied,
    CartDiscountRemoved,
    CartExpired,
    CartItemAdded,
    CartItemRemoved,
    CartItemRepriced,
    CartMerged,
    CartQuantityUpdated,
)
from orderflow.domain import orderflow

DEFAULT_TTL_HOURS = 72
DEFAULT_ITEM_LIMIT = 10


class CartStatus(Enum):
    ACTIVE = "active"
    CONVERTED = "converted"
    EXPIRED = "expired"
    MERGED = "merged"


@orderflow.entity(part_of="ShoppingCart")
class CartItem:
    product_id = Identifier(required=True)
    variant_sku = String(max_length=64)
    quantity = Integer(required=True, min_value=1)
    price_at_add = Integer(required=True, min_value=0)
    position = Integer(default=0)
    added_at = DateTime()


@orderflow.aggregate
class ShoppingCart:
    customer_id = Identifier()  # Nullable for guest carts
    session_id = String(max_length=255)
    items = HasMany(CartItem)
    discount_code = String(max_length=50)
    discount_amount = Integer(default=0, min_value=0)
    status = String(choices=CartStatus, default=CartStatus.ACTIVE.value)
    item_limit = Integer(default=DEFAULT_ITEM_LIMIT, min_value=1)
    order_id = Identifier()
    expires_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def cart_must_have_an_owner(self):
        if not self.customer_id and not self.session_id:
            raise ValidationError({"cart": ["A cart belongs to a customer or a session"]})

    @invariant.post
    def cart_must_have_items_to_convert(self):
        if self.status == CartStatus.CONVERTED.value and not self.items:
            raise ValidationError({"cart": ["Cannot convert an empty cart to an order"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, customer_id=None, session_id=None, ttl_hours=DEFAULT_TTL_HOURS, item_limit=DEFAULT_ITEM_LIMIT):
        now = datetime.now(UTC)
        cart = cls(
            customer_id=customer_id,
            session_id=session_id,
            status=CartStatus.ACTIVE.value,
            item_limit=item_limit,
            expires_at=now + timedelta(hours=ttl_hours),
            created_at=now,
            updated_at=now,
        )
        cart.raise_(
            CartCreated(
                cart_id=str(cart.id),
                customer_id=customer_id,
                session_id=session_id,
                expires_at=cart.expires_at,
            )
        )
        return cart

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def lines(self):
        """Items in the order they were added."""
        return sorted(self.items, key=lambda item: item.position or 0)

    @property
    def subtotal(self) -> int:
        return sum(item.price_at_add * item.quantity for item in self.items)

    def is_expired(self, now=None) -> bool:
        if self.status == CartStatus.EXPIRED.value:
            return True
        if self.expires_at is None:
            return False
        now = now or datetime.now(UTC)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return now >= expires_at

    def is_owned_by(self, user_id=None, session_id=None) -> bool:
        if self.customer_id:
            return user_id is not None and str(self.customer_id) == str(user_id)
        return session_id is not None and self.session_id == session_id

    def _ensure_active(self, action):
        if CartStatus(self.status) != CartStatus.ACTIVE:
            raise ValidationError({"status": [f"Items can only be {action} an active cart"]})
        if self.is_expired():
            raise ValidationError({"cart": ["Cart has expired"]})

    # -------------------------------------------------------------------
    # Item management
    # -------------------------------------------------------------------
    def add_item(self, product_id, quantity, unit_price, variant_sku=None):
        """Add a line (or grow an existing line for the same product/variant)."""
        self._ensure_active("added to")

        existing = next(
            (
                i
                for i in self.items
                if str(i.product_id) == str(product_id) and (i.variant_sku or None) == (variant_sku or None)
            ),
            None,
        )
        new_quantity = quantity + (existing.quantity if existing else 0)
        if self.item_limit and new_quantity > self.item_limit:
            raise ValidationError({"quantity": [f"Maximum {self.item_limit} units per item"]})

        now = datetime.now(UTC)
        if existing:
            existing.quantity = new_quantity
            existing.price_at_add = unit_price
            item = existing
        else:
            item = CartItem(
                product_id=product_id,
                variant_sku=variant_sku,
                quantity=quantity,
                price_at_add=unit_price,
                position=max((i.position or 0 for i in self.items), default=0) + 1,
                added_at=now,
            )
            self.add_items(item)

        self.updated_at = now
        self.raise_(
            CartItemAdded(
                cart_id=str(self.id),
                item_id=str(item.id),
                product_id=str(product_id),
                variant_sku=variant_sku,
                quantity=quantity,
                price_at_add=unit_price,
            )
        )
        return item

    def update_item_quantity(self, item_id, new_quantity):
        self._ensure_active("updated in")

        item = next((i for i in self.items if str(i.id) == str(item_id)), None)
        if item is None:
            raise ValidationError({"item_id": ["Item not found in cart"]})
        if self.item_limit and new_quantity > self.item_limit:
            raise ValidationError({"quantity": [f"Maximum {self.item_limit} units per item"]})

        previous_quantity = item.quantity
        item.quantity = new_quantity
        self.updated_at = datetime.now(UTC)

        self.raise_(
            CartQuantityUpdated(
                cart_id=str(self.id),
                item_id=str(item_id),
                previous_quantity=previous_quantity,
                new_quantity=new_quantity,
            )
        )

    def remove_item(self, item_id, reason=None):
        if CartStatus(self.status) != CartStatus.ACTIVE:
            raise ValidationError({"status": ["Items can only be removed from an active cart"]})

        item = next((i for i in self.items if str(i.id) == str(item_id)), None)
        if item is None:
            raise ValidationError({"item_id": ["Item not found in cart"]})

        self.remove_items(item)
        self.updated_at = datetime.now(UTC)

        self.raise_(
            CartItemRemoved(
                cart_id=str(self.id),
                item_id=str(item_id),
                product_id=str(item.product_id),
                reason=reason,
            )
        )

    def reprice_item(self, item_id, new_price):
        """Refresh the captured price of a line to the live catalogue price."""
        item = next((i for i in self.items if str(i.id) == str(item_id)), None)
        if item is None:
            raise ValidationError({"item_id": ["Item not found in cart"]})

        previous_price = item.price_at_add
        item.price_at_add = new_price
        self.updated_at = datetime.now(UTC)

        self.raise_(
            CartItemRepriced(
                cart_id=str(self.id),
                item_id=str(item_id),
                previous_price=previous_price,
                new_price=new_price,
            )
        )

    def apply_discount(self, code, amount):
        self._ensure_active("discounted in")
        if not code or not code.strip():
            raise ValidationError({"discount_code": ["Discount code cannot be empty"]})
        if amount > self.subtotal:
            raise ValidationError({"discount_amount": ["Discount cannot exceed the cart subtotal"]})

        self.discount_code = code.strip().upper()
        self.discount_amount = amount
        self.updated_at = datetime.now(UTC)

        self.raise_(
            CartDiscountApplied(
                cart_id=str(self.id),
                discount_code=self.discount_code,
                discount_amount=amount,
            )
        )

    def remove_discount(self):
        self._ensure_active("discounted in")
        if not self.discount_code:
            raise ValidationError({"discount_code": ["No discount applied to this cart"]})

        code = self.discount_code
        self.discount_code = None
        self.discount_amount = 0
        self.updated_at = datetime.now(UTC)
        self.raise_(CartDiscountRemoved(cart_id=str(self.id), discount_code=code))

    def clear(self):
        if CartStatus(self.status) != CartStatus.ACTIVE:
            raise ValidationError({"status": ["Only an active cart can be cleared"]})

        count = len(self.items)
        for item in list(self.items):
            self.remove_items(item)
        self.discount_code = None
        self.discount_amount = 0
        self.updated_at = datetime.now(UTC)
        self.raise_(CartCleared(cart_id=str(self.id), item_count=count))

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def convert(self, order_id):
        if CartStatus(self.status) != CartStatus.ACTIVE:
            raise ValidationError({"status": ["Only an active cart can be converted"]})

        now = datetime.now(UTC)
        self.status = CartStatus.CONVERTED.value
        self.order_id = order_id
        self.updated_at = now

        self.raise_(CartConverted(cart_id=str(self.id), order_id=str(order_id), converted_at=now))

    def expire(self):
        if CartStatus(self.status) != CartStatus.ACTIVE:
            raise ValidationError({"status": ["Only an active cart can expire"]})

        now = datetime.now(UTC)
        self.status = CartStatus.EXPIRED.value
        self.updated_at = now
        self.raise_(CartExpired(cart_id=str(self.id), expired_at=now))

    # -------------------------------------------------------------------
    # Cart merging (guest -> registered customer)
    # -------------------------------------------------------------------
    def merge_guest_cart(self, guest_cart: "ShoppingCart"):
        """Fold a guest session's cart into this customer cart.

        Lines for the same product/variant have their quantities summed, the
        rest are appended with the price the guest captured. Nothing changes
        when any summed line would exceed the per-item limit. The guest cart
        ends up ``merged`` and can no longer be used.
        """
        self._ensure_active("merged into")
        if not self.customer_id:
            raise ValidationError({"cart": ["Guest carts merge into a customer cart"]})
        if guest_cart.customer_id:
            raise ValidationError({"guest_cart_id": ["Only a guest cart can be merged"]})
        if CartStatus(guest_cart.status) != CartStatus.ACTIVE or guest_cart.is_expired():
            raise ValidationError({"guest_cart_id": ["Guest cart is no longer active"]})

        def key(item):
            return (str(item.product_id), item.variant_sku or None)

        existing = {key(item): item for item in self.items}
        over_limit = []
        for guest_item in guest_cart.lines():
            line = existing.get(key(guest_item))
            combined = guest_item.quantity + (line.quantity if line else 0)
            if self.item_limit and combined > self.item_limit:
                over_limit.append(str(guest_item.product_id))
        if over_limit:
            raise ValidationError(
                {"quantity": [f"Maximum {self.item_limit} units per item ({', '.join(over_limit)})"]}
            )

        now = datetime.now(UTC)
        position = max((i.position or 0 for i in self.items), default=0)
        for guest_item in guest_cart.lines():
            line = existing.get(key(guest_item))
            if line:
                line.quantity += guest_item.quantity
            else:
                position += 1
                self.add_items(
                    CartItem(
                        product_id=guest_item.product_id,
                        variant_sku=guest_item.variant_sku,
                        quantity=guest_item.quantity,
                        price_at_add=guest_item.price_at_add,
                        position=position,
                        added_at=now,
                    )
                )

        self.updated_at = now
        self.raise_(
            CartMerged(
                cart_id=str(self.id),
                guest_cart_id=str(guest_cart.id),
                source_session_id=guest_cart.session_id,
                items_merged_count=len(guest_cart.items),
            )
        )

        guest_cart.status = CartStatus.MERGED.value
        guest_cart.updated_at = now
