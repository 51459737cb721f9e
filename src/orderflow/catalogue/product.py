"""Catalogue read model: the live product/variant view checkout re-reads.

Product CRUD lives elsewhere; this aggregate only carries what staging and
order snapshots need (name, image, SKU, live price, status).
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, HasMany, Identifier, Integer, String

from orderflow.domain import orderflow


class ProductStatus(Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


@orderflow.event(part_of="Product")
class ProductRegistered:
    __version__ = 1

    product_id = Identifier(required=True)
    sku = String(required=True)
    name = String(required=True)
    price = Integer(required=True)
    variant_count = Integer(default=0)
    registered_at = DateTime(required=True)


@orderflow.event(part_of="Product")
class ProductPriceChanged:
    __version__ = 1

    product_id = Identifier(required=True)
    variant_sku = String()
    previous_price = Integer(required=True)
    new_price = Integer(required=True)


@orderflow.entity(part_of="Product")
class Variant:
    sku = String(required=True, max_length=64)
    options = String(max_length=255)
    price = Integer(min_value=0)  # None inherits the product price
    is_active = Boolean(default=True)


@orderflow.aggregate
class Product:
    name = String(required=True, max_length=255)
    sku = String(required=True, max_length=64)
    image = String(max_length=1024)
    price = Integer(required=True, min_value=0)
    status = String(choices=ProductStatus, default=ProductStatus.ACTIVE.value)
    track_inventory = Boolean(default=True)
    variants = HasMany(Variant)
    created_at = DateTime()

    @classmethod
    def register(
        cls,
        name,
        sku,
        price,
        image=None,
        track_inventory=True,
        status=ProductStatus.ACTIVE.value,
        variants=(),
        product_id=None,
    ):
        now = datetime.now(UTC)
        identity = {"id": product_id} if product_id else {}
        product = cls(
            **identity,
            name=name,
            sku=sku,
            price=price,
            image=image,
            track_inventory=track_inventory,
            status=status,
            created_at=now,
        )
        for variant in variants:
            product.add_variants(Variant(**variant))

        product.raise_(
            ProductRegistered(
                product_id=str(product.id),
                sku=sku,
                name=name,
                price=price,
                variant_count=len(product.variants),
                registered_at=now,
            )
        )
        return product

    def variant(self, variant_sku):
        return next((v for v in self.variants if v.sku == variant_sku), None)

    def unit_price(self, variant_sku=None) -> int:
        if variant_sku:
            variant = self.variant(variant_sku)
            if variant is not None and variant.price is not None:
                return variant.price
        return self.price

    def change_price(self, new_price, variant_sku=None):
        if variant_sku:
            variant = self.variant(variant_sku)
            if variant is None:
                raise ValidationError({"variant_sku": [f"Variant {variant_sku} not found"]})
            previous = self.unit_price(variant_sku)
            variant.price = new_price
        else:
            previous = self.price
            self.price = new_price

        self.raise_(
            ProductPriceChanged(
                product_id=str(self.id),
                variant_sku=variant_sku,
                previous_price=previous,
                new_price=new_price,
            )
        )

    def archive(self):
        self.status = ProductStatus.ARCHIVED.value
