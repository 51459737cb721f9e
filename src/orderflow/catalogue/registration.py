"""Product registration: catalogue record plus its stock units."""

import json

from protean import handle
from protean.fields import Boolean, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from orderflow.catalogue.product import Product
from orderflow.domain import orderflow
from orderflow.inventory.coordinator import InventoryCoordinator


@orderflow.command(part_of="Product")
class RegisterProduct:
    product_id = Identifier()
    name = String(required=True, max_length=255)
    sku = String(required=True, max_length=64)
    price = Integer(required=True, min_value=0)
    image = String(max_length=1024)
    track_inventory = Boolean(default=True)
    variants = Text()  # JSON: list of {"sku", "options", "price", "is_active"}


@orderflow.command_handler(part_of=Product)
class RegisterProductHandler:
    @handle(RegisterProduct)
    def register_product(self, command):
        variants = json.loads(command.variants) if isinstance(command.variants, str) else command.variants
        product = Product.register(
            name=command.name,
            sku=command.sku,
            price=command.price,
            image=command.image,
            track_inventory=command.track_inventory,
            variants=variants or (),
            product_id=command.product_id,
        )
        current_domain.repository_for(Product).add(product)
        return str(product.id)


def stock_product(inventory: InventoryCoordinator, product: Product, stock: dict[str | None, int]) -> None:
    """Register one stock unit per variant (or one for the bare product).

    ``stock`` maps variant SKU (None for the product itself) to quantity.
    """
    keys = [v.sku for v in product.variants] or [None]
    for key in keys:
        inventory.register(
            str(product.id),
            key,
            quantity=stock.get(key, 0),
            track_inventory=bool(product.track_inventory),
        )
