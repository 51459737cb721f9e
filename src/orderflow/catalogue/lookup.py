"""Live catalogue lookups used by Cart Staging and order snapshots."""

from dataclasses import dataclass

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from orderflow.catalogue.product import Product, ProductStatus


@dataclass(frozen=True)
class LineResolution:
    product_id: str
    variant_sku: str | None
    name: str
    image: str | None
    sku: str
    options: str | None
    unit_price: int
    is_active: bool
    track_inventory: bool


def resolve_line(product_id, variant_sku=None) -> LineResolution | None:
    """Re-resolve a cart line against the live catalogue.

    Returns None when the product (or the requested variant) no longer exists.
    """
    try:
        product = current_domain.repository_for(Product).get(product_id)
    except ObjectNotFoundError:
        return None

    is_active = product.status == ProductStatus.ACTIVE.value
    sku = product.sku
    options = None
    if variant_sku:
        variant = product.variant(variant_sku)
        if variant is None:
            return None
        is_active = is_active and bool(variant.is_active)
        sku = variant.sku
        options = variant.options

    return LineResolution(
        product_id=str(product.id),
        variant_sku=variant_sku,
        name=product.name,
        image=product.image,
        sku=sku,
        options=options,
        unit_price=product.unit_price(variant_sku),
        is_active=is_active,
        track_inventory=bool(product.track_inventory),
    )
