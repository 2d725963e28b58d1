"""Read-only view of products and their recipes, as the sale processor needs them."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.errors import InvalidArgumentError, NotFoundError
from ..db.product import Product


@dataclass(frozen=True)
class RecipeLine:
    inventory_item_id: UUID
    quantity_required: Decimal


@dataclass(frozen=True)
class ProductRecipe:
    product_id: UUID
    name: str
    price: Decimal
    ingredients: Tuple[RecipeLine, ...]


async def load_recipes(db: AsyncSession, product_ids: Iterable[UUID]) -> Dict[UUID, ProductRecipe]:
    ids = sorted(set(product_ids))
    rows = await db.execute(
        select(Product).where(Product.id.in_(ids)).options(selectinload(Product.ingredients))
    )
    products = {p.id: p for p in rows.scalars().all()}

    out: Dict[UUID, ProductRecipe] = {}
    for product_id in ids:
        product = products.get(product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        if not product.is_active:
            raise InvalidArgumentError(f"Product {product.name} is not available for sale", field="product_id")
        out[product_id] = ProductRecipe(
            product_id=product.id,
            name=product.name,
            price=Decimal(product.price),
            ingredients=tuple(
                RecipeLine(inventory_item_id=ing.inventory_item_id, quantity_required=Decimal(ing.quantity_required))
                for ing in product.ingredients
            ),
        )
    return out


def aggregate_requirements(
    lines: Iterable[Tuple[UUID, int]], recipes: Dict[UUID, ProductRecipe]
) -> Dict[UUID, Decimal]:
    """Total amount of each inventory item a multi-product order uses."""
    totals: Dict[UUID, Decimal] = {}
    for product_id, quantity in lines:
        for ing in recipes[product_id].ingredients:
            totals[ing.inventory_item_id] = (
                totals.get(ing.inventory_item_id, Decimal("0")) + ing.quantity_required * quantity
            )
    return {item_id: qty for item_id, qty in totals.items() if qty > 0}
