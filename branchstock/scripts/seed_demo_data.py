"""
Seed demo data (branches, items, a product recipe, opening batches).

Run from the repo root:
    python -m branchstock.scripts.seed_demo_data

Safe to run twice: branches, items and products are looked up by code/name
first; opening batches are only received for items with no stock yet.
"""

import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import func, select

from ..core.logging import configure_logging, get_logger
from ..db.branch import Branch
from ..db.database import async_session_maker, create_db_and_tables, utcnow
from ..db.enums import BranchStatus, TrackingType
from ..db.inventory.batch import InventoryBatch
from ..db.inventory.item import InventoryItem
from ..db.product import Product, ProductIngredient
from ..schemas.inventory import BranchStocking, InventoryBatchCreate, InventoryItemCreate
from ..services.inventory import create_batch, create_item

logger = get_logger("seed")

# Demo actor; real deployments pass the authenticated user's id.
SEED_ACTOR_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")


async def get_or_create_branch(session, name: str, code: str) -> Branch:
    result = await session.execute(select(Branch).where(Branch.code == code))
    branch = result.scalar_one_or_none()
    if branch:
        return branch

    branch = Branch(id=uuid.uuid4(), name=name, code=code, status=BranchStatus.ACTIVE)
    session.add(branch)
    await session.commit()
    return branch


async def get_or_create_item(session, payload: InventoryItemCreate) -> InventoryItem:
    result = await session.execute(select(InventoryItem).where(InventoryItem.code == payload.code))
    item = result.scalar_one_or_none()
    if item:
        return item
    return await create_item(session, payload)


async def get_or_create_product(session, name: str, price: Decimal, recipe) -> Product:
    result = await session.execute(select(Product).where(func.lower(Product.name) == name.lower()))
    product = result.scalar_one_or_none()
    if product:
        return product

    product = Product(id=uuid.uuid4(), name=name, price=price, is_active=True)
    session.add(product)
    await session.flush()
    for item, qty in recipe:
        session.add(ProductIngredient(
            id=uuid.uuid4(), product_id=product.id, inventory_item_id=item.id, quantity_required=qty,
        ))
    await session.commit()
    return product


async def receive_opening_stock(session, item: InventoryItem, branch: Branch, batches) -> None:
    existing = await session.scalar(
        select(func.count(InventoryBatch.id)).where(
            InventoryBatch.inventory_item_id == item.id,
            InventoryBatch.branch_id == branch.id,
        )
    )
    if existing:
        return
    today = utcnow().date()
    for qty, cost, days_to_expiry in batches:
        await create_batch(
            session,
            InventoryBatchCreate(
                inventory_item_id=item.id,
                branch_id=branch.id,
                quantity_received=qty,
                unit_cost=cost,
                expiration_date=(today + timedelta(days=days_to_expiry)) if days_to_expiry is not None else None,
                source="Opening stock",
            ),
            SEED_ACTOR_ID,
        )


async def seed():
    configure_logging()
    await create_db_and_tables()

    async with async_session_maker() as session:
        downtown = await get_or_create_branch(session, "Downtown", "DT")
        harbor = await get_or_create_branch(session, "Harbor", "HB")
        both = [BranchStocking(branch_id=downtown.id, low_stock_threshold=Decimal("2")),
                BranchStocking(branch_id=harbor.id, low_stock_threshold=Decimal("2"))]

        milk = await get_or_create_item(session, InventoryItemCreate(
            name="Whole milk", code="MILK", unit="l", tracking_type=TrackingType.BY_MEASURE,
            days_to_warn_before_expiry=2, branches=both,
        ))
        beans = await get_or_create_item(session, InventoryItemCreate(
            name="Espresso beans", code="BEAN", unit="kg", tracking_type=TrackingType.BY_MEASURE,
            days_to_warn_before_expiry=14, branches=both,
        ))
        croissant = await get_or_create_item(session, InventoryItemCreate(
            name="Croissant", code="CRS", unit="pc", tracking_type=TrackingType.BY_PORTION,
            days_to_warn_before_expiry=1, branches=both,
        ))

        await receive_opening_stock(session, milk, downtown, [(Decimal("5"), Decimal("1.10"), 1),
                                                              (Decimal("10"), Decimal("1.05"), 6)])
        await receive_opening_stock(session, beans, downtown, [(Decimal("3"), Decimal("18.50"), 120)])
        await receive_opening_stock(session, croissant, downtown, [(Decimal("12"), Decimal("0.80"), 2)])
        await receive_opening_stock(session, milk, harbor, [(Decimal("4"), Decimal("1.10"), 3)])

        await get_or_create_product(session, "Latte", Decimal("4.20"),
                                    [(beans, Decimal("0.018")), (milk, Decimal("0.25"))])
        await get_or_create_product(session, "Latte & Croissant", Decimal("6.50"),
                                    [(beans, Decimal("0.018")), (milk, Decimal("0.25")), (croissant, Decimal("1"))])

    logger.info("demo data ready")


if __name__ == "__main__":
    asyncio.run(seed())
