# tests/conftest.py
import os

# Point the app module at SQLite before branchstock reads its settings.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

import uuid
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Iterable, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from branchstock.db.branch import Branch
from branchstock.db.database import create_db_and_tables, get_async_session
from branchstock.db.enums import BranchStatus, TrackingType
from branchstock.db.inventory.batch import InventoryBatch
from branchstock.db.inventory.item import InventoryItem
from branchstock.db.product import Product, ProductIngredient
from branchstock.schemas.inventory import BranchStocking, InventoryBatchCreate, InventoryItemCreate
from branchstock.services.inventory import create_batch, create_item


# =========================================
# One fresh SQLite file per test
# =========================================
@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", poolclass=NullPool)
    await create_db_and_tables(eng)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as sess:
        yield sess


@pytest.fixture
def actor_id() -> uuid.UUID:
    return uuid.UUID("11111111-1111-1111-1111-111111111111")


class LedgerFactory:
    """Builds branches, items, products and batches through the real services."""

    def __init__(self, session: AsyncSession, actor_id: uuid.UUID):
        self.session = session
        self.actor_id = actor_id

    async def branch(self, name: str = "Downtown", code: str = "DT", *, archived: bool = False) -> Branch:
        branch = Branch(
            id=uuid.uuid4(),
            name=name,
            code=code,
            status=BranchStatus.ARCHIVED if archived else BranchStatus.ACTIVE,
        )
        self.session.add(branch)
        await self.session.commit()
        return branch

    async def item(
        self,
        name: str = "Milk",
        code: str = "MILK",
        *,
        unit: str = "l",
        tracking: TrackingType = TrackingType.BY_MEASURE,
        days_to_warn: Optional[int] = None,
        branches: Iterable[Tuple[Branch, str]] = (),
    ) -> InventoryItem:
        return await create_item(self.session, InventoryItemCreate(
            name=name,
            code=code,
            unit=unit,
            tracking_type=tracking,
            days_to_warn_before_expiry=days_to_warn,
            branches=[BranchStocking(branch_id=b.id, low_stock_threshold=Decimal(t)) for b, t in branches],
        ))

    async def portion_item(self, name: str = "Croissant", code: str = "CRS", **kw) -> InventoryItem:
        return await self.item(name, code, unit="pc", tracking=TrackingType.BY_PORTION, **kw)

    async def batch(
        self,
        item: InventoryItem,
        branch: Branch,
        qty,
        *,
        expires: Optional[date] = None,
        cost: str = "1.00",
    ) -> InventoryBatch:
        return await create_batch(
            self.session,
            InventoryBatchCreate(
                inventory_item_id=item.id,
                branch_id=branch.id,
                quantity_received=Decimal(str(qty)),
                unit_cost=Decimal(cost),
                expiration_date=expires,
            ),
            self.actor_id,
        )

    async def product(self, name: str, price: str, recipe, *, active: bool = True) -> Product:
        product = Product(id=uuid.uuid4(), name=name, price=Decimal(price), is_active=active)
        self.session.add(product)
        await self.session.flush()
        for item, qty in recipe:
            self.session.add(ProductIngredient(
                id=uuid.uuid4(),
                product_id=product.id,
                inventory_item_id=item.id,
                quantity_required=Decimal(str(qty)),
            ))
        await self.session.commit()
        return product


@pytest.fixture
def factory(session, actor_id) -> LedgerFactory:
    return LedgerFactory(session, actor_id)


# =========================================
# HTTP client bound to the per-test database
# =========================================
@pytest_asyncio.fixture
async def client(session_maker) -> AsyncGenerator[httpx.AsyncClient, None]:
    from branchstock.main import app

    async def _session_override():
        async with session_maker() as sess:
            yield sess

    app.dependency_overrides[get_async_session] = _session_override
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
    finally:
        app.dependency_overrides.clear()
