from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from branchstock.core.errors import (
    InsufficientStockError,
    InvalidArgumentError,
    InvalidStateError,
    InvariantViolationError,
    NotFoundError,
)
from branchstock.db.enums import LogAction, PortionStatus
from branchstock.db.inventory.log import InventoryLog
from branchstock.db.sale import Sale
from branchstock.schemas.sales import SaleCreate, SaleLineCreate
from branchstock.services.allocation import AllocationEngine
from branchstock.services.sales import create_sale

from helpers import live_portions, log_count, remaining_of


def order(branch, *lines, notes=None):
    return SaleCreate(
        branch_id=branch.id,
        items=[SaleLineCreate(product_id=p.id, quantity=q) for p, q in lines],
        notes=notes,
    )


async def test_sale_freezes_prices_and_totals(factory, session, actor_id):
    branch = await factory.branch()
    milk = await factory.item()
    beans = await factory.item("Beans", "BEAN", unit="kg")
    await factory.batch(milk, branch, 10)
    await factory.batch(beans, branch, 1)
    latte = await factory.product("Latte", "4.20", [(milk, "0.25"), (beans, "0.018")])
    flat = await factory.product("Flat white", "3.90", [(milk, "0.15"), (beans, "0.018")])

    sale = await create_sale(session, order(branch, (latte, 2), (flat, 1), notes="  table 4 "), actor_id)

    assert sale.total_amount == Decimal("12.30")
    assert sale.notes == "table 4"
    assert sale.user_id == actor_id
    assert sorted(i.price_at_sale for i in sale.items) == [Decimal("3.90"), Decimal("4.20")]


async def test_requirements_are_summed_across_products(factory, session, actor_id):
    branch = await factory.branch()
    milk = await factory.item()
    batch = await factory.batch(milk, branch, 1)
    batch_id = batch.id
    latte = await factory.product("Latte", "4.20", [(milk, "0.5")])
    cortado = await factory.product("Cortado", "3.00", [(milk, "0.6")])
    logs_before = await log_count(session)

    # Each product alone fits; together they need 1.1
    with pytest.raises(InsufficientStockError) as excinfo:
        await create_sale(session, order(branch, (latte, 1), (cortado, 1)), actor_id)

    [shortage] = excinfo.value.shortages
    assert shortage.required == Decimal("1.1")
    assert shortage.available == Decimal("1")
    assert await remaining_of(session, batch_id) == Decimal("1")
    assert await log_count(session) == logs_before


async def test_failed_sale_changes_nothing_and_lists_every_shortage(factory, session, actor_id):
    branch = await factory.branch()
    milk = await factory.item()
    beans = await factory.item("Beans", "BEAN", unit="kg")
    sugar = await factory.item("Sugar", "SUG", unit="kg")
    milk_batch = await factory.batch(milk, branch, 1)
    sugar_batch = await factory.batch(sugar, branch, 5)
    ids = (milk_batch.id, sugar_batch.id)
    drink = await factory.product("Sweet latte", "5.00", [(milk, "2"), (beans, "0.02"), (sugar, "0.01")])

    with pytest.raises(InsufficientStockError) as excinfo:
        await create_sale(session, order(branch, (drink, 1)), actor_id)

    names = sorted(s.item_name for s in excinfo.value.shortages)
    assert names == ["Beans", "Milk"]
    assert "Milk (Required: 2" in str(excinfo.value)
    assert await remaining_of(session, ids[0]) == Decimal("1")
    assert await remaining_of(session, ids[1]) == Decimal("5")
    assert await session.scalar(select(func.count(Sale.id))) == 0


async def test_measure_deduction_writes_one_log_per_batch(factory, session, actor_id):
    branch = await factory.branch()
    milk = await factory.item()
    early = await factory.batch(milk, branch, 2, expires=date(2026, 3, 1))
    late = await factory.batch(milk, branch, 5, expires=date(2026, 3, 9))
    shot = await factory.product("Milk", "1.00", [(milk, 1)])

    sale = await create_sale(session, order(branch, (shot, 3)), actor_id)

    rows = await session.execute(
        select(InventoryLog).where(InventoryLog.sale_id == sale.id)
    )
    logs = {log.inventory_batch_id: log for log in rows.scalars().all()}
    assert set(logs) == {early.id, late.id}
    assert Decimal(logs[early.id].details["quantity_change"]) == Decimal("-2")
    assert Decimal(logs[late.id].details["quantity_change"]) == Decimal("-1")
    assert all(log.action == LogAction.DEDUCTED_FOR_SALE.value for log in logs.values())
    assert all(log.user_id == actor_id for log in logs.values())


async def test_portion_sale_uses_portions_in_order(factory, session, actor_id):
    branch = await factory.branch()
    croissant = await factory.portion_item()
    batch = await factory.batch(croissant, branch, 4)
    product = await factory.product("Croissant", "2.50", [(croissant, 1)])

    sale = await create_sale(session, order(branch, (product, 2)), actor_id)

    portions = await live_portions(session, batch.id)
    assert [p.status for p in portions] == [
        PortionStatus.USED, PortionStatus.USED, PortionStatus.UNUSED, PortionStatus.UNUSED,
    ]
    assert portions[0].consumed_at is not None
    assert await remaining_of(session, batch.id) == Decimal("2")

    rows = await session.execute(select(InventoryLog).where(InventoryLog.sale_id == sale.id))
    labels = sorted(log.details["portion_label"] for log in rows.scalars().all())
    assert labels == ["CRS-DT-B1-01", "CRS-DT-B1-02"]


async def test_fractional_portion_requirement_is_refused(factory, session, actor_id):
    branch = await factory.branch()
    croissant = await factory.portion_item()
    await factory.batch(croissant, branch, 4)
    half = await factory.product("Half croissant", "1.30", [(croissant, "0.5")])

    with pytest.raises(InvalidArgumentError):
        await create_sale(session, order(branch, (half, 1)), actor_id)


async def test_unknown_and_inactive_products(factory, session, actor_id):
    branch = await factory.branch()
    milk = await factory.item()
    await factory.batch(milk, branch, 5)
    retired = await factory.product("Old drink", "2.00", [(milk, 1)], active=False)
    retired_order = order(branch, (retired, 1))
    # an item id is never a product id
    ghost_order = SaleCreate(branch_id=branch.id, items=[SaleLineCreate(product_id=milk.id, quantity=1)])

    with pytest.raises(InvalidArgumentError):
        await create_sale(session, retired_order, actor_id)

    with pytest.raises(NotFoundError) as excinfo:
        await create_sale(session, ghost_order, actor_id)
    assert excinfo.value.entity == "Product"


async def test_archived_branch_cannot_sell(factory, session, actor_id):
    branch = await factory.branch(archived=True)
    milk = await factory.item()
    product = await factory.product("Milk", "1.00", [(milk, 1)])

    with pytest.raises(InvalidStateError):
        await create_sale(session, order(branch, (product, 1)), actor_id)


async def test_short_deduction_rolls_the_sale_back(factory, session, actor_id, monkeypatch):
    branch = await factory.branch()
    milk = await factory.item()
    early = await factory.batch(milk, branch, 2, expires=date(2026, 3, 1))
    late = await factory.batch(milk, branch, 5, expires=date(2026, 3, 9))
    ids = (early.id, late.id)
    shot = await factory.product("Milk", "1.00", [(milk, 1)])
    request = order(branch, (shot, 3))
    logs_before = await log_count(session)

    planned = AllocationEngine.allocate_many

    async def drop_last_line(self, *args, **kwargs):
        allocations = await planned(self, *args, **kwargs)
        for allocation in allocations.values():
            allocation.plan = replace(allocation.plan, lines=allocation.plan.lines[:-1])
        return allocations

    monkeypatch.setattr(AllocationEngine, "allocate_many", drop_last_line)

    with pytest.raises(InvariantViolationError):
        await create_sale(session, request, actor_id)

    assert await remaining_of(session, ids[0]) == Decimal("2")
    assert await remaining_of(session, ids[1]) == Decimal("5")
    assert await session.scalar(select(func.count(Sale.id))) == 0
    assert await log_count(session) == logs_before
