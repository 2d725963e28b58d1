from decimal import Decimal

import pytest

from branchstock.core.errors import InvalidArgumentError
from branchstock.db.enums import AdjustmentType, PortionStatus
from branchstock.schemas.inventory import BatchCountCorrection, PortionAdjustmentCreate
from branchstock.services.inventory import correct_batch_quantity, record_portion_adjustment

from helpers import live_portions, received_of, remaining_of, unused_count


def correction(qty, reason="Recount"):
    return BatchCountCorrection(corrected_quantity=Decimal(str(qty)), reason=reason)


async def test_upward_correction_adds_sequential_portions(factory, session, actor_id):
    branch = await factory.branch()
    croissant = await factory.portion_item()
    batch = await factory.batch(croissant, branch, 5)

    log = await correct_batch_quantity(session, batch.id, correction(8), actor_id)

    portions = await live_portions(session, batch.id)
    assert [p.portion_number for p in portions] == [1, 2, 3, 4, 5, 6, 7, 8]
    assert all(p.status == PortionStatus.UNUSED for p in portions[5:])
    assert await remaining_of(session, batch.id) == Decimal("8")
    assert await received_of(session, batch.id) == Decimal("8")
    assert log.details["portions_created"] == 3


async def test_downward_correction_removes_highest_unused(factory, session, actor_id):
    branch = await factory.branch()
    croissant = await factory.portion_item()
    batch = await factory.batch(croissant, branch, 5)
    portions = await live_portions(session, batch.id)
    # portion 5 is gone already, so the highest unused are 4 and 3
    await record_portion_adjustment(
        session, PortionAdjustmentCreate(type=AdjustmentType.WASTE, portion_ids=[portions[4].id]), actor_id
    )

    log = await correct_batch_quantity(session, batch.id, correction(3), actor_id)

    live = await live_portions(session, batch.id)
    assert [p.portion_number for p in live] == [1, 2, 5]
    assert live[-1].status == PortionStatus.WASTED
    assert await remaining_of(session, batch.id) == Decimal("2")
    assert await unused_count(session, batch.id) == 2
    assert log.details["portions_removed"] == 2
    assert Decimal(log.details["quantity_change"]) == Decimal("-2")


async def test_downward_correction_fails_without_enough_unused_portions(factory, session, actor_id):
    branch = await factory.branch()
    croissant = await factory.portion_item()
    batch = await factory.batch(croissant, branch, 3)
    batch_id = batch.id
    portions = await live_portions(session, batch_id)
    await record_portion_adjustment(
        session,
        PortionAdjustmentCreate(type=AdjustmentType.SPOILAGE, portion_ids=[portions[0].id, portions[1].id]),
        actor_id,
    )

    with pytest.raises(InvalidArgumentError) as excinfo:
        await correct_batch_quantity(session, batch_id, correction(1), actor_id)

    assert "Only 1 unused portions available" in str(excinfo.value)
    assert await received_of(session, batch_id) == Decimal("3")
    assert len(await live_portions(session, batch_id)) == 3


async def test_measure_correction_floors_remaining_at_zero(factory, session, actor_id):
    from branchstock.schemas.inventory import QuantityAdjustmentCreate
    from branchstock.services.inventory import record_quantity_adjustment

    branch = await factory.branch()
    milk = await factory.item()
    batch = await factory.batch(milk, branch, 10)
    await record_quantity_adjustment(
        session,
        QuantityAdjustmentCreate(type=AdjustmentType.WASTE, inventory_batch_id=batch.id, quantity=Decimal("8")),
        actor_id,
    )

    log = await correct_batch_quantity(session, batch.id, correction(5), actor_id)

    assert await remaining_of(session, batch.id) == Decimal("0")
    assert await received_of(session, batch.id) == Decimal("5")
    assert Decimal(log.details["difference"]) == Decimal("-5")
    assert Decimal(log.details["quantity_change"]) == Decimal("-2")


async def test_portion_correction_must_be_whole(factory, session, actor_id):
    branch = await factory.branch()
    croissant = await factory.portion_item()
    batch = await factory.batch(croissant, branch, 3)
    batch_id = batch.id

    with pytest.raises(InvalidArgumentError):
        await correct_batch_quantity(session, batch_id, correction("3.5"), actor_id)
