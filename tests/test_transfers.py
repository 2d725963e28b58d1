from collections import Counter
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from branchstock.core.errors import (
    ConcurrencyConflictError,
    InvalidArgumentError,
    InvalidStateError,
)
from branchstock.db.enums import LogAction, PortionStatus, TransferItemStatus, TransferStatus
from branchstock.db.inventory.log import InventoryLog
from branchstock.schemas.transfers import (
    TransferBatchLine,
    TransferCreate,
    TransferLineCreate,
    TransferReceive,
    TransferReceptionLine,
)
from branchstock.services.audit import verify_batch_ledger
from branchstock.services.transfers import (
    cancel_transfer,
    get_transfer,
    initiate_transfer,
    receive_transfer,
    reject_transfer,
)

from helpers import batches_of, live_portions, log_actions, portion_status, remaining_of, unused_count

EXPIRY = date(2026, 6, 1)


@pytest.fixture
async def branches(factory):
    source = await factory.branch("Downtown", "DT")
    destination = await factory.branch("Harbor", "HB")
    return source, destination


def send_measure(source, destination, item, *batch_quantities, notes=None):
    return TransferCreate(
        source_branch_id=source.id,
        destination_branch_id=destination.id,
        notes=notes,
        items=[TransferLineCreate(
            inventory_item_id=item.id,
            batches=[TransferBatchLine(batch_id=b.id, quantity=Decimal(str(q))) for b, q in batch_quantities],
        )],
    )


def send_portions(source, destination, item, portion_ids):
    return TransferCreate(
        source_branch_id=source.id,
        destination_branch_id=destination.id,
        items=[TransferLineCreate(inventory_item_id=item.id, portion_ids=list(portion_ids))],
    )


def answer(transfer, status, received=None):
    return TransferReceive(items=[
        TransferReceptionLine(transfer_item_id=line.id, reception_status=status, received_quantity=received)
        for line in transfer.items
    ])


async def test_initiate_takes_stock_out_of_the_source(factory, session, actor_id, branches):
    source, destination = branches
    milk = await factory.item()
    batch = await factory.batch(milk, source, 10, expires=EXPIRY)

    transfer = await initiate_transfer(session, send_measure(source, destination, milk, (batch, 4)), actor_id)

    assert transfer.status == TransferStatus.PENDING
    assert transfer.sending_user_id == actor_id
    [line] = transfer.items
    assert line.quantity == Decimal("4")
    assert line.reception_status == TransferItemStatus.PENDING
    assert await remaining_of(session, batch.id) == Decimal("6")
    assert LogAction.TRANSFER_INITIATED.value in await log_actions(session, batch.id)


async def test_full_reception_rebatches_at_destination(factory, session, actor_id, branches):
    source, destination = branches
    milk = await factory.item()
    batch = await factory.batch(milk, source, 10, expires=EXPIRY, cost="1.25")
    transfer = await initiate_transfer(session, send_measure(source, destination, milk, (batch, 4)), actor_id)

    done = await receive_transfer(session, transfer.id, answer(transfer, TransferItemStatus.RECEIVED), actor_id)

    assert done.status == TransferStatus.COMPLETED
    assert done.receiving_user_id == actor_id
    assert done.received_at is not None
    [arrived] = await batches_of(session, milk.id, destination.id)
    assert arrived.batch_number == 1
    assert arrived.remaining_quantity == Decimal("4")
    assert arrived.quantity_received == Decimal("4")
    assert arrived.unit_cost == Decimal("1.25")
    assert arrived.expiration_date == EXPIRY
    assert arrived.source == "Transfer from Downtown"
    assert await log_actions(session, arrived.id) == [LogAction.TRANSFER_RECEIVED.value]
    assert await remaining_of(session, batch.id) == Decimal("6")
    assert (await verify_batch_ledger(session, arrived.id)).is_consistent
    assert (await verify_batch_ledger(session, batch.id)).is_consistent


async def test_partial_reception_returns_the_shortfall(factory, session, actor_id, branches):
    source, destination = branches
    milk = await factory.item()
    batch = await factory.batch(milk, source, 10)
    transfer = await initiate_transfer(session, send_measure(source, destination, milk, (batch, 5)), actor_id)

    await receive_transfer(
        session, transfer.id, answer(transfer, TransferItemStatus.RECEIVED_WITH_ISSUES, Decimal("3")), actor_id
    )

    [arrived] = await batches_of(session, milk.id, destination.id)
    assert arrived.remaining_quantity == Decimal("3")
    # 10 sent 5, got 2 back
    assert await remaining_of(session, batch.id) == Decimal("7")
    assert LogAction.TRANSFER_DISCREPANCY.value in await log_actions(session, batch.id)
    # conservation: 7 at source + 3 at destination
    assert await remaining_of(session, batch.id) + arrived.remaining_quantity == Decimal("10")
    line = (await get_transfer(session, transfer.id)).items[0]
    assert line.received_quantity == Decimal("3")


async def test_received_with_issues_needs_a_quantity_within_what_was_sent(factory, session, actor_id, branches):
    source, destination = branches
    milk = await factory.item()
    batch = await factory.batch(milk, source, 10)
    transfer = await initiate_transfer(session, send_measure(source, destination, milk, (batch, 5)), actor_id)
    transfer_id = transfer.id
    too_many = answer(transfer, TransferItemStatus.RECEIVED_WITH_ISSUES, Decimal("6"))

    with pytest.raises(InvalidArgumentError):
        await receive_transfer(session, transfer_id, too_many, actor_id)

    assert (await get_transfer(session, transfer_id)).status == TransferStatus.PENDING


async def test_every_line_must_be_answered(factory, session, actor_id, branches):
    source, destination = branches
    milk = await factory.item()
    first = await factory.batch(milk, source, 5)
    second = await factory.batch(milk, source, 5)
    transfer = await initiate_transfer(
        session, send_measure(source, destination, milk, (first, 1), (second, 1)), actor_id
    )
    transfer_id = transfer.id
    partial = TransferReceive(items=[
        TransferReceptionLine(transfer_item_id=transfer.items[0].id, reception_status=TransferItemStatus.RECEIVED)
    ])

    with pytest.raises(InvalidArgumentError):
        await receive_transfer(session, transfer_id, partial, actor_id)


async def test_rejected_line_goes_back_and_transfer_still_completes(factory, session, actor_id, branches):
    source, destination = branches
    milk = await factory.item()
    batch = await factory.batch(milk, source, 10)
    transfer = await initiate_transfer(session, send_measure(source, destination, milk, (batch, 4)), actor_id)

    done = await receive_transfer(session, transfer.id, answer(transfer, TransferItemStatus.REJECTED), actor_id)

    assert done.status == TransferStatus.COMPLETED
    assert await batches_of(session, milk.id, destination.id) == []
    assert await remaining_of(session, batch.id) == Decimal("10")
    assert LogAction.TRANSFER_REJECTED.value in await log_actions(session, batch.id)


async def test_portions_are_regrouped_per_source_batch(factory, session, actor_id, branches):
    source, destination = branches
    croissant = await factory.portion_item()
    first = await factory.batch(croissant, source, 4, expires=date(2026, 5, 1))
    second = await factory.batch(croissant, source, 2, expires=date(2026, 5, 3))
    from_first = [p.id for p in (await live_portions(session, first.id))[:3]]
    from_second = [(await live_portions(session, second.id))[0].id]

    transfer = await initiate_transfer(
        session, send_portions(source, destination, croissant, from_first + from_second), actor_id
    )
    assert await portion_status(session, from_first[0]) == PortionStatus.IN_TRANSIT
    assert await remaining_of(session, first.id) == Decimal("1")

    await receive_transfer(session, transfer.id, answer(transfer, TransferItemStatus.RECEIVED), actor_id)

    arrived = await batches_of(session, croissant.id, destination.id)
    assert sorted(b.remaining_quantity for b in arrived) == [Decimal("1"), Decimal("3")]
    by_expiry = {b.expiration_date: b for b in arrived}
    big = by_expiry[date(2026, 5, 1)]
    labels = [p.label for p in await live_portions(session, big.id)]
    assert labels == [f"CRS-HB-B{big.batch_number}-0{n}" for n in (1, 2, 3)]
    assert await unused_count(session, big.id) == 3
    assert [await portion_status(session, pid) for pid in from_first] == [PortionStatus.TRANSFERRED] * 3
    assert (await verify_batch_ledger(session, first.id)).is_consistent
    assert (await verify_batch_ledger(session, big.id)).is_consistent


async def test_portion_received_with_issues_still_counts(factory, session, actor_id, branches):
    source, destination = branches
    croissant = await factory.portion_item()
    batch = await factory.batch(croissant, source, 2)
    portion_id = (await live_portions(session, batch.id))[0].id
    transfer = await initiate_transfer(session, send_portions(source, destination, croissant, [portion_id]), actor_id)

    await receive_transfer(
        session, transfer.id, answer(transfer, TransferItemStatus.RECEIVED_WITH_ISSUES), actor_id
    )

    [arrived] = await batches_of(session, croissant.id, destination.id)
    assert arrived.remaining_quantity == Decimal("1")
    assert await portion_status(session, portion_id) == PortionStatus.TRANSFERRED


async def test_rejection_round_trip_restores_the_source_exactly(factory, session, actor_id, branches):
    source, destination = branches
    milk = await factory.item()
    croissant = await factory.portion_item()
    milk_batch = await factory.batch(milk, source, 10)
    croissant_batch = await factory.batch(croissant, source, 3)
    portion_ids = [p.id for p in await live_portions(session, croissant_batch.id)][:2]
    request = TransferCreate(
        source_branch_id=source.id,
        destination_branch_id=destination.id,
        notes="Weekend top-up",
        items=[
            TransferLineCreate(inventory_item_id=milk.id, batches=[TransferBatchLine(batch_id=milk_batch.id,
                                                                                     quantity=Decimal("6"))]),
            TransferLineCreate(inventory_item_id=croissant.id, portion_ids=portion_ids),
        ],
    )
    transfer = await initiate_transfer(session, request, actor_id)

    rejected = await reject_transfer(session, transfer.id, "  Wrong branch  ", actor_id)

    assert rejected.status == TransferStatus.REJECTED
    assert rejected.notes == "Weekend top-up\n\nRejection reason: Wrong branch"
    assert all(line.reception_status == TransferItemStatus.REJECTED for line in rejected.items)
    assert await remaining_of(session, milk_batch.id) == Decimal("10")
    assert await remaining_of(session, croissant_batch.id) == Decimal("3")
    assert [await portion_status(session, pid) for pid in portion_ids] == [PortionStatus.UNUSED] * 2
    rows = await session.execute(select(InventoryLog.action).where(InventoryLog.transfer_id == transfer.id))
    assert Counter(rows.scalars().all()) == {
        LogAction.TRANSFER_INITIATED.value: 3,
        LogAction.TRANSFER_REJECTED.value: 3,
    }


async def test_reject_needs_a_reason(factory, session, actor_id, branches):
    source, destination = branches
    milk = await factory.item()
    batch = await factory.batch(milk, source, 10)
    transfer = await initiate_transfer(session, send_measure(source, destination, milk, (batch, 1)), actor_id)

    with pytest.raises(InvalidArgumentError):
        await reject_transfer(session, transfer.id, "   ", actor_id)


async def test_cancel_returns_stock_and_closes_the_transfer(factory, session, actor_id, branches):
    source, destination = branches
    milk = await factory.item()
    batch = await factory.batch(milk, source, 10)
    transfer = await initiate_transfer(session, send_measure(source, destination, milk, (batch, 3)), actor_id)
    transfer_id, batch_id = transfer.id, batch.id

    cancelled = await cancel_transfer(session, transfer_id, actor_id)

    assert cancelled.status == TransferStatus.CANCELLED
    assert await remaining_of(session, batch_id) == Decimal("10")
    assert LogAction.TRANSFER_CANCELLED.value in await log_actions(session, batch_id)

    with pytest.raises(InvalidStateError):
        await receive_transfer(session, transfer_id, TransferReceive(items=[]), actor_id)
    with pytest.raises(InvalidStateError):
        await cancel_transfer(session, transfer_id, actor_id)
    assert await remaining_of(session, batch_id) == Decimal("10")


async def test_sending_more_than_the_batch_holds_conflicts(factory, session, actor_id, branches):
    source, destination = branches
    milk = await factory.item()
    batch = await factory.batch(milk, source, 2)
    request = send_measure(source, destination, milk, (batch, 3))
    batch_id = batch.id

    with pytest.raises(ConcurrencyConflictError) as excinfo:
        await initiate_transfer(session, request, actor_id)

    assert excinfo.value.retryable
    assert await remaining_of(session, batch_id) == Decimal("2")


async def test_portion_already_in_transit_conflicts(factory, session, actor_id, branches):
    source, destination = branches
    croissant = await factory.portion_item()
    batch = await factory.batch(croissant, source, 2)
    portion_id = (await live_portions(session, batch.id))[0].id
    request = send_portions(source, destination, croissant, [portion_id])
    await initiate_transfer(session, request, actor_id)

    with pytest.raises(ConcurrencyConflictError):
        await initiate_transfer(session, request, actor_id)


async def test_batch_must_belong_to_the_source_branch(factory, session, actor_id, branches):
    source, destination = branches
    milk = await factory.item()
    elsewhere = await factory.batch(milk, destination, 5)
    request = send_measure(source, destination, milk, (elsewhere, 1))

    with pytest.raises(InvalidArgumentError):
        await initiate_transfer(session, request, actor_id)


async def test_destination_must_be_active(factory, session, actor_id):
    source = await factory.branch("Downtown", "DT")
    closed = await factory.branch("Old pier", "OP", archived=True)
    milk = await factory.item()
    batch = await factory.batch(milk, source, 5)

    with pytest.raises(InvalidStateError):
        await initiate_transfer(session, send_measure(source, closed, milk, (batch, 1)), actor_id)
