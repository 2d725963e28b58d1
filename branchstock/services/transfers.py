"""
Transfers between branches.

    PENDING --receive--> COMPLETED
    PENDING --cancel---> CANCELLED   (sender takes everything back)
    PENDING --reject---> REJECTED    (receiver refuses everything)

Initiation takes stock out of the source batches and holds portions
IN_TRANSIT. Reception re-batches what was accepted at the destination, one
new batch per source batch, and returns the rest to where it came from.
"""

import uuid
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.errors import ConcurrencyConflictError, InvalidArgumentError, InvalidStateError, NotFoundError
from ..core.logging import get_logger
from ..db.branch import Branch
from ..db.database import utcnow
from ..db.enums import LogAction, PortionStatus, TransferItemStatus, TransferStatus
from ..db.inventory.batch import InventoryBatch
from ..db.inventory.item import InventoryItem
from ..db.inventory.portion import InventoryBatchPortion
from ..db.transfer import Transfer, TransferItem
from ..schemas.log_details import TransferDetails
from ..schemas.transfers import TransferCreate, TransferReceive
from .audit import write_log
from .inventory import ensure_branch_stocks_item, create_portions_for_batch
from .repository import LedgerRepository, atomic

logger = get_logger("transfers")


def _details(
    counterpart: Branch,
    change: Decimal,
    batch: InventoryBatch,
    *,
    portion: Optional[InventoryBatchPortion] = None,
    **extra,
) -> TransferDetails:
    return TransferDetails(
        quantity_change=change,
        counterpart_branch_id=counterpart.id,
        counterpart_branch_name=counterpart.name,
        source_batch_id=batch.id,
        source_batch_number=batch.batch_number,
        portion_label=portion.label if portion is not None else None,
        **extra,
    )


async def _portion_batch_ids(db: AsyncSession, portion_ids: List[UUID]) -> Dict[UUID, UUID]:
    if not portion_ids:
        return {}
    rows = await db.execute(
        select(InventoryBatchPortion.id, InventoryBatchPortion.inventory_batch_id).where(
            InventoryBatchPortion.id.in_(portion_ids)
        )
    )
    found = {row.id: row.inventory_batch_id for row in rows}
    for portion_id in portion_ids:
        if portion_id not in found:
            raise NotFoundError("Portion", portion_id)
    return found


async def initiate_transfer(db: AsyncSession, data: TransferCreate, actor_id: Optional[UUID]) -> Transfer:
    repo = LedgerRepository(db)
    async with atomic(db):
        source = await repo.get_branch(data.source_branch_id)
        destination = await repo.get_active_branch(data.destination_branch_id)

        items: Dict[UUID, InventoryItem] = {}
        for line in data.items:
            if line.inventory_item_id not in items:
                items[line.inventory_item_id] = await repo.get_item(line.inventory_item_id)

        all_portion_ids = [pid for line in data.items for pid in line.portion_ids]
        if len(set(all_portion_ids)) != len(all_portion_ids):
            raise InvalidArgumentError("A portion can be sent only once per transfer", field="items")
        portion_batch = await _portion_batch_ids(db, all_portion_ids)
        batch_ids = {b.batch_id for line in data.items for b in line.batches} | set(portion_batch.values())

        batches = {b.id: b for b in await repo.lock_batches(batch_ids)}
        portions = {p.id: p for p in await repo.lock_portions(all_portion_ids)}

        # Validate everything against the locked rows before moving anything.
        requested: Dict[UUID, Decimal] = {}
        for line in data.items:
            item = items[line.inventory_item_id]
            if line.batches and item.is_portion_tracked:
                raise InvalidArgumentError(f"{item.name} is tracked by portion; send portions", field="items")
            if line.portion_ids and not item.is_portion_tracked:
                raise InvalidArgumentError(f"{item.name} is tracked by measure; send batch quantities", field="items")

            for entry in line.batches:
                batch = batches[entry.batch_id]
                if batch.branch_id != source.id or batch.inventory_item_id != item.id:
                    raise InvalidArgumentError(
                        f"Batch #{batch.batch_number} is not {item.name} stock at {source.name}", field="items"
                    )
                requested[batch.id] = requested.get(batch.id, Decimal("0")) + entry.quantity

            for portion_id in line.portion_ids:
                portion = portions[portion_id]
                batch = batches[portion.inventory_batch_id]
                if batch.branch_id != source.id or batch.inventory_item_id != item.id:
                    raise InvalidArgumentError(
                        f"Portion {portion.label} is not {item.name} stock at {source.name}", field="items"
                    )
                if portion.status != PortionStatus.UNUSED:
                    raise ConcurrencyConflictError(
                        f"Portion {portion.label} is {portion.status.value} and can no longer be sent"
                    )

        for batch_id, amount in requested.items():
            batch = batches[batch_id]
            if amount > Decimal(batch.remaining_quantity):
                raise ConcurrencyConflictError(
                    f"Batch #{batch.batch_number} holds {batch.remaining_quantity}, cannot send {amount}"
                )

        transfer = Transfer(
            id=uuid.uuid4(),
            source_branch_id=source.id,
            destination_branch_id=destination.id,
            sending_user_id=actor_id,
            status=TransferStatus.PENDING,
            notes=data.notes,
            sent_at=utcnow(),
            items=[],
        )
        line_number = 0
        moves: List[Tuple[InventoryBatch, Optional[InventoryBatchPortion], Decimal]] = []
        for line in data.items:
            for entry in line.batches:
                line_number += 1
                transfer.items.append(TransferItem(
                    id=uuid.uuid4(),
                    line_number=line_number,
                    inventory_item_id=line.inventory_item_id,
                    inventory_batch_id=entry.batch_id,
                    quantity=entry.quantity,
                    reception_status=TransferItemStatus.PENDING,
                ))
                moves.append((batches[entry.batch_id], None, entry.quantity))
            for portion_id in line.portion_ids:
                line_number += 1
                portion = portions[portion_id]
                transfer.items.append(TransferItem(
                    id=uuid.uuid4(),
                    line_number=line_number,
                    inventory_item_id=line.inventory_item_id,
                    inventory_batch_id=portion.inventory_batch_id,
                    inventory_batch_portion_id=portion.id,
                    quantity=Decimal("1"),
                    reception_status=TransferItemStatus.PENDING,
                ))
                moves.append((batches[portion.inventory_batch_id], portion, Decimal("1")))
        db.add(transfer)
        await db.flush()

        for batch, portion, amount in moves:
            if portion is not None:
                portion.transition_to(PortionStatus.IN_TRANSIT)
            batch.deduct(amount)
            write_log(
                db,
                batch_id=batch.id,
                portion_id=portion.id if portion is not None else None,
                transfer_id=transfer.id,
                action=LogAction.TRANSFER_INITIATED,
                actor_id=actor_id,
                details=_details(destination, -amount, batch, portion=portion, notes=data.notes),
            )

    logger.info("transfer %s initiated %s -> %s with %d line(s)", transfer.id, source.code, destination.code,
                len(moves))
    return transfer


async def _lock_pending(repo: LedgerRepository, transfer_id: UUID) -> Transfer:
    transfer = await repo.lock_transfer(transfer_id)
    if not transfer.is_pending:
        logger.warning("transfer %s is %s, refusing", transfer.id, transfer.status.value)
        raise InvalidStateError(f"Transfer is {transfer.status.value}, not pending", field="status")
    return transfer


async def _lock_line_rows(repo: LedgerRepository, lines: List[TransferItem]):
    batches = {b.id: b for b in await repo.lock_batches({ti.inventory_batch_id for ti in lines})}
    portions = {
        p.id: p
        for p in await repo.lock_portions([ti.inventory_batch_portion_id for ti in lines if ti.is_portion_line])
    }
    return batches, portions


def _return_to_source(
    db: AsyncSession,
    transfer: Transfer,
    line: TransferItem,
    batch: InventoryBatch,
    portion: Optional[InventoryBatchPortion],
    amount: Decimal,
    action: LogAction,
    counterpart: Branch,
    actor_id: Optional[UUID],
    notes: Optional[str] = None,
) -> None:
    if portion is not None:
        portion.transition_to(PortionStatus.UNUSED)
    raised_to = Decimal(batch.quantity_received) if batch.add_stock(amount) else None
    write_log(
        db,
        batch_id=batch.id,
        portion_id=portion.id if portion is not None else None,
        transfer_id=transfer.id,
        action=action,
        actor_id=actor_id,
        details=_details(
            counterpart, amount, batch, portion=portion,
            reception_status=line.reception_status.value, notes=notes,
            quantity_received_raised_to=raised_to,
        ),
    )


async def receive_transfer(
    db: AsyncSession, transfer_id: UUID, data: TransferReceive, actor_id: Optional[UUID]
) -> Transfer:
    repo = LedgerRepository(db)
    async with atomic(db):
        transfer = await _lock_pending(repo, transfer_id)
        source = await repo.get_branch(transfer.source_branch_id)
        destination = await repo.get_branch(transfer.destination_branch_id)
        lines = list(transfer.items)

        answers = {a.transfer_item_id: a for a in data.items}
        line_ids = {ti.id for ti in lines}
        if set(answers) != line_ids:
            missing = line_ids - set(answers)
            unknown = set(answers) - line_ids
            raise InvalidArgumentError(
                f"Every transfer item must be answered exactly once (missing {len(missing)}, unknown {len(unknown)})",
                field="items",
            )

        batches, portions = await _lock_line_rows(repo, lines)

        # source batch id -> accepted amount, in line order
        accepted_by_batch: Dict[UUID, Decimal] = {}
        for line in lines:
            answer = answers[line.id]
            batch = batches[line.inventory_batch_id]
            sent = Decimal(line.quantity)
            status = answer.reception_status
            line.reception_status = status
            line.reception_notes = answer.reception_notes

            if line.is_portion_line:
                portion = portions[line.inventory_batch_portion_id]
                if status == TransferItemStatus.REJECTED:
                    accepted = Decimal("0")
                    _return_to_source(db, transfer, line, batch, portion, sent, LogAction.TRANSFER_REJECTED,
                                      destination, actor_id, answer.reception_notes)
                else:
                    accepted = sent
                    portion.transition_to(PortionStatus.TRANSFERRED)
                    write_log(
                        db,
                        batch_id=batch.id,
                        portion_id=portion.id,
                        transfer_id=transfer.id,
                        action=LogAction.TRANSFER_RECEIVED,
                        actor_id=actor_id,
                        details=_details(destination, Decimal("0"), batch, portion=portion,
                                         reception_status=status.value, notes=answer.reception_notes),
                    )
            else:
                if status == TransferItemStatus.RECEIVED:
                    if answer.received_quantity is not None and answer.received_quantity != sent:
                        raise InvalidArgumentError(
                            f"Line {line.line_number}: received quantity differs from {sent}; "
                            "mark it received with issues",
                            field="items",
                        )
                    accepted = sent
                elif status == TransferItemStatus.RECEIVED_WITH_ISSUES:
                    if answer.received_quantity is None or answer.received_quantity > sent:
                        raise InvalidArgumentError(
                            f"Line {line.line_number}: received quantity must be between 0 and {sent}",
                            field="items",
                        )
                    accepted = answer.received_quantity
                    shortfall = sent - accepted
                    if shortfall > 0:
                        _return_to_source(db, transfer, line, batch, None, shortfall,
                                          LogAction.TRANSFER_DISCREPANCY, destination, actor_id,
                                          answer.reception_notes)
                else:
                    accepted = Decimal("0")
                    _return_to_source(db, transfer, line, batch, None, sent, LogAction.TRANSFER_REJECTED,
                                      destination, actor_id, answer.reception_notes)

            line.received_quantity = accepted
            if accepted > 0:
                accepted_by_batch[batch.id] = accepted_by_batch.get(batch.id, Decimal("0")) + accepted

        now = utcnow()
        for source_batch_id, amount in accepted_by_batch.items():
            source_batch = batches[source_batch_id]
            item = await repo.get_item(source_batch.inventory_item_id)
            number = await repo.next_batch_number(item.id, destination.id)
            new_batch = InventoryBatch(
                id=uuid.uuid4(),
                inventory_item_id=item.id,
                branch_id=destination.id,
                batch_number=number,
                quantity_received=amount,
                remaining_quantity=amount,
                unit_cost=source_batch.unit_cost,
                expiration_date=source_batch.expiration_date,
                received_at=now,
                source=f"Transfer from {source.name}",
                created_at=now,
            )
            db.add(new_batch)
            await ensure_branch_stocks_item(db, destination.id, item.id)
            await db.flush()
            if item.is_portion_tracked:
                await create_portions_for_batch(db, repo, new_batch, int(amount), item=item, branch=destination)
            write_log(
                db,
                batch_id=new_batch.id,
                transfer_id=transfer.id,
                action=LogAction.TRANSFER_RECEIVED,
                actor_id=actor_id,
                details=_details(source, amount, source_batch),
            )

        transfer.status = TransferStatus.COMPLETED
        transfer.receiving_user_id = actor_id
        transfer.received_at = now

    logger.info("transfer %s received at %s; %d batch(es) created", transfer.id, destination.code,
                len(accepted_by_batch))
    return transfer


async def _return_everything(
    db: AsyncSession,
    transfer_id: UUID,
    actor_id: Optional[UUID],
    *,
    action: LogAction,
    final_status: TransferStatus,
    reason: Optional[str] = None,
) -> Transfer:
    repo = LedgerRepository(db)
    async with atomic(db):
        transfer = await _lock_pending(repo, transfer_id)
        destination = await repo.get_branch(transfer.destination_branch_id)
        lines = list(transfer.items)
        batches, portions = await _lock_line_rows(repo, lines)

        for line in lines:
            if final_status == TransferStatus.REJECTED:
                line.reception_status = TransferItemStatus.REJECTED
            line.received_quantity = Decimal("0")
            portion = portions.get(line.inventory_batch_portion_id) if line.is_portion_line else None
            _return_to_source(db, transfer, line, batches[line.inventory_batch_id], portion,
                              Decimal(line.quantity), action, destination, actor_id, reason)

        if reason:
            note = f"Rejection reason: {reason}"
            transfer.notes = f"{transfer.notes}\n\n{note}" if transfer.notes else note
        transfer.status = final_status
        transfer.receiving_user_id = actor_id
        transfer.received_at = utcnow()

    logger.info("transfer %s %s; %d line(s) returned", transfer.id, final_status.value, len(lines))
    return transfer


async def cancel_transfer(db: AsyncSession, transfer_id: UUID, actor_id: Optional[UUID]) -> Transfer:
    return await _return_everything(
        db, transfer_id, actor_id, action=LogAction.TRANSFER_CANCELLED, final_status=TransferStatus.CANCELLED
    )


async def reject_transfer(db: AsyncSession, transfer_id: UUID, reason: str, actor_id: Optional[UUID]) -> Transfer:
    reason = (reason or "").strip()
    if not reason:
        raise InvalidArgumentError("A rejection reason is required", field="reason")
    return await _return_everything(
        db, transfer_id, actor_id,
        action=LogAction.TRANSFER_REJECTED, final_status=TransferStatus.REJECTED, reason=reason,
    )


async def get_transfer(db: AsyncSession, transfer_id: UUID) -> Transfer:
    transfer = await db.scalar(
        select(Transfer).where(Transfer.id == transfer_id).options(selectinload(Transfer.items))
    )
    if transfer is None:
        raise NotFoundError("Transfer", transfer_id)
    return transfer
