"""
Inventory ledger writers: items, batch receipt, adjustments, count
corrections, restorations and soft deletion, plus the read helpers the
dashboards use.

Every writer runs inside `atomic(db)` and locks the batches it touches before
looking at their quantities.
"""

import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import (
    InsufficientStockError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    StockShortage,
)
from ..core.logging import get_logger
from ..db.branch import Branch, BranchInventoryItem
from ..db.database import utcnow
from ..db.enums import LogAction, PortionStatus, TransferStatus
from ..db.inventory.batch import InventoryBatch
from ..db.inventory.item import InventoryItem
from ..db.inventory.log import InventoryLog
from ..db.inventory.portion import InventoryBatchPortion
from ..db.transfer import Transfer, TransferItem
from ..schemas.inventory import (
    BatchCountCorrection,
    InventoryBatchCreate,
    InventoryItemCreate,
    InventoryItemUpdate,
    PortionAdjustmentCreate,
    PortionRestore,
    QuantityAdjustmentCreate,
    QuantityRestore,
    StockLevelOut,
)
from ..schemas.log_details import (
    AdjustmentDetails,
    BatchCreatedDetails,
    BatchDeletedDetails,
    CorrectionDetails,
    RestorationDetails,
)
from .allocation import fefo_sort_key, BatchSnapshot
from .audit import latest_adjustment_logs, restorable_amount, write_log
from .repository import LedgerRepository, atomic

logger = get_logger("inventory")


def portion_label(item: InventoryItem, branch: Branch, batch_number: int, portion_number: int) -> str:
    return f"{item.code}-{branch.code}-B{batch_number}-{portion_number:02d}"


def _require_whole(quantity: Decimal, field: str) -> int:
    if quantity != quantity.to_integral_value():
        raise InvalidArgumentError(f"Portion-tracked quantities must be whole numbers, got {quantity}", field=field)
    return int(quantity)


async def create_portions_for_batch(
    db: AsyncSession,
    repo: LedgerRepository,
    batch: InventoryBatch,
    count: int,
    *,
    item: InventoryItem,
    branch: Branch,
) -> List[InventoryBatchPortion]:
    """Add `count` UNUSED portions numbered after the batch's highest portion."""
    start = await repo.next_portion_number(batch.id)
    portions = []
    for number in range(start, start + count):
        portion = InventoryBatchPortion(
            id=uuid.uuid4(),
            inventory_batch_id=batch.id,
            portion_number=number,
            label=portion_label(item, branch, batch.batch_number, number),
            status=PortionStatus.UNUSED,
        )
        db.add(portion)
        portions.append(portion)
    await db.flush()
    return portions


async def ensure_branch_stocks_item(db: AsyncSession, branch_id: UUID, item_id: UUID) -> None:
    link = await db.scalar(
        select(BranchInventoryItem).where(
            BranchInventoryItem.branch_id == branch_id,
            BranchInventoryItem.inventory_item_id == item_id,
        )
    )
    if link is None:
        db.add(BranchInventoryItem(id=uuid.uuid4(), branch_id=branch_id, inventory_item_id=item_id,
                                   low_stock_threshold=Decimal("0")))


# ---- items ---------------------------------------------------------------

async def create_item(db: AsyncSession, data: InventoryItemCreate) -> InventoryItem:
    repo = LedgerRepository(db)
    async with atomic(db):
        existing = await db.scalar(select(InventoryItem.id).where(InventoryItem.code == data.code))
        if existing is not None:
            raise InvalidArgumentError(f"Item code {data.code} is already in use", field="code")

        item = InventoryItem(
            id=uuid.uuid4(),
            name=data.name,
            code=data.code,
            unit=data.unit,
            description=data.description,
            tracking_type=data.tracking_type,
            days_to_warn_before_expiry=data.days_to_warn_before_expiry,
        )
        db.add(item)
        await db.flush()
        for stocking in data.branches:
            await repo.get_branch(stocking.branch_id)
            if stocking.is_stocked:
                db.add(BranchInventoryItem(
                    id=uuid.uuid4(),
                    branch_id=stocking.branch_id,
                    inventory_item_id=item.id,
                    low_stock_threshold=stocking.low_stock_threshold,
                ))

    logger.info("created item %s (%s, %s)", item.code, item.id, item.tracking_type.value)
    return item


async def update_item(db: AsyncSession, item_id: UUID, data: InventoryItemUpdate) -> InventoryItem:
    repo = LedgerRepository(db)
    async with atomic(db):
        item = await repo.get_item(item_id)
        patch = data.model_dump(exclude_unset=True, exclude={"branches"})

        new_tracking = patch.get("tracking_type")
        if new_tracking is not None and new_tracking != item.tracking_type:
            has_batches = await db.scalar(
                select(func.count(InventoryBatch.id)).where(InventoryBatch.inventory_item_id == item.id)
            )
            if has_batches:
                raise InvalidStateError(
                    f"Tracking type of {item.name} cannot change once batches exist", field="tracking_type"
                )

        for key, value in patch.items():
            if key in ("name", "unit", "tracking_type") and value is None:
                continue
            setattr(item, key, value)

        if data.branches is not None:
            rows = await db.execute(
                select(BranchInventoryItem).where(BranchInventoryItem.inventory_item_id == item.id)
            )
            links = {link.branch_id: link for link in rows.scalars().all()}
            for stocking in data.branches:
                await repo.get_branch(stocking.branch_id)
                link = links.get(stocking.branch_id)
                if stocking.is_stocked:
                    if link is None:
                        db.add(BranchInventoryItem(
                            id=uuid.uuid4(),
                            branch_id=stocking.branch_id,
                            inventory_item_id=item.id,
                            low_stock_threshold=stocking.low_stock_threshold,
                        ))
                    else:
                        link.low_stock_threshold = stocking.low_stock_threshold
                elif link is not None:
                    await db.delete(link)

    logger.info("updated item %s", item.id)
    return item


# ---- batches -------------------------------------------------------------

async def create_batch(db: AsyncSession, data: InventoryBatchCreate, actor_id: Optional[UUID]) -> InventoryBatch:
    repo = LedgerRepository(db)
    async with atomic(db):
        item = await repo.get_item(data.inventory_item_id)
        branch = await repo.get_active_branch(data.branch_id)
        portion_count = None
        if item.is_portion_tracked:
            portion_count = _require_whole(data.quantity_received, "quantity_received")

        number = await repo.next_batch_number(item.id, branch.id)
        now = utcnow()
        batch = InventoryBatch(
            id=uuid.uuid4(),
            inventory_item_id=item.id,
            branch_id=branch.id,
            batch_number=number,
            quantity_received=data.quantity_received,
            remaining_quantity=data.quantity_received,
            unit_cost=data.unit_cost,
            expiration_date=data.expiration_date,
            received_at=data.received_at or now,
            source=data.source,
            created_at=now,
        )
        db.add(batch)
        await ensure_branch_stocks_item(db, branch.id, item.id)
        await db.flush()

        if portion_count:
            await create_portions_for_batch(db, repo, batch, portion_count, item=item, branch=branch)

        write_log(
            db,
            batch_id=batch.id,
            action=LogAction.BATCH_CREATED,
            actor_id=actor_id,
            details=BatchCreatedDetails(
                quantity_change=data.quantity_received,
                quantity_received=data.quantity_received,
                unit=item.unit,
                portions_created=portion_count,
                source=data.source,
            ),
        )

    logger.info("received batch %s #%s of %s at %s qty=%s", batch.id, number, item.code, branch.code,
                data.quantity_received)
    return batch


async def delete_batch(
    db: AsyncSession, batch_id: UUID, actor_id: Optional[UUID], reason: Optional[str] = None
) -> InventoryBatch:
    """Soft-delete an exhausted batch and its portions."""
    repo = LedgerRepository(db)
    async with atomic(db):
        batch = await repo.lock_batch(batch_id)
        if Decimal(batch.remaining_quantity) > 0:
            raise InvalidStateError(
                f"Batch #{batch.batch_number} still holds {batch.remaining_quantity}; adjust it to zero first"
            )
        in_transit = await db.scalar(
            select(func.count(TransferItem.id))
            .join(Transfer, Transfer.id == TransferItem.transfer_id)
            .where(TransferItem.inventory_batch_id == batch.id, Transfer.status == TransferStatus.PENDING)
        )
        if in_transit:
            raise InvalidStateError(f"Batch #{batch.batch_number} has stock in a pending transfer")

        now = utcnow()
        rows = await db.execute(
            select(InventoryBatchPortion).where(
                InventoryBatchPortion.inventory_batch_id == batch.id,
                InventoryBatchPortion.deleted_at.is_(None),
            )
        )
        portions = list(rows.scalars().all())
        for portion in portions:
            portion.deleted_at = now
        batch.deleted_at = now

        write_log(
            db,
            batch_id=batch.id,
            action=LogAction.BATCH_DELETED,
            actor_id=actor_id,
            details=BatchDeletedDetails(quantity_change=Decimal("0"), reason=reason, portions_deleted=len(portions)),
        )

    logger.info("deleted batch %s", batch.id)
    return batch


# ---- adjustments ---------------------------------------------------------

async def record_quantity_adjustment(
    db: AsyncSession, data: QuantityAdjustmentCreate, actor_id: Optional[UUID]
) -> InventoryLog:
    repo = LedgerRepository(db)
    async with atomic(db):
        batch = await repo.lock_batch(data.inventory_batch_id)
        item = await repo.get_item(batch.inventory_item_id)
        if item.is_portion_tracked:
            raise InvalidArgumentError(
                f"{item.name} is tracked by portion; adjust individual portions instead", field="inventory_batch_id"
            )

        before = Decimal(batch.remaining_quantity)
        raised_to = None
        if data.type.is_positive:
            if batch.add_stock(data.quantity):
                raised_to = Decimal(batch.quantity_received)
            change = data.quantity
        else:
            if data.quantity > before:
                raise InsufficientStockError([
                    StockShortage(item_id=item.id, item_name=item.name, required=data.quantity, available=before)
                ])
            batch.deduct(data.quantity)
            change = -data.quantity

        log = write_log(
            db,
            batch_id=batch.id,
            action=data.type.to_log_action(),
            actor_id=actor_id,
            details=AdjustmentDetails(
                quantity_change=change,
                adjustment_type=data.type.value,
                direction="increase" if data.type.is_positive else "decrease",
                original_quantity=before,
                new_quantity=Decimal(batch.remaining_quantity),
                unit=item.unit,
                reason=data.effective_reason,
                quantity_received_raised_to=raised_to,
            ),
        )

    logger.info("adjusted batch %s by %s (%s)", batch.id, change, data.type.value)
    return log


async def _lock_portions_with_batches(repo: LedgerRepository, portion_ids: List[UUID]):
    """Lock batches before their portions, the same order allocation uses."""
    rows = await repo.db.execute(
        select(InventoryBatchPortion.id, InventoryBatchPortion.inventory_batch_id).where(
            InventoryBatchPortion.id.in_(portion_ids)
        )
    )
    batch_ids = {row.inventory_batch_id for row in rows}
    batches = {b.id: b for b in await repo.lock_batches(batch_ids)}
    portions = await repo.lock_portions(portion_ids)
    for portion in portions:
        if portion.inventory_batch_id not in batches:
            raise NotFoundError("Inventory batch", portion.inventory_batch_id)
    return batches, portions


async def record_portion_adjustment(
    db: AsyncSession, data: PortionAdjustmentCreate, actor_id: Optional[UUID]
) -> List[InventoryLog]:
    repo = LedgerRepository(db)
    logs: List[InventoryLog] = []
    async with atomic(db):
        if data.type.is_positive:
            batch = await repo.lock_batch(data.inventory_batch_id)
            item = await repo.get_item(batch.inventory_item_id)
            if not item.is_portion_tracked:
                raise InvalidArgumentError(f"{item.name} is tracked by measure", field="inventory_batch_id")
            branch = await repo.get_branch(batch.branch_id)

            before = Decimal(batch.remaining_quantity)
            await create_portions_for_batch(db, repo, batch, data.quantity, item=item, branch=branch)
            raised_to = Decimal(batch.quantity_received) if batch.add_stock(Decimal(data.quantity)) else None
            logs.append(write_log(
                db,
                batch_id=batch.id,
                action=data.type.to_log_action(),
                actor_id=actor_id,
                details=AdjustmentDetails(
                    quantity_change=Decimal(data.quantity),
                    adjustment_type=data.type.value,
                    direction="increase",
                    original_quantity=before,
                    new_quantity=Decimal(batch.remaining_quantity),
                    unit=item.unit,
                    reason=data.effective_reason,
                    portions_created=data.quantity,
                    quantity_received_raised_to=raised_to,
                ),
            ))
        else:
            batches, portions = await _lock_portions_with_batches(repo, data.portion_ids)
            target = data.type.to_portion_status()
            items: Dict[UUID, InventoryItem] = {}
            for portion in portions:
                batch = batches[portion.inventory_batch_id]
                if batch.inventory_item_id not in items:
                    items[batch.inventory_item_id] = await repo.get_item(batch.inventory_item_id)
                item = items[batch.inventory_item_id]
                if not item.is_portion_tracked:
                    raise InvalidArgumentError(f"{item.name} is tracked by measure", field="portion_ids")
                if portion.status != PortionStatus.UNUSED:
                    raise InvalidArgumentError(
                        f"Portion {portion.label} is {portion.status.value}; only unused portions can be adjusted",
                        field="portion_ids",
                    )

                before = Decimal(batch.remaining_quantity)
                previous = portion.transition_to(target)
                batch.deduct(Decimal("1"))
                logs.append(write_log(
                    db,
                    batch_id=batch.id,
                    portion_id=portion.id,
                    action=data.type.to_log_action(),
                    actor_id=actor_id,
                    details=AdjustmentDetails(
                        quantity_change=Decimal("-1"),
                        adjustment_type=data.type.value,
                        direction="decrease",
                        original_quantity=before,
                        new_quantity=Decimal(batch.remaining_quantity),
                        unit=item.unit,
                        reason=data.effective_reason,
                        portion_label=portion.label,
                        previous_status=previous.value,
                        new_status=target.value,
                    ),
                ))

    logger.info("portion adjustment %s wrote %d log(s)", data.type.value, len(logs))
    return logs


# ---- corrections ---------------------------------------------------------

async def correct_batch_quantity(
    db: AsyncSession, batch_id: UUID, data: BatchCountCorrection, actor_id: Optional[UUID]
) -> InventoryLog:
    """
    Fix a mistyped received count.

    The difference is applied to remaining_quantity (never below zero). For
    portion-tracked batches an increase adds UNUSED portions with the next
    numbers and a decrease soft-deletes the highest-numbered UNUSED ones.
    """
    repo = LedgerRepository(db)
    async with atomic(db):
        batch = await repo.lock_batch(batch_id)
        item = await repo.get_item(batch.inventory_item_id)
        if item.is_portion_tracked:
            _require_whole(data.corrected_quantity, "corrected_quantity")

        old_received = Decimal(batch.quantity_received)
        remaining_before = Decimal(batch.remaining_quantity)
        difference = data.corrected_quantity - old_received
        if difference == 0:
            raise InvalidArgumentError("Corrected quantity equals the current count", field="corrected_quantity")

        created = removed = 0
        if item.is_portion_tracked and difference < 0:
            to_remove = int(-difference)
            unused = await repo.lock_unused_portions([batch.id])
            if len(unused) < to_remove:
                raise InvalidArgumentError(
                    f"Cannot decrease quantity by {to_remove}. Only {len(unused)} unused portions available.",
                    field="corrected_quantity",
                )
            now = utcnow()
            for portion in sorted(unused, key=lambda p: p.portion_number, reverse=True)[:to_remove]:
                portion.deleted_at = now
            removed = to_remove
            batch.remaining_quantity = remaining_before - to_remove
        elif difference < 0:
            batch.remaining_quantity = max(Decimal("0"), remaining_before + difference)
        else:
            batch.remaining_quantity = remaining_before + difference
            if item.is_portion_tracked:
                branch = await repo.get_branch(batch.branch_id)
                created = int(difference)
                await create_portions_for_batch(db, repo, batch, created, item=item, branch=branch)
        batch.quantity_received = data.corrected_quantity

        remaining_after = Decimal(batch.remaining_quantity)
        log = write_log(
            db,
            batch_id=batch.id,
            action=LogAction.BATCH_COUNT_CORRECTED,
            actor_id=actor_id,
            details=CorrectionDetails(
                quantity_change=remaining_after - remaining_before,
                old_quantity_received=old_received,
                new_quantity_received=data.corrected_quantity,
                difference=difference,
                remaining_before=remaining_before,
                remaining_after=remaining_after,
                reason=data.reason,
                portions_created=created,
                portions_removed=removed,
            ),
        )

    logger.info("corrected batch %s count %s -> %s", batch.id, old_received, data.corrected_quantity)
    return log


# ---- restorations --------------------------------------------------------

async def restore_portions(db: AsyncSession, data: PortionRestore, actor_id: Optional[UUID]) -> List[InventoryLog]:
    repo = LedgerRepository(db)
    logs: List[InventoryLog] = []
    async with atomic(db):
        batches, portions = await _lock_portions_with_batches(repo, data.portion_ids)
        originals = await latest_adjustment_logs(db, [p.id for p in portions])

        for portion in portions:
            if not portion.status.is_adjusted:
                raise InvalidStateError(
                    f"Portion {portion.label} is {portion.status.value}; only adjusted portions can be restored",
                    field="portion_ids",
                )
            original = originals.get(portion.id)
            if original is None:
                raise InvalidStateError(f"No adjustment found for portion {portion.label}", field="portion_ids")
            if await restorable_amount(db, original) < 1:
                raise InvalidStateError(f"Portion {portion.label} was already restored", field="portion_ids")

            batch = batches[portion.inventory_batch_id]
            previous = portion.transition_to(PortionStatus.UNUSED)
            raised_to = Decimal(batch.quantity_received) if batch.add_stock(Decimal("1")) else None
            logs.append(write_log(
                db,
                batch_id=batch.id,
                portion_id=portion.id,
                action=LogAction.PORTION_RESTORED,
                actor_id=actor_id,
                details=RestorationDetails(
                    quantity_change=Decimal("1"),
                    reason=data.reason,
                    original_log_id=original.id,
                    original_action=original.action,
                    original_reason=(original.details or {}).get("reason"),
                    portion_label=portion.label,
                    previous_status=previous.value,
                    quantity_received_raised_to=raised_to,
                ),
            ))

    logger.info("restored %d portion(s)", len(logs))
    return logs


async def restore_quantity(db: AsyncSession, data: QuantityRestore, actor_id: Optional[UUID]) -> List[InventoryLog]:
    """Put back part or all of earlier measured removals, keyed by their adjustment log."""
    repo = LedgerRepository(db)
    logs: List[InventoryLog] = []
    async with atomic(db):
        originals: Dict[UUID, InventoryLog] = {}
        for log_id in sorted(data.restorations):
            original = await db.get(InventoryLog, log_id)
            if original is None:
                raise NotFoundError("Inventory log", log_id)
            if original.batch_portion_id is not None:
                raise InvalidArgumentError(
                    f"Log {log_id} adjusted a portion; restore the portion instead", field="restorations"
                )
            originals[log_id] = original

        batches = {b.id: b for b in await repo.lock_batches({o.inventory_batch_id for o in originals.values()})}

        for log_id, original in originals.items():
            amount = data.restorations[log_id]
            available = await restorable_amount(db, original)
            if amount > available:
                raise InvalidArgumentError(
                    f"Only {available} of adjustment {log_id} can still be restored, asked for {amount}",
                    field="restorations",
                )

        for log_id, original in originals.items():
            amount = data.restorations[log_id]
            batch = batches[original.inventory_batch_id]
            raised_to = Decimal(batch.quantity_received) if batch.add_stock(amount) else None
            logs.append(write_log(
                db,
                batch_id=batch.id,
                action=LogAction.QUANTITY_RESTORED,
                actor_id=actor_id,
                details=RestorationDetails(
                    quantity_change=amount,
                    reason=data.reason,
                    original_log_id=original.id,
                    original_action=original.action,
                    original_reason=(original.details or {}).get("reason"),
                    quantity_received_raised_to=raised_to,
                ),
            ))

    logger.info("restored quantity from %d adjustment(s)", len(logs))
    return logs


# ---- reads ---------------------------------------------------------------

async def list_batches(db: AsyncSession, branch_id: UUID, item_id: Optional[UUID] = None) -> List[InventoryBatch]:
    stmt = select(InventoryBatch).where(
        InventoryBatch.branch_id == branch_id,
        InventoryBatch.deleted_at.is_(None),
    )
    if item_id is not None:
        stmt = stmt.where(InventoryBatch.inventory_item_id == item_id)
    rows = await db.execute(stmt.order_by(InventoryBatch.inventory_item_id, InventoryBatch.batch_number))
    return list(rows.scalars().all())


async def available_portions(db: AsyncSession, item_id: UUID, branch_id: UUID) -> List[InventoryBatchPortion]:
    """UNUSED portions of an item at a branch, in the order a sale would take them."""
    batches = [b for b in await list_batches(db, branch_id, item_id) if Decimal(b.remaining_quantity) > 0]
    if not batches:
        return []
    snapshots = {
        b.id: BatchSnapshot(
            batch_id=b.id,
            batch_number=b.batch_number,
            remaining=Decimal(b.remaining_quantity),
            expiration_date=b.expiration_date,
            created_at=b.created_at,
        )
        for b in batches
    }
    rows = await db.execute(
        select(InventoryBatchPortion).where(
            InventoryBatchPortion.inventory_batch_id.in_(list(snapshots)),
            InventoryBatchPortion.status == PortionStatus.UNUSED,
            InventoryBatchPortion.deleted_at.is_(None),
        )
    )
    return sorted(
        rows.scalars().all(),
        key=lambda p: (fefo_sort_key(snapshots[p.inventory_batch_id]), p.portion_number),
    )


async def stock_on_hand(db: AsyncSession, branch_id: UUID) -> List[StockLevelOut]:
    totals = (
        select(
            InventoryBatch.inventory_item_id.label("item_id"),
            func.sum(InventoryBatch.remaining_quantity).label("on_hand"),
        )
        .where(InventoryBatch.branch_id == branch_id, InventoryBatch.deleted_at.is_(None))
        .group_by(InventoryBatch.inventory_item_id)
        .subquery()
    )
    rows = await db.execute(
        select(InventoryItem, BranchInventoryItem.low_stock_threshold, totals.c.on_hand)
        .join(BranchInventoryItem, BranchInventoryItem.inventory_item_id == InventoryItem.id)
        .outerjoin(totals, totals.c.item_id == InventoryItem.id)
        .where(BranchInventoryItem.branch_id == branch_id)
        .order_by(InventoryItem.name)
    )
    return [
        StockLevelOut(
            inventory_item_id=item.id,
            name=item.name,
            unit=item.unit,
            on_hand=Decimal(on_hand or 0),
            low_stock_threshold=Decimal(threshold or 0),
        )
        for item, threshold, on_hand in rows.all()
    ]


async def low_stock_items(db: AsyncSession, branch_id: UUID) -> List[StockLevelOut]:
    return [
        level for level in await stock_on_hand(db, branch_id)
        if level.low_stock_threshold > 0 and level.on_hand <= level.low_stock_threshold
    ]


async def expiring_batches(
    db: AsyncSession, branch_id: UUID, today: Optional[date] = None
) -> List[InventoryBatch]:
    """Batches with stock whose expiry falls inside the item's warning window (or has passed)."""
    today = today or utcnow().date()
    rows = await db.execute(
        select(InventoryBatch, InventoryItem.days_to_warn_before_expiry)
        .join(InventoryItem, InventoryItem.id == InventoryBatch.inventory_item_id)
        .where(
            InventoryBatch.branch_id == branch_id,
            InventoryBatch.deleted_at.is_(None),
            InventoryBatch.remaining_quantity > 0,
            InventoryBatch.expiration_date.is_not(None),
        )
        .order_by(InventoryBatch.expiration_date, InventoryBatch.batch_number)
    )
    return [
        batch for batch, warn_days in rows.all()
        if batch.expiration_date <= today + timedelta(days=warn_days or 0)
    ]
