import uuid
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import InvalidArgumentError, NotFoundError
from ..core.logging import get_logger
from ..db.database import utcnow
from ..db.enums import NEGATIVE_ADJUSTMENT_ACTIONS, RESTORATION_ACTIONS, LogAction, PortionStatus
from ..db.inventory.batch import InventoryBatch
from ..db.inventory.item import InventoryItem
from ..db.inventory.log import InventoryLog
from ..db.inventory.portion import InventoryBatchPortion
from ..schemas.inventory import LedgerCheckOut
from ..schemas.log_details import LogDetails

logger = get_logger("audit")


def write_log(
    db: AsyncSession,
    *,
    batch_id: UUID,
    action: LogAction,
    details: LogDetails,
    actor_id: Optional[UUID],
    portion_id: Optional[UUID] = None,
    sale_id: Optional[UUID] = None,
    transfer_id: Optional[UUID] = None,
) -> InventoryLog:
    log = InventoryLog(
        id=uuid.uuid4(),
        inventory_batch_id=batch_id,
        batch_portion_id=portion_id,
        sale_id=sale_id,
        transfer_id=transfer_id,
        user_id=actor_id,
        action=action.value,
        details=details.model_dump(mode="json", exclude_none=True),
        created_at=utcnow(),
    )
    db.add(log)
    return log


def quantity_change_of(log: InventoryLog) -> Decimal:
    # Read straight from the payload so rows with unknown actions still count.
    raw = (log.details or {}).get("quantity_change", "0")
    return Decimal(str(raw))


async def batch_logs(db: AsyncSession, batch_id: UUID) -> List[InventoryLog]:
    rows = await db.execute(
        select(InventoryLog)
        .where(InventoryLog.inventory_batch_id == batch_id)
        .order_by(InventoryLog.created_at, InventoryLog.id)
    )
    return list(rows.scalars().all())


async def replay_remaining_quantity(db: AsyncSession, batch_id: UUID) -> Decimal:
    total = Decimal("0")
    for log in await batch_logs(db, batch_id):
        total += quantity_change_of(log)
    return total


async def verify_batch_ledger(db: AsyncSession, batch_id: UUID) -> LedgerCheckOut:
    batch = await db.get(InventoryBatch, batch_id)
    if batch is None:
        raise NotFoundError("Inventory batch", batch_id)
    item = await db.get(InventoryItem, batch.inventory_item_id)

    replayed = await replay_remaining_quantity(db, batch_id)
    remaining = Decimal(batch.remaining_quantity)
    unused = None
    consistent = replayed == remaining
    if item is not None and item.is_portion_tracked:
        unused = await db.scalar(
            select(func.count(InventoryBatchPortion.id)).where(
                InventoryBatchPortion.inventory_batch_id == batch_id,
                InventoryBatchPortion.status == PortionStatus.UNUSED,
                InventoryBatchPortion.deleted_at.is_(None),
            )
        )
        consistent = consistent and Decimal(unused) == remaining

    if not consistent:
        logger.warning(
            "ledger mismatch batch=%s stored=%s replayed=%s unused=%s", batch_id, remaining, replayed, unused
        )
    return LedgerCheckOut(
        batch_id=batch_id,
        remaining_quantity=remaining,
        replayed_quantity=replayed,
        unused_portions=unused,
        is_consistent=consistent,
    )


# ---- restoration bound -----------------------------------------------------

async def restored_so_far(db: AsyncSession, adjustment_log: InventoryLog) -> Decimal:
    """Sum of every restoration that points back at `adjustment_log`."""
    rows = await db.execute(
        select(InventoryLog).where(
            InventoryLog.inventory_batch_id == adjustment_log.inventory_batch_id,
            InventoryLog.action.in_([a.value for a in RESTORATION_ACTIONS]),
        )
    )
    wanted = str(adjustment_log.id)
    total = Decimal("0")
    for log in rows.scalars().all():
        if (log.details or {}).get("original_log_id") == wanted:
            total += quantity_change_of(log)
    return total


async def restorable_amount(db: AsyncSession, adjustment_log: InventoryLog) -> Decimal:
    if adjustment_log.action_kind not in NEGATIVE_ADJUSTMENT_ACTIONS:
        raise InvalidArgumentError(
            f"Log {adjustment_log.id} is not a stock-removing adjustment", field="restorations"
        )
    removed = abs(quantity_change_of(adjustment_log))
    left = removed - await restored_so_far(db, adjustment_log)
    return left if left > 0 else Decimal("0")


async def latest_adjustment_logs(db: AsyncSession, portion_ids: List[UUID]) -> Dict[UUID, InventoryLog]:
    """Most recent stock-removing adjustment log per portion."""
    if not portion_ids:
        return {}
    rows = await db.execute(
        select(InventoryLog)
        .where(
            InventoryLog.batch_portion_id.in_(portion_ids),
            InventoryLog.action.in_([a.value for a in NEGATIVE_ADJUSTMENT_ACTIONS]),
        )
        .order_by(InventoryLog.created_at.desc(), InventoryLog.id)
    )
    out: Dict[UUID, InventoryLog] = {}
    for log in rows.scalars().all():
        out.setdefault(log.batch_portion_id, log)
    return out
