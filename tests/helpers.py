# tests/helpers.py
"""
Column-level reads for assertions.

A rolled-back session expires every loaded object, and touching an expired
attribute would lazy-load outside the async context, so assertions read
columns with explicit selects instead.
"""

from decimal import Decimal
from typing import List
from uuid import UUID

from sqlalchemy import func, select

from branchstock.db.enums import PortionStatus
from branchstock.db.inventory.batch import InventoryBatch
from branchstock.db.inventory.log import InventoryLog
from branchstock.db.inventory.portion import InventoryBatchPortion


async def remaining_of(session, batch_id: UUID) -> Decimal:
    return Decimal(await session.scalar(
        select(InventoryBatch.remaining_quantity).where(InventoryBatch.id == batch_id)
    ))


async def received_of(session, batch_id: UUID) -> Decimal:
    return Decimal(await session.scalar(
        select(InventoryBatch.quantity_received).where(InventoryBatch.id == batch_id)
    ))


async def portion_status(session, portion_id: UUID) -> PortionStatus:
    return await session.scalar(select(InventoryBatchPortion.status).where(InventoryBatchPortion.id == portion_id))


async def live_portions(session, batch_id: UUID) -> List[InventoryBatchPortion]:
    rows = await session.execute(
        select(InventoryBatchPortion)
        .where(InventoryBatchPortion.inventory_batch_id == batch_id, InventoryBatchPortion.deleted_at.is_(None))
        .order_by(InventoryBatchPortion.portion_number)
        .execution_options(populate_existing=True)
    )
    return list(rows.scalars().all())


async def unused_count(session, batch_id: UUID) -> int:
    return await session.scalar(
        select(func.count(InventoryBatchPortion.id)).where(
            InventoryBatchPortion.inventory_batch_id == batch_id,
            InventoryBatchPortion.status == PortionStatus.UNUSED,
            InventoryBatchPortion.deleted_at.is_(None),
        )
    )


async def log_actions(session, batch_id: UUID) -> List[str]:
    rows = await session.execute(
        select(InventoryLog.action)
        .where(InventoryLog.inventory_batch_id == batch_id)
        .order_by(InventoryLog.created_at, InventoryLog.id)
    )
    return list(rows.scalars().all())


async def log_count(session) -> int:
    return await session.scalar(select(func.count(InventoryLog.id)))


async def batches_of(session, item_id: UUID, branch_id: UUID) -> List[InventoryBatch]:
    rows = await session.execute(
        select(InventoryBatch)
        .where(InventoryBatch.inventory_item_id == item_id, InventoryBatch.branch_id == branch_id)
        .order_by(InventoryBatch.batch_number)
        .execution_options(populate_existing=True)
    )
    return list(rows.scalars().all())
