"""
Locked reads and the transaction boundary shared by every ledger writer.

Every lock is taken with ``populate_existing`` so the row read under the lock
replaces whatever the session already held for it. Multi-row locks are taken
in primary-key order so concurrent writers acquire them in the same sequence.
"""

from contextlib import asynccontextmanager
from typing import Iterable, List, Optional, Sequence, Type, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.errors import ConcurrencyConflictError, InvalidStateError, NotFoundError
from ..db.branch import Branch
from ..db.enums import PortionStatus
from ..db.inventory.batch import InventoryBatch
from ..db.inventory.item import InventoryItem
from ..db.inventory.portion import InventoryBatchPortion
from ..db.transfer import Transfer, TransferItem

T = TypeVar("T")

# Postgres names the constraint; SQLite lists the columns.
BATCH_NUMBER_CLASH = ("ux_inventory_batch_number", "inventory_batches.batch_number")


@asynccontextmanager
async def atomic(db: AsyncSession):
    """Commit when the block finishes, roll back and re-raise when it fails."""
    try:
        yield db
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        if any(marker in str(exc.orig) for marker in BATCH_NUMBER_CLASH):
            # A concurrent first receipt took the same batch number.
            raise ConcurrencyConflictError("Another receipt numbered this batch first; retry") from exc
        raise
    except Exception:
        await db.rollback()
        raise


class LedgerRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, model: Type[T], entity_id: UUID, entity: Optional[str] = None) -> T:
        obj = await self.db.get(model, entity_id)
        if obj is None:
            raise NotFoundError(entity or model.__name__, entity_id)
        return obj

    async def get_item(self, item_id: UUID) -> InventoryItem:
        return await self.get(InventoryItem, item_id, "Inventory item")

    async def get_branch(self, branch_id: UUID) -> Branch:
        return await self.get(Branch, branch_id, "Branch")

    async def get_active_branch(self, branch_id: UUID) -> Branch:
        branch = await self.get_branch(branch_id)
        if not branch.is_active:
            raise InvalidStateError(f"Branch {branch.name} is archived", field="branch_id")
        return branch

    async def _locked(self, stmt) -> list:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return list((await self.db.execute(stmt)).scalars().all())

    # ---- batches -------------------------------------------------------

    async def lock_batch(self, batch_id: UUID) -> InventoryBatch:
        rows = await self._locked(
            select(InventoryBatch).where(
                InventoryBatch.id == batch_id,
                InventoryBatch.deleted_at.is_(None),
            )
        )
        if not rows:
            raise NotFoundError("Inventory batch", batch_id)
        return rows[0]

    async def lock_batches(self, batch_ids: Iterable[UUID]) -> List[InventoryBatch]:
        ids = sorted(set(batch_ids))
        if not ids:
            return []
        rows = await self._locked(
            select(InventoryBatch)
            .where(InventoryBatch.id.in_(ids), InventoryBatch.deleted_at.is_(None))
            .order_by(InventoryBatch.id)
        )
        found = {b.id for b in rows}
        for batch_id in ids:
            if batch_id not in found:
                raise NotFoundError("Inventory batch", batch_id)
        return rows

    async def lock_allocatable_batches(self, item_id: UUID, branch_id: UUID) -> List[InventoryBatch]:
        """Batches of an item at a branch that still hold stock."""
        return await self._locked(
            select(InventoryBatch)
            .where(
                InventoryBatch.inventory_item_id == item_id,
                InventoryBatch.branch_id == branch_id,
                InventoryBatch.remaining_quantity > 0,
                InventoryBatch.deleted_at.is_(None),
            )
            .order_by(InventoryBatch.id)
        )

    async def next_batch_number(self, item_id: UUID, branch_id: UUID) -> int:
        # Lock the newest batch of the pair so two receipts cannot pick the same number.
        latest = await self._locked(
            select(InventoryBatch)
            .where(
                InventoryBatch.inventory_item_id == item_id,
                InventoryBatch.branch_id == branch_id,
            )
            .order_by(InventoryBatch.batch_number.desc())
            .limit(1)
        )
        return (latest[0].batch_number + 1) if latest else 1

    # ---- portions ------------------------------------------------------

    async def lock_portions(self, portion_ids: Iterable[UUID]) -> List[InventoryBatchPortion]:
        ids = sorted(set(portion_ids))
        if not ids:
            return []
        rows = await self._locked(
            select(InventoryBatchPortion)
            .where(InventoryBatchPortion.id.in_(ids), InventoryBatchPortion.deleted_at.is_(None))
            .order_by(InventoryBatchPortion.id)
        )
        found = {p.id for p in rows}
        for portion_id in ids:
            if portion_id not in found:
                raise NotFoundError("Portion", portion_id)
        return rows

    async def lock_unused_portions(self, batch_ids: Sequence[UUID]) -> List[InventoryBatchPortion]:
        if not batch_ids:
            return []
        return await self._locked(
            select(InventoryBatchPortion)
            .where(
                InventoryBatchPortion.inventory_batch_id.in_(list(batch_ids)),
                InventoryBatchPortion.status == PortionStatus.UNUSED,
                InventoryBatchPortion.deleted_at.is_(None),
            )
            .order_by(InventoryBatchPortion.inventory_batch_id, InventoryBatchPortion.portion_number)
        )

    async def next_portion_number(self, batch_id: UUID) -> int:
        # Deleted portions keep their numbers; numbering never reuses them.
        current = await self.db.scalar(
            select(func.max(InventoryBatchPortion.portion_number)).where(
                InventoryBatchPortion.inventory_batch_id == batch_id
            )
        )
        return (current or 0) + 1

    # ---- transfers -----------------------------------------------------

    async def lock_transfer(self, transfer_id: UUID) -> Transfer:
        rows = await self._locked(
            select(Transfer).where(Transfer.id == transfer_id).options(selectinload(Transfer.items))
        )
        if not rows:
            raise NotFoundError("Transfer", transfer_id)
        return rows[0]

    async def transfer_items(self, transfer_id: UUID) -> List[TransferItem]:
        rows = await self.db.execute(
            select(TransferItem)
            .where(TransferItem.transfer_id == transfer_id)
            .order_by(TransferItem.line_number)
        )
        return list(rows.scalars().all())
