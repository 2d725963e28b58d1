from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.actor import current_actor_id
from ..db.database import get_async_session
from ..db.inventory.batch import InventoryBatch
from ..db.inventory.item import InventoryItem
from ..schemas.inventory import (
    BatchCountCorrection,
    InventoryBatchCreate,
    InventoryBatchOut,
    InventoryItemCreate,
    InventoryItemOut,
    InventoryItemUpdate,
    InventoryLogOut,
    LedgerCheckOut,
    PortionAdjustmentCreate,
    PortionOut,
    PortionRestore,
    QuantityAdjustmentCreate,
    QuantityRestore,
    StockLevelOut,
)
from ..services import inventory as inventory_service
from ..services.audit import batch_logs, verify_batch_ledger
from ..services.log_formatter import describe_log
from ..services.repository import LedgerRepository

router = APIRouter()


@router.post("/items", response_model=InventoryItemOut, status_code=status.HTTP_201_CREATED)
async def create_item(
    payload: InventoryItemCreate,
    db: AsyncSession = Depends(get_async_session),
    actor_id: UUID = Depends(current_actor_id),
):
    return await inventory_service.create_item(db, payload)


@router.patch("/items/{item_id}", response_model=InventoryItemOut)
async def update_item(
    item_id: UUID,
    payload: InventoryItemUpdate,
    db: AsyncSession = Depends(get_async_session),
    actor_id: UUID = Depends(current_actor_id),
):
    return await inventory_service.update_item(db, item_id, payload)


@router.post("/batches", response_model=InventoryBatchOut, status_code=status.HTTP_201_CREATED)
async def create_batch(
    payload: InventoryBatchCreate,
    db: AsyncSession = Depends(get_async_session),
    actor_id: UUID = Depends(current_actor_id),
):
    return await inventory_service.create_batch(db, payload, actor_id)


@router.delete("/batches/{batch_id}", response_model=InventoryBatchOut)
async def delete_batch(
    batch_id: UUID,
    reason: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    actor_id: UUID = Depends(current_actor_id),
):
    return await inventory_service.delete_batch(db, batch_id, actor_id, reason=(reason or "").strip() or None)


@router.post("/batches/{batch_id}/correction", response_model=InventoryLogOut)
async def correct_batch_quantity(
    batch_id: UUID,
    payload: BatchCountCorrection,
    db: AsyncSession = Depends(get_async_session),
    actor_id: UUID = Depends(current_actor_id),
):
    return await inventory_service.correct_batch_quantity(db, batch_id, payload, actor_id)


@router.get("/batches/{batch_id}/logs", response_model=List[Dict])
async def list_batch_logs(batch_id: UUID, db: AsyncSession = Depends(get_async_session)):
    batch = await LedgerRepository(db).get(InventoryBatch, batch_id, "Inventory batch")
    item = await db.get(InventoryItem, batch.inventory_item_id)
    out = []
    for log in await batch_logs(db, batch_id):
        out.append({
            "log": InventoryLogOut.model_validate(log).model_dump(mode="json"),
            "display": describe_log(log, item_name=item.name, unit=item.unit).model_dump(mode="json"),
        })
    return out


@router.get("/batches/{batch_id}/ledger", response_model=LedgerCheckOut)
async def check_batch_ledger(batch_id: UUID, db: AsyncSession = Depends(get_async_session)):
    return await verify_batch_ledger(db, batch_id)


@router.post("/adjustments/quantity", response_model=InventoryLogOut, status_code=status.HTTP_201_CREATED)
async def record_quantity_adjustment(
    payload: QuantityAdjustmentCreate,
    db: AsyncSession = Depends(get_async_session),
    actor_id: UUID = Depends(current_actor_id),
):
    return await inventory_service.record_quantity_adjustment(db, payload, actor_id)


@router.post("/adjustments/portions", response_model=List[InventoryLogOut], status_code=status.HTTP_201_CREATED)
async def record_portion_adjustment(
    payload: PortionAdjustmentCreate,
    db: AsyncSession = Depends(get_async_session),
    actor_id: UUID = Depends(current_actor_id),
):
    return await inventory_service.record_portion_adjustment(db, payload, actor_id)


@router.post("/restorations/portions", response_model=List[InventoryLogOut])
async def restore_portions(
    payload: PortionRestore,
    db: AsyncSession = Depends(get_async_session),
    actor_id: UUID = Depends(current_actor_id),
):
    return await inventory_service.restore_portions(db, payload, actor_id)


@router.post("/restorations/quantity", response_model=List[InventoryLogOut])
async def restore_quantity(
    payload: QuantityRestore,
    db: AsyncSession = Depends(get_async_session),
    actor_id: UUID = Depends(current_actor_id),
):
    return await inventory_service.restore_quantity(db, payload, actor_id)


@router.get("/branches/{branch_id}/batches", response_model=List[InventoryBatchOut])
async def list_batches(
    branch_id: UUID,
    item_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_async_session),
):
    return await inventory_service.list_batches(db, branch_id, item_id)


@router.get("/branches/{branch_id}/items/{item_id}/portions", response_model=List[PortionOut])
async def available_portions(branch_id: UUID, item_id: UUID, db: AsyncSession = Depends(get_async_session)):
    return await inventory_service.available_portions(db, item_id, branch_id)


@router.get("/branches/{branch_id}/stock", response_model=List[StockLevelOut])
async def stock_on_hand(branch_id: UUID, db: AsyncSession = Depends(get_async_session)):
    return await inventory_service.stock_on_hand(db, branch_id)


@router.get("/branches/{branch_id}/low-stock", response_model=List[StockLevelOut])
async def low_stock_items(branch_id: UUID, db: AsyncSession = Depends(get_async_session)):
    return await inventory_service.low_stock_items(db, branch_id)


@router.get("/branches/{branch_id}/expiring", response_model=List[InventoryBatchOut])
async def expiring_batches(branch_id: UUID, db: AsyncSession = Depends(get_async_session)):
    return await inventory_service.expiring_batches(db, branch_id)
