from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.actor import current_actor_id
from ..db.database import get_async_session
from ..schemas.transfers import TransferCreate, TransferOut, TransferReceive, TransferReject
from ..services import transfers as transfer_service

router = APIRouter()


@router.post("/", response_model=TransferOut, status_code=status.HTTP_201_CREATED)
async def initiate_transfer(
    payload: TransferCreate,
    db: AsyncSession = Depends(get_async_session),
    actor_id: UUID = Depends(current_actor_id),
):
    return await transfer_service.initiate_transfer(db, payload, actor_id)


@router.get("/{transfer_id}", response_model=TransferOut)
async def get_transfer(transfer_id: UUID, db: AsyncSession = Depends(get_async_session)):
    return await transfer_service.get_transfer(db, transfer_id)


@router.post("/{transfer_id}/receive", response_model=TransferOut)
async def receive_transfer(
    transfer_id: UUID,
    payload: TransferReceive,
    db: AsyncSession = Depends(get_async_session),
    actor_id: UUID = Depends(current_actor_id),
):
    return await transfer_service.receive_transfer(db, transfer_id, payload, actor_id)


@router.post("/{transfer_id}/cancel", response_model=TransferOut)
async def cancel_transfer(
    transfer_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    actor_id: UUID = Depends(current_actor_id),
):
    return await transfer_service.cancel_transfer(db, transfer_id, actor_id)


@router.post("/{transfer_id}/reject", response_model=TransferOut)
async def reject_transfer(
    transfer_id: UUID,
    payload: TransferReject,
    db: AsyncSession = Depends(get_async_session),
    actor_id: UUID = Depends(current_actor_id),
):
    return await transfer_service.reject_transfer(db, transfer_id, payload.reason, actor_id)
