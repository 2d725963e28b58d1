from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.actor import current_actor_id
from ..db.database import get_async_session
from ..schemas.sales import SaleCreate, SaleOut
from ..services import sales as sales_service

router = APIRouter()


@router.post("/", response_model=SaleOut, status_code=status.HTTP_201_CREATED)
async def create_sale(
    payload: SaleCreate,
    db: AsyncSession = Depends(get_async_session),
    actor_id: UUID = Depends(current_actor_id),
):
    return await sales_service.create_sale(db, payload, actor_id)


@router.get("/{sale_id}", response_model=SaleOut)
async def get_sale(sale_id: UUID, db: AsyncSession = Depends(get_async_session)):
    return await sales_service.get_sale(db, sale_id)
