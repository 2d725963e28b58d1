from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator

from ..db.enums import SaleStatus


class SaleLineCreate(BaseModel):
    product_id: UUID
    quantity: int

    @field_validator("quantity")
    @classmethod
    def _quantity_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("quantity must be > 0")
        return v


class SaleCreate(BaseModel):
    branch_id: UUID
    items: List[SaleLineCreate]
    notes: Optional[str] = None

    @field_validator("items")
    @classmethod
    def _non_empty(cls, v: List[SaleLineCreate]) -> List[SaleLineCreate]:
        if not v:
            raise ValueError("a sale needs at least one line")
        return v

    @field_validator("notes")
    @classmethod
    def _strip_notes(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class SaleItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    quantity: int
    price_at_sale: Decimal


class SaleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    branch_id: UUID
    user_id: Optional[UUID] = None
    status: SaleStatus
    total_amount: Decimal
    notes: Optional[str] = None
    created_at: datetime
    items: List[SaleItemOut]
