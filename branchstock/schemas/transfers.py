from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..db.enums import TransferItemStatus, TransferStatus
from .inventory import check_quantity_scale


class TransferBatchLine(BaseModel):
    batch_id: UUID
    quantity: Decimal

    @field_validator("quantity")
    @classmethod
    def _quantity_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("quantity must be > 0")
        return check_quantity_scale(v, "quantity")


class TransferLineCreate(BaseModel):
    """One item to send: measured batches with amounts, or a set of portions."""
    inventory_item_id: UUID
    batches: List[TransferBatchLine] = Field(default_factory=list)
    portion_ids: List[UUID] = Field(default_factory=list)

    @model_validator(mode="after")
    def _exactly_one_shape(self):
        if bool(self.batches) == bool(self.portion_ids):
            raise ValueError("give either batches or portion_ids for each item")
        if len(set(self.portion_ids)) != len(self.portion_ids):
            raise ValueError("portion_ids must not repeat")
        batch_ids = [b.batch_id for b in self.batches]
        if len(set(batch_ids)) != len(batch_ids):
            raise ValueError("a batch may appear only once per item")
        return self


class TransferCreate(BaseModel):
    source_branch_id: UUID
    destination_branch_id: UUID
    items: List[TransferLineCreate]
    notes: Optional[str] = None

    @field_validator("items")
    @classmethod
    def _non_empty(cls, v: List[TransferLineCreate]) -> List[TransferLineCreate]:
        if not v:
            raise ValueError("a transfer needs at least one item")
        return v

    @model_validator(mode="after")
    def _distinct_branches(self):
        if self.source_branch_id == self.destination_branch_id:
            raise ValueError("source and destination branch must differ")
        return self


class TransferReceptionLine(BaseModel):
    transfer_item_id: UUID
    reception_status: TransferItemStatus
    received_quantity: Optional[Decimal] = None
    reception_notes: Optional[str] = None

    @field_validator("reception_status")
    @classmethod
    def _not_pending(cls, v: TransferItemStatus) -> TransferItemStatus:
        if v == TransferItemStatus.PENDING:
            raise ValueError("reception_status must be received, received_with_issues or rejected")
        return v

    @field_validator("received_quantity")
    @classmethod
    def _non_negative(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and v < 0:
            raise ValueError("received_quantity must be >= 0")
        return check_quantity_scale(v, "received_quantity")


class TransferReceive(BaseModel):
    items: List[TransferReceptionLine]

    @field_validator("items")
    @classmethod
    def _unique_lines(cls, v: List[TransferReceptionLine]) -> List[TransferReceptionLine]:
        ids = [line.transfer_item_id for line in v]
        if len(set(ids)) != len(ids):
            raise ValueError("each transfer item may be answered only once")
        return v


class TransferReject(BaseModel):
    reason: str

    @field_validator("reason")
    @classmethod
    def _reason_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("a rejection reason is required")
        return v


class TransferItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    line_number: int
    inventory_item_id: UUID
    inventory_batch_id: UUID
    inventory_batch_portion_id: Optional[UUID] = None
    quantity: Decimal
    reception_status: TransferItemStatus
    received_quantity: Optional[Decimal] = None
    reception_notes: Optional[str] = None


class TransferOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    source_branch_id: UUID
    destination_branch_id: UUID
    sending_user_id: Optional[UUID] = None
    receiving_user_id: Optional[UUID] = None
    status: TransferStatus
    notes: Optional[str] = None
    sent_at: datetime
    received_at: Optional[datetime] = None
    items: List[TransferItemOut]
