from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..db.enums import AdjustmentType, PortionStatus, TrackingType


# Stock columns are Numeric(14, 4).
QUANTITY_STEP = Decimal("0.0001")
QUANTITY_LIMIT = Decimal("1e10")


def check_quantity_scale(v: Optional[Decimal], field: str) -> Optional[Decimal]:
    """Reject amounts the stock columns would round or overflow."""
    if v is None:
        return v
    if abs(v) >= QUANTITY_LIMIT:
        raise ValueError(f"{field} is too large")
    if v != v.quantize(QUANTITY_STEP):
        raise ValueError(f"{field} allows at most 4 decimal places")
    return v


def _strip_nullable(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


class BranchStocking(BaseModel):
    branch_id: UUID
    is_stocked: bool = True
    low_stock_threshold: Decimal = Decimal("0")

    @field_validator("low_stock_threshold")
    @classmethod
    def _threshold_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("low_stock_threshold must be >= 0")
        return check_quantity_scale(v, "low_stock_threshold")


class InventoryItemCreate(BaseModel):
    name: str
    code: str
    unit: str
    tracking_type: TrackingType = TrackingType.BY_MEASURE
    description: Optional[str] = None
    days_to_warn_before_expiry: Optional[int] = None
    branches: List[BranchStocking] = Field(default_factory=list)

    @field_validator("name", "unit")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("code")
    @classmethod
    def _code(cls, v: str) -> str:
        v = (v or "").strip().upper()
        if not v:
            raise ValueError("code is required")
        if len(v) > 16:
            raise ValueError("code must be at most 16 characters")
        return v

    @field_validator("days_to_warn_before_expiry")
    @classmethod
    def _warn_days(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("days_to_warn_before_expiry must be >= 0")
        return v


class InventoryItemUpdate(BaseModel):
    name: Optional[str] = None
    unit: Optional[str] = None
    description: Optional[str] = None
    tracking_type: Optional[TrackingType] = None
    days_to_warn_before_expiry: Optional[int] = None
    branches: Optional[List[BranchStocking]] = None

    @field_validator("name", "unit")
    @classmethod
    def _strip_optional(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = (v or "").strip()
        if not v:
            raise ValueError("cannot be empty")
        return v


class InventoryBatchCreate(BaseModel):
    inventory_item_id: UUID
    branch_id: UUID
    quantity_received: Decimal
    unit_cost: Decimal = Decimal("0")
    expiration_date: Optional[date] = None
    received_at: Optional[datetime] = None
    source: Optional[str] = None

    @field_validator("quantity_received")
    @classmethod
    def _quantity_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("quantity_received must be > 0")
        return check_quantity_scale(v, "quantity_received")

    @field_validator("unit_cost")
    @classmethod
    def _cost_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("unit_cost must be >= 0")
        return check_quantity_scale(v, "unit_cost")

    @field_validator("source")
    @classmethod
    def _source(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)


class _ReasonedAdjustment(BaseModel):
    type: AdjustmentType
    reason: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def _reason(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)

    @model_validator(mode="after")
    def _reason_when_other(self):
        if self.type.requires_reason and not self.reason:
            raise ValueError("a reason is required for 'Other' adjustments")
        return self

    @property
    def effective_reason(self) -> str:
        return self.reason if self.type.requires_reason else (self.reason or self.type.value)


class QuantityAdjustmentCreate(_ReasonedAdjustment):
    inventory_batch_id: UUID
    quantity: Decimal

    @field_validator("quantity")
    @classmethod
    def _quantity_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Adjustment quantity must be positive.")
        return check_quantity_scale(v, "quantity")


class PortionAdjustmentCreate(_ReasonedAdjustment):
    """
    Negative types take the UNUSED portions to remove (`portion_ids`).
    Positive types take the batch and the number of found portions to add.
    """
    portion_ids: List[UUID] = Field(default_factory=list)
    inventory_batch_id: Optional[UUID] = None
    quantity: Optional[int] = None

    @model_validator(mode="after")
    def _shape_matches_direction(self):
        if self.type.is_positive:
            if self.inventory_batch_id is None or not self.quantity or self.quantity <= 0:
                raise ValueError("positive portion adjustments need inventory_batch_id and quantity > 0")
        else:
            if not self.portion_ids:
                raise ValueError("select at least one portion to adjust")
            if len(set(self.portion_ids)) != len(self.portion_ids):
                raise ValueError("portion_ids must not repeat")
        return self


class BatchCountCorrection(BaseModel):
    corrected_quantity: Decimal
    reason: str

    @field_validator("corrected_quantity")
    @classmethod
    def _non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("corrected_quantity must be >= 0")
        return check_quantity_scale(v, "corrected_quantity")

    @field_validator("reason")
    @classmethod
    def _reason_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("a reason is required")
        return v


class PortionRestore(BaseModel):
    portion_ids: List[UUID]
    reason: str

    @field_validator("portion_ids")
    @classmethod
    def _at_least_one(cls, v: List[UUID]) -> List[UUID]:
        if not v:
            raise ValueError("At least one portion must be selected for restoration.")
        if len(set(v)) != len(v):
            raise ValueError("portion_ids must not repeat")
        return v

    @field_validator("reason")
    @classmethod
    def _reason_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("a reason is required")
        return v


class QuantityRestore(BaseModel):
    # adjustment log id -> amount to put back
    restorations: Dict[UUID, Decimal]
    reason: str

    @field_validator("restorations")
    @classmethod
    def _positive_amounts(cls, v: Dict[UUID, Decimal]) -> Dict[UUID, Decimal]:
        if not v:
            raise ValueError("select at least one adjustment to restore")
        for log_id, amount in v.items():
            if amount <= 0:
                raise ValueError(f"restore amount for {log_id} must be > 0")
            check_quantity_scale(amount, f"restore amount for {log_id}")
        return v

    @field_validator("reason")
    @classmethod
    def _reason_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("a reason is required")
        return v


class BatchDelete(BaseModel):
    reason: Optional[str] = None


class InventoryItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    code: str
    unit: str
    tracking_type: TrackingType
    description: Optional[str] = None
    days_to_warn_before_expiry: Optional[int] = None


class InventoryBatchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    inventory_item_id: UUID
    branch_id: UUID
    batch_number: int
    quantity_received: Decimal
    remaining_quantity: Decimal
    unit_cost: Decimal
    expiration_date: Optional[date] = None
    received_at: datetime
    source: Optional[str] = None


class PortionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    inventory_batch_id: UUID
    portion_number: int
    label: str
    status: PortionStatus


class InventoryLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    inventory_batch_id: UUID
    batch_portion_id: Optional[UUID] = None
    sale_id: Optional[UUID] = None
    transfer_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    action: str
    details: dict
    created_at: datetime


class LedgerCheckOut(BaseModel):
    batch_id: UUID
    remaining_quantity: Decimal
    replayed_quantity: Decimal
    unused_portions: Optional[int] = None
    is_consistent: bool


class StockLevelOut(BaseModel):
    inventory_item_id: UUID
    name: str
    unit: str
    on_hand: Decimal
    low_stock_threshold: Decimal = Decimal("0")
