"""
Typed payloads for InventoryLog.details, one model per family of actions.

Every payload carries `quantity_change`: the signed effect of the logged
action on the referenced batch's remaining_quantity. Summing it over a batch's
logs from creation onward gives the batch's current remaining_quantity.
"""

from decimal import Decimal
from typing import Dict, Optional, Type
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from ..db.enums import LogAction


class LogDetails(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    quantity_change: Decimal


class BatchCreatedDetails(LogDetails):
    quantity_received: Decimal
    unit: str
    portions_created: Optional[int] = None
    source: Optional[str] = None


class BatchDeletedDetails(LogDetails):
    reason: Optional[str] = None
    portions_deleted: int = 0


class SaleDeductionDetails(LogDetails):
    unit: str
    portion_label: Optional[str] = None


class AdjustmentDetails(LogDetails):
    adjustment_type: str
    direction: str  # increase | decrease
    original_quantity: Decimal
    new_quantity: Decimal
    unit: str
    reason: str
    portion_label: Optional[str] = None
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    portions_created: Optional[int] = None
    quantity_received_raised_to: Optional[Decimal] = None


class CorrectionDetails(LogDetails):
    old_quantity_received: Decimal
    new_quantity_received: Decimal
    difference: Decimal
    remaining_before: Decimal
    remaining_after: Decimal
    reason: str
    portions_created: int = 0
    portions_removed: int = 0


class RestorationDetails(LogDetails):
    reason: str
    original_log_id: UUID
    original_action: str
    original_reason: Optional[str] = None
    portion_label: Optional[str] = None
    previous_status: Optional[str] = None
    quantity_received_raised_to: Optional[Decimal] = None


class TransferDetails(LogDetails):
    counterpart_branch_id: UUID
    counterpart_branch_name: str
    source_batch_id: Optional[UUID] = None
    source_batch_number: Optional[int] = None
    portion_label: Optional[str] = None
    reception_status: Optional[str] = None
    notes: Optional[str] = None
    quantity_received_raised_to: Optional[Decimal] = None


DETAILS_BY_ACTION: Dict[LogAction, Type[LogDetails]] = {
    LogAction.BATCH_CREATED: BatchCreatedDetails,
    LogAction.BATCH_DELETED: BatchDeletedDetails,
    LogAction.DEDUCTED_FOR_SALE: SaleDeductionDetails,
    LogAction.TRANSFER_INITIATED: TransferDetails,
    LogAction.TRANSFER_RECEIVED: TransferDetails,
    LogAction.TRANSFER_DISCREPANCY: TransferDetails,
    LogAction.TRANSFER_CANCELLED: TransferDetails,
    LogAction.TRANSFER_REJECTED: TransferDetails,
    LogAction.ADJUSTMENT_SPOILAGE: AdjustmentDetails,
    LogAction.ADJUSTMENT_WASTE: AdjustmentDetails,
    LogAction.ADJUSTMENT_THEFT: AdjustmentDetails,
    LogAction.ADJUSTMENT_OTHER: AdjustmentDetails,
    LogAction.ADJUSTMENT_FOUND: AdjustmentDetails,
    LogAction.ADJUSTMENT_RETURNED: AdjustmentDetails,
    LogAction.BATCH_COUNT_CORRECTED: CorrectionDetails,
    LogAction.PORTION_RESTORED: RestorationDetails,
    LogAction.QUANTITY_RESTORED: RestorationDetails,
}


def parse_details(action: str, raw: dict) -> Optional[LogDetails]:
    """Typed payload for a stored row, or None for an action this version does not know."""
    try:
        kind = LogAction(action)
    except ValueError:
        return None
    return DETAILS_BY_ACTION[kind].model_validate(raw or {})
