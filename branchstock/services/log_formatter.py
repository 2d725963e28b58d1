"""Human-readable rendering of inventory log rows for history screens."""

from decimal import Decimal
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from ..core.logging import get_logger
from ..db.enums import LogAction
from ..db.inventory.log import InventoryLog
from ..schemas.log_details import (
    AdjustmentDetails,
    BatchCreatedDetails,
    BatchDeletedDetails,
    CorrectionDetails,
    RestorationDetails,
    SaleDeductionDetails,
    TransferDetails,
    parse_details,
)

logger = get_logger("log_formatter")

TITLES = {
    LogAction.BATCH_CREATED: "Batch Created",
    LogAction.BATCH_DELETED: "Batch Deleted",
    LogAction.DEDUCTED_FOR_SALE: "Deducted For Sale",
    LogAction.TRANSFER_INITIATED: "Transfer Initiated",
    LogAction.TRANSFER_RECEIVED: "Transfer Received",
    LogAction.TRANSFER_DISCREPANCY: "Transfer Discrepancy",
    LogAction.TRANSFER_CANCELLED: "Transfer Cancelled",
    LogAction.TRANSFER_REJECTED: "Transfer Rejected",
    LogAction.ADJUSTMENT_SPOILAGE: "Spoilage",
    LogAction.ADJUSTMENT_WASTE: "Waste",
    LogAction.ADJUSTMENT_THEFT: "Theft",
    LogAction.ADJUSTMENT_OTHER: "Other Adjustment",
    LogAction.ADJUSTMENT_FOUND: "Found Stock",
    LogAction.ADJUSTMENT_RETURNED: "Returned Stock",
    LogAction.BATCH_COUNT_CORRECTED: "Batch Count Corrected",
    LogAction.PORTION_RESTORED: "Portion Restored",
    LogAction.QUANTITY_RESTORED: "Quantity Restored",
}


class LogView(BaseModel):
    action: str
    title: str
    description: str = ""
    quantity_info: str = ""
    reason: Optional[str] = None
    metadata: List[Tuple[str, str]] = Field(default_factory=list)


def _signed(amount: Decimal, unit: str) -> str:
    amount = amount.normalize()
    sign = "+" if amount > 0 else ""
    return f"{sign}{amount:f} {unit}".strip()


def _humanize(action: str) -> str:
    return action.replace("_", " ").strip().title() or "Inventory Event"


def _generic(log: InventoryLog, unit: str) -> LogView:
    raw = log.details or {}
    view = LogView(action=log.action, title=_humanize(log.action), reason=raw.get("reason"))
    if "quantity_change" in raw:
        try:
            view.quantity_info = _signed(Decimal(str(raw["quantity_change"])), unit)
        except ArithmeticError:
            pass
    return view


def describe_log(log: InventoryLog, *, item_name: str = "Unknown Item", unit: Optional[str] = None) -> LogView:
    """
    Render one log row. Never raises: actions this version does not know, and
    payloads that no longer match their model, get a generic rendering.
    """
    try:
        details = parse_details(log.action, log.details)
    except ValidationError:
        logger.warning("log %s has a malformed %s payload", log.id, log.action)
        details = None
    if details is None:
        return _generic(log, unit or "unit(s)")

    kind = LogAction(log.action)
    unit = getattr(details, "unit", None) or unit or "unit(s)"
    view = LogView(
        action=log.action,
        title=TITLES[kind],
        quantity_info=_signed(details.quantity_change, unit) if details.quantity_change else "",
        reason=getattr(details, "reason", None),
    )

    if isinstance(details, BatchCreatedDetails):
        view.description = f"{details.quantity_received.normalize():f} {unit} of {item_name}"
        if details.source:
            view.metadata.append(("Source", details.source))
        if details.portions_created:
            view.metadata.append(("Portions", str(details.portions_created)))
    elif isinstance(details, BatchDeletedDetails):
        view.description = f"Batch of {item_name} removed"
        view.metadata.append(("Portions removed", str(details.portions_deleted)))
    elif isinstance(details, SaleDeductionDetails):
        if details.portion_label:
            view.description = f"Portion {details.portion_label} used in a sale"
            view.metadata.append(("Portion", details.portion_label))
        else:
            view.description = f"{(-details.quantity_change).normalize():f} {unit} of {item_name} used in a sale"
        if log.sale_id:
            view.metadata.append(("Sale", str(log.sale_id)))
    elif isinstance(details, AdjustmentDetails):
        target = f"portion {details.portion_label}" if details.portion_label else item_name
        verb = "added to" if details.direction == "increase" else "removed from"
        view.description = f"{details.adjustment_type}: stock {verb} {target}"
        view.metadata.append(
            ("Quantity", f"{details.original_quantity.normalize():f} -> {details.new_quantity.normalize():f}")
        )
        if details.new_status:
            view.metadata.append(("Status", f"{details.previous_status} -> {details.new_status}"))
        if details.quantity_received_raised_to is not None:
            view.metadata.append(("Received raised to", f"{details.quantity_received_raised_to.normalize():f}"))
    elif isinstance(details, CorrectionDetails):
        view.description = (
            f"Received count of {item_name} corrected from "
            f"{details.old_quantity_received.normalize():f} to {details.new_quantity_received.normalize():f}"
        )
        if details.portions_created:
            view.metadata.append(("Portions added", str(details.portions_created)))
        if details.portions_removed:
            view.metadata.append(("Portions removed", str(details.portions_removed)))
    elif isinstance(details, RestorationDetails):
        target = f"portion {details.portion_label}" if details.portion_label else item_name
        view.description = f"Restored {target} after {_humanize(details.original_action).lower()}"
        if details.original_reason:
            view.metadata.append(("Original reason", details.original_reason))
    elif isinstance(details, TransferDetails):
        if details.quantity_change > 0:
            # stock coming back to the source reads as a return
            direction = "from" if kind == LogAction.TRANSFER_RECEIVED else "returned from"
        else:
            direction = "to"
        view.description = f"{item_name} {direction} {details.counterpart_branch_name}"
        if details.portion_label:
            view.metadata.append(("Portion", details.portion_label))
        if details.source_batch_number is not None:
            view.metadata.append(("Source batch", f"#{details.source_batch_number}"))
        if details.notes:
            view.metadata.append(("Notes", details.notes))
        if log.transfer_id:
            view.metadata.append(("Transfer", str(log.transfer_id)))
    return view
