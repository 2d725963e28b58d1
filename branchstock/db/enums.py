import enum


class BranchStatus(str, enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class TrackingType(str, enum.Enum):
    BY_MEASURE = "by_measure"
    BY_PORTION = "by_portion"


class PortionStatus(str, enum.Enum):
    UNUSED = "unused"
    USED = "used"
    IN_TRANSIT = "in_transit"
    TRANSFERRED = "transferred"
    SPOILED = "spoiled"
    WASTED = "wasted"
    MISSING = "missing"
    DAMAGED = "damaged"

    @property
    def is_adjusted(self) -> bool:
        return self in ADJUSTED_PORTION_STATUSES


ADJUSTED_PORTION_STATUSES = frozenset(
    {PortionStatus.SPOILED, PortionStatus.WASTED, PortionStatus.MISSING, PortionStatus.DAMAGED}
)

# Allowed portion transitions; anything else is refused by the entity.
PORTION_TRANSITIONS = {
    PortionStatus.UNUSED: frozenset(
        {PortionStatus.USED, PortionStatus.IN_TRANSIT} | ADJUSTED_PORTION_STATUSES
    ),
    PortionStatus.IN_TRANSIT: frozenset({PortionStatus.TRANSFERRED, PortionStatus.UNUSED}),
    PortionStatus.SPOILED: frozenset({PortionStatus.UNUSED}),
    PortionStatus.WASTED: frozenset({PortionStatus.UNUSED}),
    PortionStatus.MISSING: frozenset({PortionStatus.UNUSED}),
    PortionStatus.DAMAGED: frozenset({PortionStatus.UNUSED}),
    PortionStatus.USED: frozenset(),
    PortionStatus.TRANSFERRED: frozenset(),
}


class LogAction(str, enum.Enum):
    BATCH_CREATED = "batch_created"
    BATCH_DELETED = "batch_deleted"
    DEDUCTED_FOR_SALE = "deducted_for_sale"

    TRANSFER_INITIATED = "transfer_initiated"
    TRANSFER_RECEIVED = "transfer_received"
    TRANSFER_DISCREPANCY = "transfer_discrepancy"
    TRANSFER_CANCELLED = "transfer_cancelled"
    TRANSFER_REJECTED = "transfer_rejected"

    ADJUSTMENT_SPOILAGE = "adjustment_spoilage"
    ADJUSTMENT_WASTE = "adjustment_waste"
    ADJUSTMENT_THEFT = "adjustment_theft"
    ADJUSTMENT_OTHER = "adjustment_other"
    ADJUSTMENT_FOUND = "adjustment_found"
    ADJUSTMENT_RETURNED = "adjustment_returned"

    BATCH_COUNT_CORRECTED = "batch_count_corrected"
    PORTION_RESTORED = "portion_restored"
    QUANTITY_RESTORED = "quantity_restored"


NEGATIVE_ADJUSTMENT_ACTIONS = frozenset(
    {
        LogAction.ADJUSTMENT_SPOILAGE,
        LogAction.ADJUSTMENT_WASTE,
        LogAction.ADJUSTMENT_THEFT,
        LogAction.ADJUSTMENT_OTHER,
    }
)

RESTORATION_ACTIONS = frozenset({LogAction.PORTION_RESTORED, LogAction.QUANTITY_RESTORED})


class AdjustmentType(str, enum.Enum):
    # Remove stock
    SPOILAGE = "Spoilage"
    WASTE = "Waste"
    THEFT = "Theft"
    OTHER = "Other"
    # Add stock
    FOUND = "Found"
    RETURNED = "Returned"

    @property
    def is_positive(self) -> bool:
        return self in (AdjustmentType.FOUND, AdjustmentType.RETURNED)

    @property
    def requires_reason(self) -> bool:
        return self is AdjustmentType.OTHER

    def to_log_action(self) -> LogAction:
        return {
            AdjustmentType.SPOILAGE: LogAction.ADJUSTMENT_SPOILAGE,
            AdjustmentType.WASTE: LogAction.ADJUSTMENT_WASTE,
            AdjustmentType.THEFT: LogAction.ADJUSTMENT_THEFT,
            AdjustmentType.OTHER: LogAction.ADJUSTMENT_OTHER,
            AdjustmentType.FOUND: LogAction.ADJUSTMENT_FOUND,
            AdjustmentType.RETURNED: LogAction.ADJUSTMENT_RETURNED,
        }[self]

    def to_portion_status(self) -> PortionStatus:
        """Status a portion moves to when removed by this adjustment."""
        return {
            AdjustmentType.SPOILAGE: PortionStatus.SPOILED,
            AdjustmentType.WASTE: PortionStatus.WASTED,
            AdjustmentType.THEFT: PortionStatus.MISSING,
            AdjustmentType.OTHER: PortionStatus.DAMAGED,
        }[self]


class SaleStatus(str, enum.Enum):
    COMPLETED = "completed"


class TransferStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class TransferItemStatus(str, enum.Enum):
    PENDING = "pending"
    RECEIVED = "received"
    RECEIVED_WITH_ISSUES = "received_with_issues"
    REJECTED = "rejected"
