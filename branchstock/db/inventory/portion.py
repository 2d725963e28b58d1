import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid

from ...core.errors import InvalidStateError
from ..database import Base, utcnow
from ..enums import PORTION_TRANSITIONS, PortionStatus
from ..types import enum_column_type


class InventoryBatchPortion(Base):
    __tablename__ = "inventory_batch_portions"
    __table_args__ = (
        UniqueConstraint("inventory_batch_id", "portion_number", name="ux_inventory_portion_number"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    inventory_batch_id = Column(Uuid, ForeignKey("inventory_batches.id"), nullable=False, index=True)
    portion_number = Column(Integer, nullable=False)
    label = Column(String, nullable=False, unique=True)  # e.g. PB-CB-B1-01
    status = Column(enum_column_type(PortionStatus), nullable=False, default=PortionStatus.UNUSED, index=True)
    consumed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True)

    def transition_to(self, new_status: PortionStatus) -> PortionStatus:
        """Move along the portion status graph; returns the previous status."""
        previous = self.status
        if new_status not in PORTION_TRANSITIONS.get(previous, frozenset()):
            raise InvalidStateError(
                f"Portion {self.label} cannot move from {previous.value} to {new_status.value}"
            )
        self.status = new_status
        if new_status in (PortionStatus.USED, PortionStatus.TRANSFERRED):
            self.consumed_at = utcnow()
        return previous
