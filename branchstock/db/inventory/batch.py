import uuid
from decimal import Decimal

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from ...core.errors import InvariantViolationError
from ..database import Base, utcnow


class InventoryBatch(Base):
    __tablename__ = "inventory_batches"
    __table_args__ = (
        UniqueConstraint("inventory_item_id", "branch_id", "batch_number", name="ux_inventory_batch_number"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    inventory_item_id = Column(Uuid, ForeignKey("inventory_items.id"), nullable=False, index=True)
    branch_id = Column(Uuid, ForeignKey("branches.id"), nullable=False, index=True)

    # Sequential per (item, branch)
    batch_number = Column(Integer, nullable=False)

    quantity_received = Column(Numeric(14, 4), nullable=False)
    remaining_quantity = Column(Numeric(14, 4), nullable=False)
    unit_cost = Column(Numeric(14, 4), nullable=False, default=0)
    expiration_date = Column(Date, nullable=True, index=True)
    received_at = Column(DateTime, nullable=False, default=utcnow)
    source = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    deleted_at = Column(DateTime, nullable=True)

    inventory_item = relationship("InventoryItem")
    branch = relationship("Branch")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def deduct(self, amount: Decimal) -> None:
        """Take `amount` out of the batch. Callers validate availability first."""
        amount = Decimal(amount)
        if amount <= 0:
            raise InvariantViolationError(f"Batch #{self.batch_number}: deduction must be positive, got {amount}")
        if amount > Decimal(self.remaining_quantity):
            raise InvariantViolationError(
                f"Batch #{self.batch_number}: cannot deduct {amount}, only {self.remaining_quantity} remaining"
            )
        self.remaining_quantity = Decimal(self.remaining_quantity) - amount

    def add_stock(self, amount: Decimal) -> bool:
        """
        Put `amount` back into the batch.

        quantity_received is the ceiling for remaining_quantity; when stock
        comes back above it (found extra stock, a return after a downward
        correction) the ceiling moves up with it. Returns True in that case.
        """
        amount = Decimal(amount)
        if amount <= 0:
            raise InvariantViolationError(f"Batch #{self.batch_number}: addition must be positive, got {amount}")
        self.remaining_quantity = Decimal(self.remaining_quantity) + amount
        if self.remaining_quantity > Decimal(self.quantity_received):
            self.quantity_received = self.remaining_quantity
            return True
        return False
