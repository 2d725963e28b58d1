import uuid

from sqlalchemy import Column, ForeignKey, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from .database import Base
from .enums import BranchStatus
from .types import enum_column_type


class Branch(Base):
    __tablename__ = "branches"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    code = Column(String(16), nullable=False, unique=True)  # used in portion labels
    # Archived branches stay referenced by historical batches and logs.
    status = Column(enum_column_type(BranchStatus), nullable=False, default=BranchStatus.ACTIVE)

    stocked_items = relationship("BranchInventoryItem", back_populates="branch", cascade="all, delete-orphan")

    @property
    def is_active(self) -> bool:
        return self.status == BranchStatus.ACTIVE


class BranchInventoryItem(Base):
    """Items stocked at a branch, with the branch-specific low stock threshold."""
    __tablename__ = "branch_inventory_items"
    __table_args__ = (UniqueConstraint("branch_id", "inventory_item_id", name="ux_branch_inventory_item"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    branch_id = Column(Uuid, ForeignKey("branches.id"), nullable=False, index=True)
    inventory_item_id = Column(Uuid, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True)
    low_stock_threshold = Column(Numeric(14, 4), nullable=False, default=0)

    branch = relationship("Branch", back_populates="stocked_items")
    inventory_item = relationship("InventoryItem", back_populates="branch_links")
