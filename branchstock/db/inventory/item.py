import uuid

from sqlalchemy import Column, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from ..database import Base
from ..enums import TrackingType
from ..types import enum_column_type


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    code = Column(String(16), nullable=False, unique=True)  # used in portion labels
    description = Column(Text, nullable=True)
    unit = Column(Text, nullable=False)
    tracking_type = Column(enum_column_type(TrackingType), nullable=False, default=TrackingType.BY_MEASURE)
    days_to_warn_before_expiry = Column(Integer, nullable=True)

    branch_links = relationship("BranchInventoryItem", back_populates="inventory_item", cascade="all, delete-orphan")

    @property
    def is_portion_tracked(self) -> bool:
        return self.tracking_type == TrackingType.BY_PORTION
