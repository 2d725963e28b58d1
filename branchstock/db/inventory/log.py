import uuid
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Text, Uuid

from ..database import Base, utcnow
from ..enums import LogAction


class InventoryLog(Base):
    """Append-only: rows are written once and never updated or deleted (see db/immutability.py)."""
    __tablename__ = "inventory_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    inventory_batch_id = Column(Uuid, ForeignKey("inventory_batches.id"), nullable=False, index=True)
    batch_portion_id = Column(Uuid, ForeignKey("inventory_batch_portions.id"), nullable=True, index=True)
    sale_id = Column(Uuid, ForeignKey("sales.id"), nullable=True, index=True)
    transfer_id = Column(Uuid, ForeignKey("transfers.id"), nullable=True, index=True)

    # Opaque actor id supplied by the caller
    user_id = Column(Uuid, nullable=True, index=True)

    # Plain text so rows written by newer versions still load
    action = Column(Text, nullable=False, index=True)
    details = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    @property
    def action_kind(self) -> Optional[LogAction]:
        try:
            return LogAction(self.action)
        except ValueError:
            return None
