import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, Text, Uuid
from sqlalchemy.orm import relationship

from .database import Base, utcnow
from .enums import TransferItemStatus, TransferStatus
from .types import enum_column_type


class Transfer(Base):
    __tablename__ = "transfers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    source_branch_id = Column(Uuid, ForeignKey("branches.id"), nullable=False, index=True)
    destination_branch_id = Column(Uuid, ForeignKey("branches.id"), nullable=False, index=True)
    sending_user_id = Column(Uuid, nullable=True)
    receiving_user_id = Column(Uuid, nullable=True)  # receiver, canceller or rejecter
    status = Column(enum_column_type(TransferStatus), nullable=False, default=TransferStatus.PENDING, index=True)
    notes = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=False, default=utcnow)
    received_at = Column(DateTime, nullable=True)  # when the transfer left PENDING

    items = relationship("TransferItem", back_populates="transfer", cascade="all, delete-orphan",
                         order_by="TransferItem.line_number")

    @property
    def is_pending(self) -> bool:
        return self.status == TransferStatus.PENDING


class TransferItem(Base):
    __tablename__ = "transfer_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    transfer_id = Column(Uuid, ForeignKey("transfers.id", ondelete="CASCADE"), nullable=False, index=True)
    line_number = Column(Integer, nullable=False, default=0)
    inventory_item_id = Column(Uuid, ForeignKey("inventory_items.id"), nullable=False, index=True)
    inventory_batch_id = Column(Uuid, ForeignKey("inventory_batches.id"), nullable=False, index=True)
    inventory_batch_portion_id = Column(Uuid, ForeignKey("inventory_batch_portions.id"), nullable=True, index=True)

    quantity = Column(Numeric(14, 4), nullable=False)
    reception_status = Column(enum_column_type(TransferItemStatus), nullable=False, default=TransferItemStatus.PENDING)
    received_quantity = Column(Numeric(14, 4), nullable=True)
    reception_notes = Column(Text, nullable=True)

    transfer = relationship("Transfer", back_populates="items")

    @property
    def is_portion_line(self) -> bool:
        return self.inventory_batch_portion_id is not None
