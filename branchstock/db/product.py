import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from .database import Base


class Product(Base):
    """Sellable product. Owned by the catalog; the ledger only reads it."""
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    ingredients = relationship("ProductIngredient", back_populates="product", cascade="all, delete-orphan")


class ProductIngredient(Base):
    """Recipe line: how much of an inventory item one unit of the product uses."""
    __tablename__ = "product_ingredients"
    __table_args__ = (UniqueConstraint("product_id", "inventory_item_id", name="ux_product_ingredient"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    inventory_item_id = Column(Uuid, ForeignKey("inventory_items.id"), nullable=False, index=True)
    quantity_required = Column(Numeric(14, 4), nullable=False)

    product = relationship("Product", back_populates="ingredients")
