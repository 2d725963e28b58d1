"""Imports every mapped class so Base.metadata knows all tables."""
from .branch import Branch, BranchInventoryItem  # noqa: F401
from .inventory.item import InventoryItem  # noqa: F401
from .inventory.batch import InventoryBatch  # noqa: F401
from .inventory.portion import InventoryBatchPortion  # noqa: F401
from .inventory.log import InventoryLog  # noqa: F401
from .product import Product, ProductIngredient  # noqa: F401
from .sale import Sale, SaleItem  # noqa: F401
from .transfer import Transfer, TransferItem  # noqa: F401
from . import immutability  # noqa: F401
