"""
Inventory ledger (branch batches).

Models:
- InventoryItem (unit + tracking mode)
- InventoryBatch (received stock per item per branch, remaining quantity)
- InventoryBatchPortion (one row per physical unit of portion-tracked batches)
- InventoryLog (append-only record of every quantity change)
"""
