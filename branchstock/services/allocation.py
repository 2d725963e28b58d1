"""
FEFO/FIFO allocation.

`plan_allocation` is pure: given snapshots of the candidate batches it decides
which batches (and which portions) cover a requirement. `AllocationEngine`
locks the candidate rows, builds the snapshots and hands back the plan along
with the locked rows the caller will mutate.

Order: expiration date ascending with undated batches last, then oldest
created first, then batch number.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from uuid import UUID

from ..core.errors import InsufficientStockError, InvalidArgumentError, StockShortage
from ..core.logging import get_logger
from ..db.inventory.batch import InventoryBatch
from ..db.inventory.item import InventoryItem
from ..db.inventory.portion import InventoryBatchPortion
from .repository import LedgerRepository

logger = get_logger("allocation")


@dataclass(frozen=True)
class BatchSnapshot:
    batch_id: UUID
    batch_number: int
    remaining: Decimal
    expiration_date: Optional[date]
    created_at: datetime
    # UNUSED portions in portion_number order; empty for measured items
    unused_portion_ids: Tuple[UUID, ...] = ()


@dataclass(frozen=True)
class AllocationLine:
    batch_id: UUID
    amount: Decimal
    portion_id: Optional[UUID] = None


@dataclass(frozen=True)
class AllocationPlan:
    required: Decimal
    available: Decimal
    lines: Tuple[AllocationLine, ...] = ()

    @property
    def is_sufficient(self) -> bool:
        return self.available >= self.required

    @property
    def total(self) -> Decimal:
        return sum((line.amount for line in self.lines), Decimal("0"))


def fefo_sort_key(snapshot: BatchSnapshot):
    exp = snapshot.expiration_date
    return (exp is None, exp or date.max, snapshot.created_at, snapshot.batch_number)


def plan_allocation(
    snapshots: Iterable[BatchSnapshot],
    quantity_needed: Decimal,
    *,
    by_portion: bool = False,
) -> AllocationPlan:
    needed = Decimal(quantity_needed)
    if needed <= 0:
        raise InvalidArgumentError("Quantity needed must be positive", field="quantity")
    if by_portion and needed != needed.to_integral_value():
        raise InvalidArgumentError(
            f"Portion-tracked stock is allocated in whole portions, got {needed}", field="quantity"
        )

    ordered = sorted(snapshots, key=fefo_sort_key)
    if by_portion:
        available = Decimal(sum(len(s.unused_portion_ids) for s in ordered))
    else:
        available = sum((Decimal(s.remaining) for s in ordered if s.remaining > 0), Decimal("0"))

    if available < needed:
        return AllocationPlan(required=needed, available=available)

    lines: List[AllocationLine] = []
    left = needed
    for snap in ordered:
        if left <= 0:
            break
        if by_portion:
            for portion_id in snap.unused_portion_ids:
                if left <= 0:
                    break
                lines.append(AllocationLine(batch_id=snap.batch_id, amount=Decimal("1"), portion_id=portion_id))
                left -= 1
        else:
            if snap.remaining <= 0:
                continue
            take = min(Decimal(snap.remaining), left)
            lines.append(AllocationLine(batch_id=snap.batch_id, amount=take))
            left -= take

    return AllocationPlan(required=needed, available=available, lines=tuple(lines))


@dataclass
class LockedAllocation:
    """A plan plus the locked rows it refers to."""
    item: InventoryItem
    plan: AllocationPlan
    batches: Dict[UUID, InventoryBatch] = field(default_factory=dict)
    portions: Dict[UUID, InventoryBatchPortion] = field(default_factory=dict)

    def shortage(self) -> StockShortage:
        return StockShortage(
            item_id=self.item.id,
            item_name=self.item.name,
            required=self.plan.required,
            available=self.plan.available,
        )


class AllocationEngine:
    def __init__(self, repo: LedgerRepository):
        self.repo = repo

    async def select_allocation(
        self, item: InventoryItem, branch_id: UUID, quantity_needed: Decimal
    ) -> LockedAllocation:
        """Lock every candidate row for `item` at `branch_id` and plan the deduction. Does not mutate."""
        batches = await self.repo.lock_allocatable_batches(item.id, branch_id)
        portions_by_batch: Dict[UUID, List[InventoryBatchPortion]] = {}
        portions: Dict[UUID, InventoryBatchPortion] = {}
        if item.is_portion_tracked:
            for portion in await self.repo.lock_unused_portions([b.id for b in batches]):
                portions_by_batch.setdefault(portion.inventory_batch_id, []).append(portion)
                portions[portion.id] = portion

        snapshots = [
            BatchSnapshot(
                batch_id=b.id,
                batch_number=b.batch_number,
                remaining=Decimal(b.remaining_quantity),
                expiration_date=b.expiration_date,
                created_at=b.created_at,
                unused_portion_ids=tuple(p.id for p in portions_by_batch.get(b.id, [])),
            )
            for b in batches
        ]
        plan = plan_allocation(snapshots, quantity_needed, by_portion=item.is_portion_tracked)
        return LockedAllocation(
            item=item,
            plan=plan,
            batches={b.id: b for b in batches},
            portions=portions,
        )

    async def allocate_many(
        self,
        branch_id: UUID,
        requirements: Mapping[UUID, Decimal],
        items: Mapping[UUID, InventoryItem],
    ) -> Dict[UUID, LockedAllocation]:
        """
        Plan every requirement before anything is touched.

        Raises one InsufficientStockError naming every short item.
        """
        allocations: Dict[UUID, LockedAllocation] = {}
        shortages: List[StockShortage] = []
        for item_id in sorted(requirements):
            allocation = await self.select_allocation(items[item_id], branch_id, requirements[item_id])
            allocations[item_id] = allocation
            if not allocation.plan.is_sufficient:
                shortages.append(allocation.shortage())

        if shortages:
            logger.warning(
                "insufficient stock at branch=%s: %s", branch_id, "; ".join(s.describe() for s in shortages)
            )
            raise InsufficientStockError(shortages)
        return allocations
