import uuid
from decimal import Decimal
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.errors import InvariantViolationError, NotFoundError
from ..core.logging import get_logger
from ..db.database import utcnow
from ..db.enums import LogAction, PortionStatus, SaleStatus
from ..db.sale import Sale, SaleItem
from ..schemas.log_details import SaleDeductionDetails
from ..schemas.sales import SaleCreate
from .allocation import AllocationEngine
from .audit import write_log
from .catalog import aggregate_requirements, load_recipes
from .repository import LedgerRepository, atomic

logger = get_logger("sales")

# Deducted and required totals may differ by rounding noise, never by more.
DEDUCTION_TOLERANCE = Decimal("0.00001")


async def create_sale(db: AsyncSession, data: SaleCreate, actor_id: Optional[UUID]) -> Sale:
    """
    Record a sale and take its ingredients out of stock, FEFO first.

    Either every ingredient is deducted and the sale is stored, or nothing
    changes and one error describes every shortage.
    """
    repo = LedgerRepository(db)
    engine = AllocationEngine(repo)
    async with atomic(db):
        branch = await repo.get_active_branch(data.branch_id)
        recipes = await load_recipes(db, [line.product_id for line in data.items])
        requirements = aggregate_requirements(((line.product_id, line.quantity) for line in data.items), recipes)
        items = {item_id: await repo.get_item(item_id) for item_id in requirements}

        allocations = await engine.allocate_many(branch.id, requirements, items)

        total = sum(
            (recipes[line.product_id].price * line.quantity for line in data.items), Decimal("0")
        ).quantize(Decimal("0.01"))
        sale = Sale(
            id=uuid.uuid4(),
            branch_id=branch.id,
            user_id=actor_id,
            status=SaleStatus.COMPLETED,
            notes=data.notes,
            total_amount=total,
            created_at=utcnow(),
            items=[
                SaleItem(
                    id=uuid.uuid4(),
                    product_id=line.product_id,
                    quantity=line.quantity,
                    price_at_sale=recipes[line.product_id].price,
                )
                for line in data.items
            ],
        )
        db.add(sale)
        await db.flush()

        deducted: Dict[UUID, Decimal] = {}
        for item_id, allocation in allocations.items():
            item = allocation.item
            for line in allocation.plan.lines:
                batch = allocation.batches[line.batch_id]
                batch.deduct(line.amount)
                label = None
                if line.portion_id is not None:
                    portion = allocation.portions[line.portion_id]
                    portion.transition_to(PortionStatus.USED)
                    label = portion.label
                write_log(
                    db,
                    batch_id=batch.id,
                    portion_id=line.portion_id,
                    sale_id=sale.id,
                    action=LogAction.DEDUCTED_FOR_SALE,
                    actor_id=actor_id,
                    details=SaleDeductionDetails(quantity_change=-line.amount, unit=item.unit, portion_label=label),
                )
                deducted[item_id] = deducted.get(item_id, Decimal("0")) + line.amount

        for item_id, required in requirements.items():
            got = deducted.get(item_id, Decimal("0"))
            if abs(got - required) > DEDUCTION_TOLERANCE:
                logger.critical(
                    "sale deduction mismatch branch=%s item=%s required=%s deducted=%s",
                    branch.id, item_id, required, got,
                )
                raise InvariantViolationError(
                    f"Deducted {got} of {items[item_id].name} but the order requires {required}"
                )

    logger.info("sale %s at %s: %d line(s), total=%s", sale.id, branch.code, len(data.items), total)
    return sale


async def get_sale(db: AsyncSession, sale_id: UUID) -> Sale:
    sale = await db.scalar(select(Sale).where(Sale.id == sale_id).options(selectinload(Sale.items)))
    if sale is None:
        raise NotFoundError("Sale", sale_id)
    return sale
