"""
ORM guard for the append-only inventory log.

Any flush that would UPDATE or DELETE an InventoryLog row raises
AuditLogImmutableError before SQL reaches the database, and the owning
transaction rolls back.
"""

from sqlalchemy import event

from ..core.errors import AuditLogImmutableError
from .inventory.log import InventoryLog


@event.listens_for(InventoryLog, "before_update")
def _refuse_log_update(mapper, connection, target):
    raise AuditLogImmutableError(target.id, "update")


@event.listens_for(InventoryLog, "before_delete")
def _refuse_log_delete(mapper, connection, target):
    raise AuditLogImmutableError(target.id, "delete")
