"""
ORM-level append-only enforcement for ledger tables.

StockHistoryEntry and CustomerCouponUsage rows are written once and never
changed. SQLAlchemy fires before_update / before_delete before any SQL is
sent, so raising there aborts the flush and leaves the database untouched.

Bulk query.update()/delete() bypass mapper events; the services never issue
those against these tables.
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from .catalog import StockHistoryEntry
from .promotions import CustomerCouponUsage


class ImmutableRecordError(Exception):
    """Attempted to modify or delete an append-only record."""

    def __init__(self, entity_type: str, entity_id, operation: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.operation = operation
        super().__init__(f"{entity_type} {entity_id} is append-only ({operation} rejected)")


def _changed_columns(target) -> list[str]:
    changed = []
    for column in target.__mapper__.column_attrs:
        if get_history(target, column.key).has_changes():
            changed.append(column.key)
    return changed


def _reject_update(mapper, connection, target):
    if _changed_columns(target):
        raise ImmutableRecordError(type(target).__name__, target.id, "UPDATE")


def _reject_delete(mapper, connection, target):
    raise ImmutableRecordError(type(target).__name__, target.id, "DELETE")


_APPEND_ONLY_MODELS = (StockHistoryEntry, CustomerCouponUsage)


def register_immutability_listeners() -> None:
    """Idempotent; called when the models package is imported."""
    for model in _APPEND_ONLY_MODELS:
        if not event.contains(model, "before_update", _reject_update):
            event.listen(model, "before_update", _reject_update)
        if not event.contains(model, "before_delete", _reject_delete):
            event.listen(model, "before_delete", _reject_delete)
