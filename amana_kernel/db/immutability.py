"""
Module: amana_kernel.db.immutability
Responsibility: ORM event listeners that make ledger transactions
    append-only.  Any flushed UPDATE or DELETE of a LedgerTransaction row
    raises ImmutabilityViolationError before SQL is emitted.

Bulk ``update()``/``delete()`` statements bypass mapper events; services
never issue them against ledger_transactions.
"""

from sqlalchemy import event, inspect

from amana_kernel.exceptions import ImmutabilityViolationError
from amana_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _changed_columns(target) -> list[str]:
    state = inspect(target)
    return [
        attr.key
        for attr in state.attrs
        if attr.history.has_changes() and attr.key not in ("updated_at",)
    ]


def _check_ledger_transaction_immutability(mapper, connection, target):
    changed = _changed_columns(target)
    if not changed:
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "LedgerTransaction",
            "entity_id": str(target.id),
            "operation": "UPDATE",
            "fields": changed,
        },
    )
    raise ImmutabilityViolationError(
        entity_type="LedgerTransaction",
        entity_id=str(target.id),
        reason=f"Ledger transactions are append-only (attempted change: {', '.join(changed)})",
    )


def _check_ledger_transaction_delete(mapper, connection, target):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "LedgerTransaction",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="LedgerTransaction",
        entity_id=str(target.id),
        reason="Ledger transactions cannot be deleted",
    )


def register_immutability_listeners():
    """
    Register the append-only listeners.  Safe to call more than once.

    Call after models are imported and before any database work begins;
    create_tables() does this.
    """
    from amana_kernel.models.transaction import LedgerTransaction

    for event_name, fn in (
        ("before_update", _check_ledger_transaction_immutability),
        ("before_delete", _check_ledger_transaction_delete),
    ):
        if not event.contains(LedgerTransaction, event_name, fn):
            event.listen(LedgerTransaction, event_name, fn)


def unregister_immutability_listeners():
    """
    Remove the listeners.

    WARNING: Only for tests that must write around immutability to verify
    detection.
    """
    from amana_kernel.models.transaction import LedgerTransaction

    for event_name, fn in (
        ("before_update", _check_ledger_transaction_immutability),
        ("before_delete", _check_ledger_transaction_delete),
    ):
        if event.contains(LedgerTransaction, event_name, fn):
            event.remove(LedgerTransaction, event_name, fn)
