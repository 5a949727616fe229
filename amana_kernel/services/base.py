"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session-handling contract.  Services receive a
    SQLAlchemy ``Session`` and a ``Clock`` and use ``session.flush()`` --
    never ``session.commit()``.  The caller (``session_scope()``, a batch
    job, the test harness) owns the transaction.

Multi-step transitions run inside ``session.begin_nested()`` so that a
failure leaves no partial writes even when the caller's transaction
carries other work.
"""

from abc import ABC
from decimal import Decimal
from functools import wraps
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from amana_kernel.db.base import Base
from amana_kernel.domain.clock import Clock, SystemClock
from amana_kernel.domain.principal import Principal
from amana_kernel.exceptions import NotFoundError
from amana_kernel.logging_config import LogContext
from amana_kernel.models.transaction import LedgerTransaction, TransactionType

ModelType = TypeVar("ModelType", bound=Base)


def transition(operation: str):
    """
    Scope a service method's log lines to one credit transition.

    Binds ``operation`` and, when the first argument is a Principal,
    ``actor_id``.  Context set inside the call (the retailer a ledger lock
    names) ends with it.
    """

    def decorator(method):
        @wraps(method)
        def wrapper(self, *args, **kwargs):
            actor = args[0].id if args and isinstance(args[0], Principal) else None
            with LogContext.bind(operation=operation, actor_id=actor):
                return method(self, *args, **kwargs)

        return wrapper

    return decorator


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()`` on the outer transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    def _get(self, model: type[ModelType], entity_id: UUID, entity: str | None = None) -> ModelType:
        obj = self.session.get(model, entity_id)
        if obj is None:
            raise NotFoundError(entity or model.__name__, str(entity_id))
        return obj

    def _lock(self, model: type[ModelType], entity_id: UUID, entity: str | None = None) -> ModelType:
        """
        SELECT ... FOR UPDATE with a fresh read.

        Pending changes are autoflushed before the query, so
        ``populate_existing`` never discards in-session work.
        """
        stmt = (
            select(model)
            .where(model.id == entity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        obj = self.session.execute(stmt).scalar_one_or_none()
        if obj is None:
            raise NotFoundError(entity or model.__name__, str(entity_id))
        return obj

    def _record_transaction(
        self,
        tx_type: TransactionType,
        amount: Decimal,
        *,
        description: str,
        reference: str | None = None,
        details: dict[str, Any] | None = None,
        **links: UUID | None,
    ) -> LedgerTransaction:
        """Append one immutable ledger transaction and flush it."""
        tx = LedgerTransaction(
            type=tx_type.value,
            amount=amount,
            reference=reference,
            description=description,
            details=details or {},
            **links,
        )
        self.session.add(tx)
        self.session.flush()
        return tx
