"""
Obligation -- the shared capability of Orders and Agent Purchases that
reconciliation settles against.

Responsibility:
    Declares the ``Obligation`` protocol and the pure greedy allocator that
    decides which obligations a payment fully covers.  Reconciliation merges
    both document types into one list and never branches on type while
    allocating.

Architecture position:
    Kernel > Domain.  ZERO I/O.  ``mark_paid`` is implemented by the ORM
    models; the allocator itself never calls it.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Protocol, Sequence, TypeVar, runtime_checkable
from uuid import UUID

from amana_kernel.domain.money import to_money


@runtime_checkable
class Obligation(Protocol):
    """Anything a retailer owes the platform that a payment can settle."""

    id: UUID

    @property
    def obligation_kind(self) -> str: ...

    @property
    def amount_due(self) -> Decimal: ...

    @property
    def obligation_due_date(self) -> datetime | None: ...

    @property
    def owner_id(self) -> UUID | None: ...

    def mark_paid(self, at: datetime) -> None: ...


O = TypeVar("O", bound=Obligation)

_UNDATED = datetime.min.replace(tzinfo=timezone.utc)


def due_date_sort_key(obligation: Obligation) -> tuple[bool, datetime]:
    """Nearest-due first; obligations without a due date sort before all others."""
    due = obligation.obligation_due_date
    return (due is not None, due or _UNDATED)


def order_obligations(obligations: Sequence[O]) -> list[O]:
    # sorted() is stable: ties keep their query order
    return sorted(obligations, key=due_date_sort_key)


@dataclass(frozen=True)
class Allocation:
    """Outcome of applying one payment to an ordered obligation list."""

    settled: tuple
    applied: Decimal
    unapplied: Decimal


def allocate_payment(
    amount_paid,
    obligations: Sequence[O],
    tolerance: Decimal = Decimal("0.5"),
) -> Allocation:
    """
    Greedy full-settlement allocation.

    Walks ``obligations`` in the given order.  An obligation is settled when
    the remaining payment plus ``tolerance`` covers its full amount due, and
    its amount is deducted from the remainder.  Obligations that cannot be
    covered in full are skipped, never partially settled.  The walk stops
    once the remainder is within tolerance of zero.
    """
    remaining = to_money(amount_paid)
    settled: list[O] = []

    for obligation in obligations:
        if remaining <= tolerance:
            break
        due = to_money(obligation.amount_due)
        if remaining >= due - tolerance:
            settled.append(obligation)
            remaining -= due

    unapplied = max(remaining, Decimal("0"))
    return Allocation(
        settled=tuple(settled),
        applied=to_money(amount_paid) - unapplied,
        unapplied=unapplied,
    )
