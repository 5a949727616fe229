"""
Sweep jobs -- idempotent periodic callables for the scheduler.

Contract:
    A ``SweepJob`` has a unique ``name`` and a ``run(session, as_of)`` that
    performs one sweep inside the caller's transaction and returns the ids
    it changed.  Jobs never commit; ``SweepScheduler`` owns the session.

    Re-running a job over the same data is a no-op: each sweep only selects
    rows still in the state it transitions from.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from amana_kernel.domain.clock import Clock, SystemClock
from amana_kernel.domain.notifier import Notifier
from amana_kernel.domain.scoring import DEFAULT_SCORING_RULES, ScoringRules
from amana_kernel.domain.settlement import DEFAULT_SETTLEMENT_RULES, SettlementRules
from amana_kernel.services.agent_purchase_service import AgentPurchaseService
from amana_kernel.services.order_service import OrderService


@runtime_checkable
class SweepJob(Protocol):

    @property
    def name(self) -> str: ...

    def run(self, session: Session, as_of: datetime) -> list[UUID]: ...


class AAPExpirySweep:
    """Expire agent purchases whose disbursement window has lapsed."""

    name = "aap_expiry"

    def __init__(
        self,
        scoring_rules: ScoringRules = DEFAULT_SCORING_RULES,
        settlement_rules: SettlementRules = DEFAULT_SETTLEMENT_RULES,
        notifier: Notifier | None = None,
        clock: Clock | None = None,
    ):
        self._scoring_rules = scoring_rules
        self._settlement_rules = settlement_rules
        self._notifier = notifier
        self._clock = clock or SystemClock()

    def run(self, session: Session, as_of: datetime) -> list[UUID]:
        service = AgentPurchaseService(
            session,
            self._clock,
            self._scoring_rules,
            self._settlement_rules,
            notifier=self._notifier,
        )
        return service.expire_overdue(as_of)


class OverdueOrderSweep:
    """Mark received, unpaid orders past their due date as defaulted."""

    name = "overdue_orders"

    def __init__(
        self,
        scoring_rules: ScoringRules = DEFAULT_SCORING_RULES,
        settlement_rules: SettlementRules = DEFAULT_SETTLEMENT_RULES,
        clock: Clock | None = None,
    ):
        self._scoring_rules = scoring_rules
        self._settlement_rules = settlement_rules
        self._clock = clock or SystemClock()

    def run(self, session: Session, as_of: datetime) -> list[UUID]:
        service = OrderService(session, self._clock, self._scoring_rules, self._settlement_rules)
        return service.default_overdue(as_of)


def build_sweep_jobs(
    names: tuple[str, ...],
    scoring_rules: ScoringRules = DEFAULT_SCORING_RULES,
    settlement_rules: SettlementRules = DEFAULT_SETTLEMENT_RULES,
    notifier: Notifier | None = None,
    clock: Clock | None = None,
) -> list[SweepJob]:
    """Instantiate the named jobs in the given order."""
    factories = {
        AAPExpirySweep.name: lambda: AAPExpirySweep(scoring_rules, settlement_rules, notifier, clock),
        OverdueOrderSweep.name: lambda: OverdueOrderSweep(scoring_rules, settlement_rules, clock),
    }
    unknown = [n for n in names if n not in factories]
    if unknown:
        raise ValueError(f"Unknown sweep job(s): {', '.join(unknown)}")
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate sweep job names: {names}")
    return [factories[n]() for n in names]
