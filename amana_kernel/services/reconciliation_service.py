"""
ReconciliationService -- apply gateway-confirmed payments to retailer debt.

Responsibility:
    Single entry point ``process_confirmed_payment`` invoked by the payment
    gateway adapter after it has verified a successful charge.  The kernel
    never initiates or verifies charges.

Architecture position:
    Kernel > Services.  Allocation is the pure ``allocate_payment`` in
    ``domain.obligation``; ledger writes go through CreditLedger.

Invariants enforced:
    PAYMENT_IDEMPOTENCY -- one ``repayment`` transaction per gateway
        ``reference``.  The reference is checked before and again after the
        retailer row lock is taken; the unique constraint on
        ``ledger_transactions.reference`` is the final arbiter.  A replay is
        a successful no-op, never an error.
    CREDIT_BOUND -- ``used_credit`` drops by the full amount paid, floored
        at zero, regardless of how much matched specific obligations.

Algorithm:
    1. Replay gate on ``reference``.
    2. Obligations: the targeted one (unpaid, owned, not closed) or every
       unpaid payable order and received AAP for the retailer, nearest due
       first.  A targeted obligation may be settled before its debt is
       recognized; it is then stamped paid and its receipt recognizes
       nothing.
    3. Greedy full settlement within ``payment_tolerance``.
    4. Release the full amount.
    5. Trust growth when the amount qualifies.
    6. One immutable ``repayment`` transaction keyed by ``reference``.

A targeted obligation that is missing or ineligible settles nothing; the
payment still reduces ``used_credit`` and is still recorded.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from amana_kernel.domain.clock import Clock
from amana_kernel.domain.money import ZERO, round_money, to_money
from amana_kernel.domain.obligation import Obligation, allocate_payment, order_obligations
from amana_kernel.domain.scoring import (
    DEFAULT_SCORING_RULES,
    ScoringRules,
    Tier,
    calculate_score_growth,
    qualifies_for_growth,
)
from amana_kernel.domain.settlement import DEFAULT_SETTLEMENT_RULES, SettlementRules
from amana_kernel.domain.workflow import AgentPurchaseStatus
from amana_kernel.exceptions import NotFoundError, ValidationError
from amana_kernel.logging_config import LogContext, get_logger
from amana_kernel.models.agent_purchase import CLOSED_AAP_STATUSES, AgentPurchase
from amana_kernel.models.order import CLOSED_ORDER_STATUSES, PAYABLE_ORDER_STATUSES, Order
from amana_kernel.models.retailer import Retailer
from amana_kernel.models.transaction import LedgerTransaction, TransactionType
from amana_kernel.services.base import BaseService, transition
from amana_kernel.services.credit_ledger import CreditLedger

logger = get_logger("services.reconciliation")


# =============================================================================
# Gateway-facing value objects
# =============================================================================


@dataclass(frozen=True)
class PaymentMetadata:
    """Optional hints the gateway echoes back from checkout."""

    obligation_id: UUID | None = None
    retailer_id: UUID | None = None
    # Set when an agent pays on a retailer's behalf
    payer_id: UUID | None = None
    is_agent_proxy: bool = False


@dataclass(frozen=True)
class PaymentConfirmation:
    """A verified, successful charge reported by the gateway."""

    reference: str
    amount_paid: Decimal
    payer_email: str | None = None
    metadata: PaymentMetadata = field(default_factory=PaymentMetadata)


@dataclass(frozen=True)
class SettledObligation:
    kind: str
    id: UUID
    amount: Decimal


@dataclass(frozen=True)
class ReconciliationResult:
    reference: str
    retailer_id: UUID
    amount_paid: Decimal
    released: Decimal
    settled: tuple[SettledObligation, ...]
    trust_score: int
    tier: str
    credit_limit: Decimal
    transaction_id: UUID
    already_processed: bool = False


# =============================================================================
# Service
# =============================================================================


class ReconciliationService(BaseService[LedgerTransaction]):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        scoring_rules: ScoringRules = DEFAULT_SCORING_RULES,
        settlement_rules: SettlementRules = DEFAULT_SETTLEMENT_RULES,
    ):
        super().__init__(session, clock)
        self.scoring_rules = scoring_rules
        self.settlement_rules = settlement_rules
        self.ledger = CreditLedger(session, self.clock, scoring_rules)

    @transition("payment.process_confirmed_payment")
    def process_confirmed_payment(self, confirmation: PaymentConfirmation) -> ReconciliationResult:
        """
        Apply one confirmed payment.  Safe to call any number of times with
        the same reference.
        """
        reference = (confirmation.reference or "").strip()
        if not reference:
            raise ValidationError("payment reference is required", field="reference")
        try:
            amount = to_money(confirmation.amount_paid)
        except (TypeError, ValueError) as exc:
            raise ValidationError(str(exc), field="amount_paid") from exc
        if amount <= ZERO:
            raise ValidationError("amount paid must be positive", field="amount_paid")

        with LogContext.bind(reference=reference):
            existing = self._find_by_reference(reference)
            if existing is not None:
                return self._replay(existing)

            retailer_id = self._resolve_payer(confirmation)
            retailer = self.ledger.lock_retailer(retailer_id)

            # A concurrent callback may have committed while we waited on the lock
            existing = self._find_by_reference(reference)
            if existing is not None:
                return self._replay(existing)

            try:
                with self.session.begin_nested():
                    return self._apply(confirmation, reference, amount, retailer)
            except IntegrityError:
                existing = self._find_by_reference(reference)
                if existing is None:
                    raise
                logger.info("payment_reference_race_lost", extra={"retailer_id": str(retailer_id)})
                return self._replay(existing)

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _apply(
        self,
        confirmation: PaymentConfirmation,
        reference: str,
        amount: Decimal,
        retailer: Retailer,
    ) -> ReconciliationResult:
        now = self.clock.now()
        metadata = confirmation.metadata

        obligations = self._select_obligations(retailer.id, metadata.obligation_id)
        allocation = allocate_payment(amount, obligations, self.settlement_rules.payment_tolerance)
        settled = []
        for obligation in allocation.settled:
            obligation.mark_paid(now)
            settled.append(
                SettledObligation(
                    kind=obligation.obligation_kind,
                    id=obligation.id,
                    amount=round_money(obligation.amount_due),
                )
            )
        self.session.flush()

        released = round_money(self.ledger.release(retailer.id, amount))
        unapplied = round_money(allocation.unapplied)

        if qualifies_for_growth(amount, self.scoring_rules):
            old_score = retailer.trust_score
            retailer.repayment_streak = retailer.repayment_streak + 1
            retailer.total_repaid = retailer.total_repaid + amount
            retailer.trust_score = calculate_score_growth(
                old_score, retailer.repayment_streak, self.scoring_rules
            )
            self.ledger.recompute_standing(retailer)
            logger.info(
                "trust_score_grew",
                extra={
                    "retailer_id": str(retailer.id),
                    "old_score": old_score,
                    "new_score": retailer.trust_score,
                    "streak": retailer.repayment_streak,
                },
            )

        description = f"Repayment: {amount}. Score: {retailer.trust_score} ({Tier(retailer.tier).value})."
        if metadata.is_agent_proxy and metadata.payer_id is not None:
            description += f" Paid by agent {metadata.payer_id} on behalf of retailer."

        tx = self._record_transaction(
            TransactionType.REPAYMENT,
            amount,
            description=description,
            reference=reference,
            details={
                "trust_score": retailer.trust_score,
                "tier": Tier(retailer.tier).value,
                "credit_limit": str(round_money(retailer.credit_limit)),
                "released": str(released),
                "unapplied": str(unapplied),
                "settled": [
                    {"kind": s.kind, "id": str(s.id), "amount": str(s.amount)} for s in settled
                ],
                "payer_email": confirmation.payer_email,
                "payer_id": str(metadata.payer_id) if metadata.payer_id else None,
                "is_agent_proxy": metadata.is_agent_proxy,
            },
            retailer_id=retailer.id,
            actor_id=metadata.payer_id if metadata.is_agent_proxy else retailer.id,
        )

        logger.info(
            "payment_reconciled",
            extra={
                "retailer_id": str(retailer.id),
                "amount": str(amount),
                "released": str(released),
                "settled_count": len(settled),
                "unapplied": str(unapplied),
                "trust_score": retailer.trust_score,
            },
        )
        return ReconciliationResult(
            reference=reference,
            retailer_id=retailer.id,
            amount_paid=amount,
            released=released,
            settled=tuple(settled),
            trust_score=retailer.trust_score,
            tier=Tier(retailer.tier).value,
            credit_limit=retailer.credit_limit,
            transaction_id=tx.id,
        )

    def _resolve_payer(self, confirmation: PaymentConfirmation) -> UUID:
        retailer_id = confirmation.metadata.retailer_id
        if retailer_id is not None and self.session.get(Retailer, retailer_id) is not None:
            return retailer_id

        email = (confirmation.payer_email or "").strip().lower()
        if email:
            found = self.session.execute(
                select(Retailer.id).where(func.lower(Retailer.email) == email)
            ).scalar_one_or_none()
            if found is not None:
                return found

        raise NotFoundError("Retailer", str(retailer_id) if retailer_id else email or "<unknown payer>")

    def _select_obligations(self, retailer_id: UUID, obligation_id: UUID | None) -> list[Obligation]:
        if obligation_id is not None:
            return self._select_targeted(retailer_id, obligation_id)

        orders = self._locked(
            select(Order)
            .where(
                Order.retailer_id == retailer_id,
                Order.is_paid.is_(False),
                Order.status.in_(PAYABLE_ORDER_STATUSES),
            )
            .order_by(Order.created_at, Order.id)
        )
        purchases = self._locked(
            select(AgentPurchase)
            .where(
                AgentPurchase.retailer_id == retailer_id,
                AgentPurchase.is_paid.is_(False),
                AgentPurchase.status == AgentPurchaseStatus.RECEIVED.value,
            )
            .order_by(AgentPurchase.created_at, AgentPurchase.id)
        )
        return order_obligations([*orders, *purchases])

    def _select_targeted(self, retailer_id: UUID, obligation_id: UUID) -> list[Obligation]:
        """
        The named obligation, at any open status, if unpaid and owned by the
        payer.  One not yet recognized is stamped paid and recognizes
        nothing at receipt.
        """
        targeted: list[Any] = self._locked(
            select(Order).where(
                Order.id == obligation_id,
                Order.retailer_id == retailer_id,
                Order.is_paid.is_(False),
                Order.status.not_in(CLOSED_ORDER_STATUSES),
            )
        )
        if not targeted:
            targeted = self._locked(
                select(AgentPurchase).where(
                    AgentPurchase.id == obligation_id,
                    AgentPurchase.retailer_id == retailer_id,
                    AgentPurchase.is_paid.is_(False),
                    AgentPurchase.status.not_in(CLOSED_AAP_STATUSES),
                    AgentPurchase.total_retailer_cost.is_not(None),
                )
            )
        if not targeted:
            logger.warning(
                "targeted_obligation_not_eligible",
                extra={"retailer_id": str(retailer_id), "obligation_id": str(obligation_id)},
            )
        return targeted

    def _locked(self, stmt) -> list[Any]:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return list(self.session.execute(stmt).scalars().all())

    def _find_by_reference(self, reference: str) -> LedgerTransaction | None:
        return self.session.execute(
            select(LedgerTransaction).where(LedgerTransaction.reference == reference)
        ).scalar_one_or_none()

    def _replay(self, tx: LedgerTransaction) -> ReconciliationResult:
        details = tx.details or {}
        logger.info(
            "payment_replayed",
            extra={"retailer_id": str(tx.retailer_id), "transaction_id": str(tx.id)},
        )
        return ReconciliationResult(
            reference=tx.reference,
            retailer_id=tx.retailer_id,
            amount_paid=tx.amount,
            released=Decimal(details.get("released", "0")),
            settled=tuple(
                SettledObligation(kind=s["kind"], id=UUID(s["id"]), amount=Decimal(s["amount"]))
                for s in details.get("settled", ())
            ),
            trust_score=int(details.get("trust_score", 0)),
            tier=details.get("tier", ""),
            credit_limit=Decimal(details.get("credit_limit", "0")),
            transaction_id=tx.id,
            already_processed=True,
        )
