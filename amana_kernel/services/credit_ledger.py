"""
CreditLedger -- per-retailer admission control.

Responsibility:
    Owns every mutation of ``Retailer.used_credit`` and the recompute of the
    cached ``credit_limit``/``tier``.  Order, Agent Purchase and
    Reconciliation services call into it; nothing else writes these fields.

Architecture position:
    Kernel > Services.

Invariants enforced:
    CREDIT_BOUND -- ``recognize`` re-reads the retailer under
        ``SELECT ... FOR UPDATE`` immediately before incrementing, and fails
        closed.  A check made earlier on an unlocked snapshot
        (``advisory_check``) is never trusted for recognition.
    ``release`` clamps at zero rather than going negative.

Failure modes:
    - InsufficientCreditError carrying required and available amounts.
    - NotFoundError for an unknown retailer.
    - CreditInvariantViolationError if a post-write check fails (indicates a
      bypassed ledger; never expected in normal operation).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from amana_kernel.domain.clock import Clock
from amana_kernel.domain.money import ZERO, to_money
from amana_kernel.domain.scoring import DEFAULT_SCORING_RULES, ScoringRules
from amana_kernel.exceptions import (
    CreditInvariantViolationError,
    InsufficientCreditError,
    ValidationError,
)
from amana_kernel.logging_config import LogContext, get_logger
from amana_kernel.models.retailer import Retailer
from amana_kernel.services.base import BaseService

logger = get_logger("services.credit_ledger")


class CreditLedger(BaseService[Retailer]):
    """Check, recognize and release retailer credit."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        scoring_rules: ScoringRules = DEFAULT_SCORING_RULES,
    ):
        super().__init__(session, clock)
        self.scoring_rules = scoring_rules

    def lock_retailer(self, retailer_id: UUID) -> Retailer:
        """Fresh, row-locked read of the retailer's ledger.

        Names the retailer on every later log line of the transition.
        """
        retailer = self._lock(Retailer, retailer_id, "Retailer")
        LogContext.set(retailer_id=retailer.id)
        return retailer

    def available(self, retailer_id: UUID) -> Decimal:
        """creditLimit - usedCredit on the current snapshot (unlocked)."""
        return self._get(Retailer, retailer_id, "Retailer").available_credit

    def check_available(self, retailer: Retailer, amount) -> None:
        """Raise InsufficientCreditError unless ``amount`` fits."""
        amount = to_money(amount)
        available = retailer.available_credit
        if amount > available:
            raise InsufficientCreditError(str(retailer.id), amount, available)

    def advisory_check(self, retailer: Retailer, amount) -> None:
        """
        Credit check on an unlocked snapshot.

        Used at order creation and AAP linking to reject early; the amount
        is re-verified under lock when debt is actually recognized.
        """
        self.check_available(retailer, amount)

    def recheck(self, retailer_id: UUID, amount) -> Retailer:
        """Locked re-check without recognizing; returns the locked row."""
        retailer = self.lock_retailer(retailer_id)
        self.check_available(retailer, amount)
        return retailer

    def recognize(self, retailer_id: UUID, amount) -> Retailer:
        """
        Recognize debt: ``used_credit += amount``.

        Callable only from a debt-recognizing transition.  Fails closed.
        """
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError(f"recognized amount must be positive, got {amount}", field="amount")

        retailer = self.recheck(retailer_id, amount)
        retailer.used_credit = retailer.used_credit + amount
        self.assert_invariant(retailer)
        self.session.flush()

        logger.info(
            "credit_recognized",
            extra={
                "amount": str(amount),
                "used_credit": str(retailer.used_credit),
                "credit_limit": str(retailer.credit_limit),
            },
        )
        return retailer

    def release(self, retailer_id: UUID, amount) -> Decimal:
        """
        Release debt: ``used_credit -= amount``, floored at zero.

        Returns the amount actually released.
        """
        amount = to_money(amount)
        if amount < ZERO:
            raise ValidationError(f"released amount must not be negative, got {amount}", field="amount")

        retailer = self.lock_retailer(retailer_id)
        released = min(amount, retailer.used_credit)
        retailer.used_credit = retailer.used_credit - released
        self.assert_invariant(retailer)
        self.session.flush()

        if released < amount:
            logger.info(
                "credit_release_clamped",
                extra={
                    "requested": str(amount),
                    "released": str(released),
                },
            )
        logger.info(
            "credit_released",
            extra={
                "amount": str(released),
                "used_credit": str(retailer.used_credit),
            },
        )
        return released

    def recompute_standing(self, retailer: Retailer) -> None:
        """
        Refresh the cached credit_limit and tier from trust_score.

        Called at verification approval and after a qualifying repayment;
        nothing recomputes these on read.
        """
        old_limit, old_tier = retailer.credit_limit, retailer.tier
        retailer.recompute_standing(self.scoring_rules)
        self.assert_invariant(retailer)

        logger.info(
            "credit_standing_recomputed",
            extra={
                "retailer_id": str(retailer.id),
                "trust_score": retailer.trust_score,
                "old_limit": str(old_limit),
                "new_limit": str(retailer.credit_limit),
                "old_tier": str(old_tier),
                "new_tier": str(retailer.tier),
            },
        )

    def assert_invariant(self, retailer: Retailer) -> None:
        if not (ZERO <= retailer.used_credit <= retailer.credit_limit):
            logger.error(
                "credit_invariant_violation",
                extra={
                    "retailer_id": str(retailer.id),
                    "used_credit": str(retailer.used_credit),
                    "credit_limit": str(retailer.credit_limit),
                },
            )
            raise CreditInvariantViolationError(
                str(retailer.id), retailer.used_credit, retailer.credit_limit
            )
