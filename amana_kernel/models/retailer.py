"""
Module: amana_kernel.models.retailer
Responsibility: ORM persistence for retailer accounts, which carry the
    credit ledger (credit_limit, used_credit) and the trust-scoring state.
    Agents are retailers with ``is_agent`` set.
Architecture position: Kernel > Models.  May import from db/ and the pure
    domain layer.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    CREDIT_BOUND -- check constraints keep 0 <= used_credit <= credit_limit
        at the database level; CreditLedger enforces it before flush.
    credit_limit and tier are cached values.  They change only through
        ``recompute_standing()``, called at verification approval and after
        a qualifying repayment, never on read.

Failure modes:
    - IntegrityError on duplicate email (uq_retailer_email).
    - IntegrityError (check constraint) if a write bypasses CreditLedger and
      breaches the credit bound.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from amana_kernel.db.base import TrackedBase
from amana_kernel.domain.scoring import (
    DEFAULT_SCORING_RULES,
    BusinessSignals,
    CapitalTier,
    ScoringRules,
    Tier,
    determine_credit_limit,
    determine_tier,
)


class VerificationStatus(str, Enum):
    """KYC lifecycle: UNSUBMITTED -> PENDING -> APPROVED | REJECTED."""

    UNSUBMITTED = "unsubmitted"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Retailer(TrackedBase):
    """
    Retailer account and its credit ledger.

    ``used_credit`` is mutated exclusively through CreditLedger; profile
    edits never touch it.
    """

    __tablename__ = "retailers"

    __table_args__ = (
        UniqueConstraint("email", name="uq_retailer_email"),
        CheckConstraint("used_credit >= 0", name="ck_retailer_used_credit_non_negative"),
        CheckConstraint("used_credit <= credit_limit", name="ck_retailer_used_credit_within_limit"),
        CheckConstraint("trust_score >= 0 AND trust_score <= 100", name="ck_retailer_trust_score_range"),
        CheckConstraint("wallet_balance >= 0", name="ck_retailer_wallet_non_negative"),
        Index("idx_retailer_agent", "is_agent", "is_active"),
    )

    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Trust scoring
    trust_score: Mapped[int] = mapped_column(nullable=False, default=0)
    tier: Mapped[Tier] = mapped_column(String(10), nullable=False, default=Tier.BRONZE.value)
    repayment_streak: Mapped[int] = mapped_column(nullable=False, default=0)
    total_repaid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Credit ledger
    credit_limit: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    used_credit: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Cash balance, e.g. agent-proxy funds; unrelated to the credit ledger
    wallet_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    verification_status: Mapped[VerificationStatus] = mapped_column(
        String(20),
        nullable=False,
        default=VerificationStatus.UNSUBMITTED.value,
    )
    rejection_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(nullable=True)

    is_agent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Onboarding signals
    test_score: Mapped[int | None] = mapped_column(nullable=True)
    years_in_business: Mapped[Decimal | None] = mapped_column(nullable=True)
    has_physical_location: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    starting_capital: Mapped[str | None] = mapped_column(String(10), nullable=True)

    # Dual-role profile: the vendor account this retailer also operates
    linked_vendor_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("vendors.id"),
        nullable=True,
    )

    @property
    def available_credit(self) -> Decimal:
        return self.credit_limit - self.used_credit

    @property
    def is_approved(self) -> bool:
        return self.verification_status == VerificationStatus.APPROVED

    @property
    def business_signals(self) -> BusinessSignals:
        return BusinessSignals(
            years_in_business=self.years_in_business or Decimal("0"),
            has_physical_location=bool(self.has_physical_location),
            starting_capital=CapitalTier(self.starting_capital) if self.starting_capital else None,
        )

    def recompute_standing(self, rules: ScoringRules = DEFAULT_SCORING_RULES) -> None:
        """Refresh the cached credit_limit and tier from trust_score."""
        self.credit_limit = determine_credit_limit(self.trust_score, rules)
        self.tier = determine_tier(self.trust_score, rules).value

    def to_dto(self):
        from amana_kernel.domain.dtos import RetailerInfo

        return RetailerInfo(
            id=self.id,
            email=self.email,
            name=self.name,
            trust_score=self.trust_score,
            tier=Tier(self.tier).value,
            credit_limit=self.credit_limit,
            used_credit=self.used_credit,
            wallet_balance=self.wallet_balance,
            verification_status=VerificationStatus(self.verification_status).value,
            is_agent=self.is_agent,
            is_active=self.is_active,
            repayment_streak=self.repayment_streak,
            total_repaid=self.total_repaid,
        )

    def __repr__(self) -> str:
        return f"<Retailer {self.email}: score={self.trust_score} used={self.used_credit}/{self.credit_limit}>"
