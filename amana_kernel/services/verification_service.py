"""
VerificationService -- KYC review, where scoring seeds the credit ledger.

Responsibility:
    Moves retailer and vendor accounts through
    unsubmitted -> pending -> approved | rejected.  Approving a retailer
    computes the initial trust score from the stored onboarding signals and
    seeds ``credit_limit`` and ``tier`` through
    ``CreditLedger.recompute_standing``.  Also carries the admin flag edits
    (agent flag, ban flag) that gate who may transact.

Document upload and profile CRUD are outside the kernel; this service only
stores the scoring signals it needs.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from amana_kernel.domain.clock import Clock
from amana_kernel.domain.dtos import RetailerInfo, VendorInfo
from amana_kernel.domain.money import to_money
from amana_kernel.domain.principal import Principal, Role
from amana_kernel.domain.scoring import (
    DEFAULT_SCORING_RULES,
    BusinessSignals,
    CapitalTier,
    ScoringRules,
    calculate_initial_score,
)
from amana_kernel.exceptions import StateConflictError, ValidationError
from amana_kernel.logging_config import get_logger
from amana_kernel.models.retailer import Retailer, VerificationStatus
from amana_kernel.models.vendor import Vendor
from amana_kernel.services.base import BaseService, transition
from amana_kernel.services.credit_ledger import CreditLedger

logger = get_logger("services.verification")

_SUBMITTABLE = (VerificationStatus.UNSUBMITTED.value, VerificationStatus.REJECTED.value)


class VerificationService(BaseService[Retailer]):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        scoring_rules: ScoringRules = DEFAULT_SCORING_RULES,
    ):
        super().__init__(session, clock)
        self.scoring_rules = scoring_rules
        self.ledger = CreditLedger(session, self.clock, scoring_rules)

    # -- Retailers ------------------------------------------------------------

    @transition("verification.submit_for_verification")
    def submit_for_verification(
        self,
        principal: Principal,
        test_score: int,
        signals: BusinessSignals | None = None,
    ) -> RetailerInfo:
        """Store onboarding signals and queue the retailer for review."""
        principal.require_role(Role.RETAILER, "submit verification")
        retailer = self._get(Retailer, principal.id, "Retailer")

        if retailer.verification_status not in _SUBMITTABLE:
            raise StateConflictError(
                "Retailer", str(retailer.id), retailer.verification_status, "submit verification"
            )
        if not 0 <= test_score <= self.scoring_rules.max_test_score:
            raise ValidationError(
                f"test_score must be within [0, {self.scoring_rules.max_test_score}]",
                field="test_score",
            )

        signals = signals or BusinessSignals()
        retailer.test_score = test_score
        retailer.years_in_business = to_money(signals.years_in_business)
        retailer.has_physical_location = signals.has_physical_location
        retailer.starting_capital = (
            CapitalTier(signals.starting_capital).value if signals.starting_capital else None
        )
        retailer.verification_status = VerificationStatus.PENDING.value
        retailer.rejection_reason = None
        self.session.flush()

        logger.info(
            "retailer_verification_submitted",
            extra={"retailer_id": str(retailer.id), "test_score": test_score},
        )
        return retailer.to_dto()

    @transition("verification.approve_retailer")
    def approve_retailer(self, principal: Principal, retailer_id: UUID) -> RetailerInfo:
        """Approve KYC, compute the initial score and seed the ledger."""
        principal.require_role(Role.ADMIN, "approve retailer")
        retailer = self.ledger.lock_retailer(retailer_id)

        if retailer.verification_status != VerificationStatus.PENDING:
            raise StateConflictError(
                "Retailer", str(retailer.id), retailer.verification_status, "approve"
            )

        retailer.trust_score = calculate_initial_score(
            retailer.test_score or 0, retailer.business_signals, self.scoring_rules
        )
        self.ledger.recompute_standing(retailer)
        retailer.verification_status = VerificationStatus.APPROVED.value
        retailer.verified_at = self.clock.now()
        self.session.flush()

        logger.info(
            "retailer_approved",
            extra={
                "retailer_id": str(retailer.id),
                "actor_id": str(principal.id),
                "trust_score": retailer.trust_score,
                "credit_limit": str(retailer.credit_limit),
                "tier": retailer.tier,
            },
        )
        return retailer.to_dto()

    @transition("verification.reject_retailer")
    def reject_retailer(self, principal: Principal, retailer_id: UUID, reason: str) -> RetailerInfo:
        principal.require_role(Role.ADMIN, "reject retailer")
        if not reason or not reason.strip():
            raise ValidationError("rejection reason is required", field="reason")
        retailer = self._get(Retailer, retailer_id, "Retailer")

        if retailer.verification_status != VerificationStatus.PENDING:
            raise StateConflictError(
                "Retailer", str(retailer.id), retailer.verification_status, "reject"
            )

        retailer.verification_status = VerificationStatus.REJECTED.value
        retailer.rejection_reason = reason.strip()
        self.session.flush()

        logger.info(
            "retailer_rejected",
            extra={"retailer_id": str(retailer.id), "actor_id": str(principal.id)},
        )
        return retailer.to_dto()

    @transition("verification.set_agent_flag")
    def set_agent_flag(self, principal: Principal, retailer_id: UUID, is_agent: bool) -> RetailerInfo:
        principal.require_role(Role.ADMIN, "change agent flag")
        retailer = self._get(Retailer, retailer_id, "Retailer")
        retailer.is_agent = is_agent
        self.session.flush()
        logger.info(
            "retailer_agent_flag_changed",
            extra={"retailer_id": str(retailer.id), "is_agent": is_agent},
        )
        return retailer.to_dto()

    @transition("verification.set_active")
    def set_active(self, principal: Principal, retailer_id: UUID, is_active: bool) -> RetailerInfo:
        """Ban or unban a retailer account."""
        principal.require_role(Role.ADMIN, "change active flag")
        retailer = self._get(Retailer, retailer_id, "Retailer")
        retailer.is_active = is_active
        self.session.flush()
        logger.info(
            "retailer_active_flag_changed",
            extra={"retailer_id": str(retailer.id), "is_active": is_active},
        )
        return retailer.to_dto()

    # -- Vendors --------------------------------------------------------------

    @transition("verification.submit_vendor")
    def submit_vendor(self, principal: Principal) -> VendorInfo:
        principal.require_role(Role.VENDOR, "submit verification")
        vendor = self._get(Vendor, principal.id, "Vendor")
        if vendor.verification_status not in _SUBMITTABLE:
            raise StateConflictError(
                "Vendor", str(vendor.id), vendor.verification_status, "submit verification"
            )
        vendor.verification_status = VerificationStatus.PENDING.value
        vendor.rejection_reason = None
        self.session.flush()
        logger.info("vendor_verification_submitted", extra={"vendor_id": str(vendor.id)})
        return vendor.to_dto()

    @transition("verification.approve_vendor")
    def approve_vendor(self, principal: Principal, vendor_id: UUID) -> VendorInfo:
        principal.require_role(Role.ADMIN, "approve vendor")
        vendor = self._get(Vendor, vendor_id, "Vendor")
        if vendor.verification_status != VerificationStatus.PENDING:
            raise StateConflictError("Vendor", str(vendor.id), vendor.verification_status, "approve")
        vendor.verification_status = VerificationStatus.APPROVED.value
        self.session.flush()
        logger.info(
            "vendor_approved",
            extra={"vendor_id": str(vendor.id), "actor_id": str(principal.id)},
        )
        return vendor.to_dto()

    @transition("verification.reject_vendor")
    def reject_vendor(self, principal: Principal, vendor_id: UUID, reason: str) -> VendorInfo:
        principal.require_role(Role.ADMIN, "reject vendor")
        if not reason or not reason.strip():
            raise ValidationError("rejection reason is required", field="reason")
        vendor = self._get(Vendor, vendor_id, "Vendor")
        if vendor.verification_status != VerificationStatus.PENDING:
            raise StateConflictError("Vendor", str(vendor.id), vendor.verification_status, "reject")
        vendor.verification_status = VerificationStatus.REJECTED.value
        vendor.rejection_reason = reason.strip()
        self.session.flush()
        logger.info(
            "vendor_rejected",
            extra={"vendor_id": str(vendor.id), "actor_id": str(principal.id)},
        )
        return vendor.to_dto()
