"""
Tests for VerificationService -- KYC review seeds the trust score and ledger.
"""

from decimal import Decimal

import pytest

from amana_kernel.domain.scoring import BusinessSignals, CapitalTier
from amana_kernel.exceptions import AuthorizationError, StateConflictError, ValidationError
from tests.conftest import principal_for


@pytest.fixture
def applicant(make_retailer):
    return make_retailer(trust_score=0, verification_status="unsubmitted")


class TestRetailerVerification:

    def test_submit_queues_for_review(self, verification_service, applicant):
        info = verification_service.submit_for_verification(principal_for(applicant), 60)
        assert info.verification_status == "pending"
        assert applicant.test_score == 60

    def test_approval_scores_and_seeds_ledger(self, verification_service, applicant, admin):
        signals = BusinessSignals(
            years_in_business=Decimal("3"),
            has_physical_location=True,
            starting_capital=CapitalTier.HIGH,
        )
        verification_service.submit_for_verification(principal_for(applicant), 60, signals)

        approved = verification_service.approve_retailer(admin, applicant.id)

        # 32 psychometric + 30 business + 25 KYC
        assert approved.trust_score == 87
        assert approved.tier == "Gold"
        assert approved.credit_limit == Decimal("52200")
        assert approved.used_credit == Decimal("0")
        assert approved.verification_status == "approved"

    def test_no_business_signals(self, verification_service, applicant, admin):
        verification_service.submit_for_verification(principal_for(applicant), 75)
        approved = verification_service.approve_retailer(admin, applicant.id)
        assert approved.trust_score == 65
        assert approved.tier == "Silver"
        assert approved.credit_limit == Decimal("39000")

    def test_low_score_gets_no_credit(self, verification_service, applicant, admin):
        verification_service.submit_for_verification(principal_for(applicant), 0)
        approved = verification_service.approve_retailer(admin, applicant.id)
        assert approved.trust_score == 25
        assert approved.tier == "Bronze"
        assert approved.credit_limit == Decimal("0")

    @pytest.mark.parametrize("test_score", [-1, 76])
    def test_out_of_range_test_score(self, verification_service, applicant, test_score):
        with pytest.raises(ValidationError):
            verification_service.submit_for_verification(principal_for(applicant), test_score)

    def test_cannot_resubmit_while_approved(self, verification_service, make_retailer):
        approved = make_retailer()
        with pytest.raises(StateConflictError):
            verification_service.submit_for_verification(principal_for(approved), 50)

    def test_approve_requires_pending(self, verification_service, applicant, admin):
        with pytest.raises(StateConflictError):
            verification_service.approve_retailer(admin, applicant.id)

    def test_reject_then_resubmit(self, verification_service, applicant, admin):
        principal = principal_for(applicant)
        verification_service.submit_for_verification(principal, 40)

        rejected = verification_service.reject_retailer(admin, applicant.id, "Blurry ID")
        assert rejected.verification_status == "rejected"
        assert applicant.rejection_reason == "Blurry ID"

        again = verification_service.submit_for_verification(principal, 50)
        assert again.verification_status == "pending"
        assert applicant.rejection_reason is None

    def test_reject_requires_reason(self, verification_service, applicant, admin):
        verification_service.submit_for_verification(principal_for(applicant), 40)
        with pytest.raises(ValidationError):
            verification_service.reject_retailer(admin, applicant.id, "  ")

    def test_only_admins_review(self, verification_service, applicant):
        principal = principal_for(applicant)
        verification_service.submit_for_verification(principal, 40)
        with pytest.raises(AuthorizationError):
            verification_service.approve_retailer(principal, applicant.id)


class TestAdminFlags:

    def test_promote_to_agent(self, verification_service, make_retailer, admin):
        retailer = make_retailer()
        assert verification_service.set_agent_flag(admin, retailer.id, True).is_agent is True

    def test_ban(self, verification_service, make_retailer, admin):
        retailer = make_retailer()
        assert verification_service.set_active(admin, retailer.id, False).is_active is False


class TestVendorVerification:

    def test_submit_and_approve(self, verification_service, make_vendor, admin):
        vendor = make_vendor(verification_status="unsubmitted")
        assert verification_service.submit_vendor(principal_for(vendor)).verification_status == "pending"
        assert verification_service.approve_vendor(admin, vendor.id).verification_status == "approved"

    def test_reject(self, verification_service, make_vendor, admin):
        vendor = make_vendor(verification_status="pending")
        rejected = verification_service.reject_vendor(admin, vendor.id, "Unregistered business")
        assert rejected.verification_status == "rejected"
