"""
PayoutService -- vendor wallet withdrawals.

Responsibility:
    Vendors draw down the wallet credited by agent settlements.  A request
    snapshots the bank details; an admin later confirms (wallet debited,
    ``vendor_withdrawal`` transaction written) or rejects it.

Invariants enforced:
    At most one pending request per vendor: requests lock the vendor row,
        and a partial unique index refuses a second pending row.
    The wallet never goes negative: confirmation re-reads the vendor under
        lock.  If the balance no longer covers the request, the request is
        marked rejected and that rejection is committed even though the
        call raises InsufficientWalletBalanceError.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from amana_kernel.domain.dtos import WithdrawalInfo
from amana_kernel.domain.money import ZERO, to_money
from amana_kernel.domain.principal import Principal, Role
from amana_kernel.exceptions import (
    InsufficientWalletBalanceError,
    StateConflictError,
    ValidationError,
)
from amana_kernel.logging_config import get_logger
from amana_kernel.models.transaction import TransactionType
from amana_kernel.models.vendor import Vendor
from amana_kernel.models.withdrawal import WithdrawalRequest, WithdrawalStatus
from amana_kernel.services.base import BaseService, transition

logger = get_logger("services.payout")


class PayoutService(BaseService[WithdrawalRequest]):

    @transition("payout.request_withdrawal")
    def request_withdrawal(self, principal: Principal, amount: Decimal) -> WithdrawalInfo:
        principal.require_role(Role.VENDOR, "request withdrawal")
        try:
            amount = to_money(amount)
        except (TypeError, ValueError) as exc:
            raise ValidationError(str(exc), field="amount") from exc
        if amount <= ZERO:
            raise ValidationError("withdrawal amount must be positive", field="amount")

        # Vendor row lock serializes requests; the partial unique index backs it up
        vendor = self._lock(Vendor, principal.id, "Vendor")
        if not vendor.has_bank_details:
            raise ValidationError("bank details are required before withdrawing", field="bank_details")
        if amount > vendor.wallet_balance:
            raise InsufficientWalletBalanceError(str(vendor.id), amount, vendor.wallet_balance)

        pending = self.session.execute(
            select(WithdrawalRequest.id).where(
                WithdrawalRequest.vendor_id == vendor.id,
                WithdrawalRequest.status == WithdrawalStatus.PENDING.value,
            )
        ).first()
        if pending is not None:
            raise StateConflictError("WithdrawalRequest", str(pending.id), "pending", "request withdrawal")

        request = WithdrawalRequest(
            vendor_id=vendor.id,
            amount=amount,
            bank_name=vendor.bank_name,
            account_number=vendor.account_number,
            account_name=vendor.account_name,
            status=WithdrawalStatus.PENDING.value,
        )
        self.session.add(request)
        self.session.flush()

        logger.info(
            "withdrawal_requested",
            extra={"vendor_id": str(vendor.id), "withdrawal_id": str(request.id), "amount": str(amount)},
        )
        return request.to_dto()

    @transition("payout.confirm_withdrawal")
    def confirm_withdrawal(self, principal: Principal, request_id: UUID) -> WithdrawalInfo:
        """Admin marks the bank transfer done; the wallet is debited."""
        principal.require_role(Role.ADMIN, "confirm withdrawal")
        request = self._pending(request_id, "confirm")
        vendor = self._lock(Vendor, request.vendor_id, "Vendor")
        now = self.clock.now()

        if vendor.wallet_balance < request.amount:
            request.status = WithdrawalStatus.REJECTED.value
            request.admin_note = "Insufficient wallet balance at confirmation"
            request.approved_by_id = principal.id
            request.resolved_at = now
            self.session.flush()
            logger.warning(
                "withdrawal_rejected_insufficient_balance",
                extra={
                    "withdrawal_id": str(request.id),
                    "requested": str(request.amount),
                    "available": str(vendor.wallet_balance),
                },
            )
            raise InsufficientWalletBalanceError(str(vendor.id), request.amount, vendor.wallet_balance)

        with self.session.begin_nested():
            vendor.wallet_balance = vendor.wallet_balance - request.amount
            request.status = WithdrawalStatus.APPROVED.value
            request.approved_by_id = principal.id
            request.paid_at = now
            request.resolved_at = now
            self._record_transaction(
                TransactionType.VENDOR_WITHDRAWAL,
                request.amount,
                description=f"Withdrawal to {request.bank_name} {request.account_number}",
                details={"withdrawal_id": str(request.id)},
                vendor_id=vendor.id,
                actor_id=principal.id,
            )

        logger.info(
            "withdrawal_confirmed",
            extra={
                "withdrawal_id": str(request.id),
                "vendor_id": str(vendor.id),
                "amount": str(request.amount),
                "wallet_balance": str(vendor.wallet_balance),
            },
        )
        return request.to_dto()

    @transition("payout.reject_withdrawal")
    def reject_withdrawal(self, principal: Principal, request_id: UUID, note: str | None = None) -> WithdrawalInfo:
        principal.require_role(Role.ADMIN, "reject withdrawal")
        request = self._pending(request_id, "reject")
        request.status = WithdrawalStatus.REJECTED.value
        request.admin_note = note.strip() if note else None
        request.approved_by_id = principal.id
        request.resolved_at = self.clock.now()
        self.session.flush()

        logger.info("withdrawal_rejected", extra={"withdrawal_id": str(request.id)})
        return request.to_dto()

    def _pending(self, request_id: UUID, action: str) -> WithdrawalRequest:
        request = self._lock(WithdrawalRequest, request_id, "WithdrawalRequest")
        if request.status != WithdrawalStatus.PENDING:
            raise StateConflictError("WithdrawalRequest", str(request.id), request.status, action)
        return request
