"""
Module: amana_kernel.models.withdrawal
Responsibility: Vendor requests to draw down their wallet to a bank account.
    Bank details are snapshotted at request time so later profile edits do
    not redirect an approved payout.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from amana_kernel.db.base import TrackedBase, UUIDString


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WithdrawalRequest(TrackedBase):

    __tablename__ = "withdrawal_requests"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_withdrawal_amount_positive"),
        Index("idx_withdrawal_vendor_status", "vendor_id", "status"),
        # At most one pending request per vendor
        Index(
            "uq_withdrawal_one_pending",
            "vendor_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    vendor_id: Mapped[UUID] = mapped_column(ForeignKey("vendors.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    bank_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_number: Mapped[str] = mapped_column(String(50), nullable=False)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[WithdrawalStatus] = mapped_column(
        String(20),
        nullable=False,
        default=WithdrawalStatus.PENDING.value,
    )
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    admin_note: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self):
        from amana_kernel.domain.dtos import WithdrawalInfo

        return WithdrawalInfo(
            id=self.id,
            vendor_id=self.vendor_id,
            amount=self.amount,
            status=WithdrawalStatus(self.status).value,
            bank_name=self.bank_name,
            account_number=self.account_number,
            account_name=self.account_name,
            admin_note=self.admin_note,
            paid_at=self.paid_at,
        )
