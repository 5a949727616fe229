"""
Module: amana_kernel.models.transaction
Responsibility: Append-only ledger of every financial event: loan
    disbursements, repayments, vendor payouts, agent fund disbursements and
    vendor withdrawals.
Architecture position: Kernel > Models.

Invariants enforced:
    LEDGER_IMMUTABILITY -- rows are never updated or deleted
        (db/immutability.py listeners).
    PAYMENT_IDEMPOTENCY -- ``reference`` is unique.  It holds the payment
        gateway's id for repayments and stays NULL for internally
        originated events, so it is the final arbiter when two gateway
        callbacks race.
"""

from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from amana_kernel.db.base import TrackedBase, UUIDString


class TransactionType(str, Enum):
    LOAN_DISBURSEMENT = "loan_disbursement"
    REPAYMENT = "repayment"
    VENDOR_PAYOUT = "vendor_payout"
    AGENT_FUND_DISBURSEMENT = "agent_fund_disbursement"
    VENDOR_WITHDRAWAL = "vendor_withdrawal"


class LedgerTransaction(TrackedBase):

    __tablename__ = "ledger_transactions"

    __table_args__ = (
        UniqueConstraint("reference", name="uq_ledger_transaction_reference"),
        Index("idx_ledger_tx_retailer", "retailer_id"),
        Index("idx_ledger_tx_vendor", "vendor_id"),
        Index("idx_ledger_tx_type", "type"),
    )

    type: Mapped[TransactionType] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    retailer_id: Mapped[UUID | None] = mapped_column(ForeignKey("retailers.id"), nullable=True)
    vendor_id: Mapped[UUID | None] = mapped_column(ForeignKey("vendors.id"), nullable=True)
    order_id: Mapped[UUID | None] = mapped_column(ForeignKey("orders.id"), nullable=True)
    agent_purchase_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("agent_purchases.id"),
        nullable=True,
    )
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    description: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    # Outcome snapshot (e.g. resulting score/tier for repayments)
    details: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    def to_dto(self):
        from amana_kernel.domain.dtos import LedgerTransactionInfo

        return LedgerTransactionInfo(
            id=self.id,
            type=TransactionType(self.type).value,
            amount=self.amount,
            reference=self.reference,
            retailer_id=self.retailer_id,
            vendor_id=self.vendor_id,
            order_id=self.order_id,
            agent_purchase_id=self.agent_purchase_id,
            description=self.description,
            details=dict(self.details or {}),
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<LedgerTransaction {self.type} {self.amount} ref={self.reference}>"
