"""
Module: amana_kernel.models.agent_purchase
Responsibility: ORM persistence for Agent-Assisted Purchases (AAP): an
    off-platform deal captured by a field agent and financed for a retailer.
Architecture position: Kernel > Models.

``expires_at`` is the hard end of the disbursement window; past it no
delivery is accepted.  ``due_date`` is only set once the retailer confirms
receipt with the pickup code.

AgentPurchase satisfies the ``Obligation`` protocol used by reconciliation.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from amana_kernel.db.base import TrackedBase, UUIDString
from amana_kernel.domain.workflow import AgentPurchaseStatus

# A payment naming one of these purchases settles nothing
CLOSED_AAP_STATUSES = (
    AgentPurchaseStatus.DRAFT.value,
    AgentPurchaseStatus.COMPLETED.value,
    AgentPurchaseStatus.DECLINED.value,
    AgentPurchaseStatus.EXPIRED.value,
)


class AgentPurchase(TrackedBase):

    __tablename__ = "agent_purchases"

    __table_args__ = (
        CheckConstraint("purchase_price > 0", name="ck_aap_price_positive"),
        CheckConstraint("quantity >= 1", name="ck_aap_quantity_positive"),
        Index("idx_aap_status_expiry", "status", "expires_at"),
        Index("idx_aap_retailer_status", "retailer_id", "status", "is_paid"),
        Index("idx_aap_agent", "agent_id"),
    )

    agent_id: Mapped[UUID] = mapped_column(ForeignKey("retailers.id"), nullable=False)
    retailer_id: Mapped[UUID | None] = mapped_column(ForeignKey("retailers.id"), nullable=True)
    # Admins are identity-provider principals, not rows here
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Deal capture
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_description: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    quantity: Mapped[int] = mapped_column(nullable=False, default=1)
    product_photos: Mapped[list[str]] = mapped_column(nullable=False, default=list)
    seller_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    seller_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    seller_location: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Financing
    purchase_price: Mapped[Decimal] = mapped_column(nullable=False)
    repayment_term: Mapped[int] = mapped_column(nullable=False, default=14)
    markup_percentage: Mapped[Decimal | None] = mapped_column(nullable=True)
    markup_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    total_retailer_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Disbursement
    disbursed_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    disbursement_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    disbursement_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[AgentPurchaseStatus] = mapped_column(
        String(32),
        nullable=False,
        default=AgentPurchaseStatus.DRAFT.value,
    )
    decline_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    declined_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    pickup_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(nullable=True)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    retailer_linked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    retailer_confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    admin_approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    fund_disbursed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(nullable=True)
    declined_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def is_past_window(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    # -- Obligation -----------------------------------------------------------

    @property
    def obligation_kind(self) -> str:
        return "agent_purchase"

    @property
    def amount_due(self) -> Decimal:
        return self.total_retailer_cost or Decimal("0")

    @property
    def obligation_due_date(self) -> datetime | None:
        return self.due_date

    @property
    def owner_id(self) -> UUID | None:
        return self.retailer_id

    def mark_paid(self, at: datetime) -> None:
        """
        Record full payment.

        A received purchase completes.  One paid before receipt is only
        stamped paid; its receipt then recognizes no debt.
        """
        self.is_paid = True
        self.paid_at = at
        if self.status == AgentPurchaseStatus.RECEIVED.value:
            self.completed_at = at
            self.status = AgentPurchaseStatus.COMPLETED.value

    def to_dto(self):
        from amana_kernel.domain.dtos import AgentPurchaseInfo

        return AgentPurchaseInfo(
            id=self.id,
            agent_id=self.agent_id,
            retailer_id=self.retailer_id,
            status=AgentPurchaseStatus(self.status).value,
            product_name=self.product_name,
            quantity=self.quantity,
            purchase_price=self.purchase_price,
            repayment_term=self.repayment_term,
            markup_percentage=self.markup_percentage,
            markup_amount=self.markup_amount,
            total_retailer_cost=self.total_retailer_cost,
            disbursement_method=self.disbursement_method,
            disbursement_reference=self.disbursement_reference,
            expires_at=self.expires_at,
            due_date=self.due_date,
            is_paid=self.is_paid,
            decline_reason=self.decline_reason,
            pickup_code=self.pickup_code,
            product_photos=tuple(self.product_photos or ()),
        )

    def __repr__(self) -> str:
        return f"<AgentPurchase {self.id}: {self.status} {self.purchase_price}>"
