"""
Module: amana_kernel.models.order
Responsibility: ORM persistence for marketplace orders and their lines.
Architecture position: Kernel > Models.

Orders are never deleted; cancelled and repaid rows remain as audit trail.
``status`` (fulfilment) and ``is_paid`` (payment) are independent facts: a
goods_received order may be paid and later marked completed, or completed
and later repaid.

Order satisfies the ``Obligation`` protocol used by reconciliation.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from amana_kernel.db.base import TrackedBase
from amana_kernel.domain.workflow import OrderStatus

# Statuses in which the retailer's debt for the order has been recognized
DEBT_RECOGNIZED_STATUSES = (
    OrderStatus.GOODS_RECEIVED.value,
    OrderStatus.COMPLETED.value,
    OrderStatus.DEFAULTED.value,
)

# Statuses reconciliation will settle against (when unpaid)
PAYABLE_ORDER_STATUSES = (OrderStatus.READY_FOR_PICKUP.value,) + DEBT_RECOGNIZED_STATUSES

# A payment naming one of these orders settles nothing
CLOSED_ORDER_STATUSES = (OrderStatus.CANCELLED.value, OrderStatus.REPAID.value)


class Order(TrackedBase):
    """Retailer purchase from a single vendor, financed on credit."""

    __tablename__ = "orders"

    __table_args__ = (
        Index("idx_order_retailer_status", "retailer_id", "status", "is_paid"),
        Index("idx_order_vendor", "vendor_id"),
        Index("idx_order_agent", "agent_id"),
    )

    retailer_id: Mapped[UUID] = mapped_column(ForeignKey("retailers.id"), nullable=False)
    vendor_id: Mapped[UUID] = mapped_column(ForeignKey("vendors.id"), nullable=False)
    agent_id: Mapped[UUID | None] = mapped_column(ForeignKey("retailers.id"), nullable=True)

    # Vendor's cut; what the agent settles
    items_price: Mapped[Decimal] = mapped_column(nullable=False)
    markup_percentage: Mapped[Decimal] = mapped_column(nullable=False)
    markup_amount: Mapped[Decimal] = mapped_column(nullable=False)
    # items_price + markup_amount; what the retailer owes
    total_repayment_amount: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[OrderStatus] = mapped_column(
        String(32),
        nullable=False,
        default=OrderStatus.PENDING_VENDOR.value,
    )
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(nullable=True)
    pickup_code: Mapped[str | None] = mapped_column(String(10), nullable=True)

    agent_assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    vendor_settled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    goods_received_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    defaulted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    lines: Mapped[list["OrderLine"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.line_number",
    )

    # -- Obligation -----------------------------------------------------------

    @property
    def obligation_kind(self) -> str:
        return "order"

    @property
    def amount_due(self) -> Decimal:
        return self.total_repayment_amount

    @property
    def obligation_due_date(self) -> datetime | None:
        return self.due_date

    @property
    def owner_id(self) -> UUID:
        return self.retailer_id

    @property
    def debt_recognized(self) -> bool:
        return self.status in DEBT_RECOGNIZED_STATUSES

    def mark_paid(self, at: datetime) -> None:
        """
        Record full payment.

        Only an order whose debt has been recognized closes as ``repaid``.
        A ready_for_pickup order is stamped paid and continues through
        fulfilment; its receipt then recognizes no debt.
        """
        was_recognized = self.debt_recognized
        self.is_paid = True
        self.paid_at = at
        if was_recognized:
            self.status = OrderStatus.REPAID.value

    def to_dto(self):
        from amana_kernel.domain.dtos import OrderInfo, OrderLineInfo

        return OrderInfo(
            id=self.id,
            retailer_id=self.retailer_id,
            vendor_id=self.vendor_id,
            agent_id=self.agent_id,
            status=OrderStatus(self.status).value,
            items_price=self.items_price,
            markup_percentage=self.markup_percentage,
            markup_amount=self.markup_amount,
            total_repayment_amount=self.total_repayment_amount,
            is_paid=self.is_paid,
            due_date=self.due_date,
            pickup_code=self.pickup_code,
            lines=tuple(
                OrderLineInfo(
                    product_id=line.product_id,
                    name=line.name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                )
                for line in self.lines
            ),
        )

    def __repr__(self) -> str:
        return f"<Order {self.id}: {self.status} {self.total_repayment_amount}>"


class OrderLine(TrackedBase):
    """One product line; name and unit price are snapshotted at checkout."""

    __tablename__ = "order_lines"

    order_id: Mapped[UUID] = mapped_column(ForeignKey("orders.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(nullable=False)
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)

    order: Mapped["Order"] = relationship(back_populates="lines")
