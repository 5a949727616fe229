"""
Module: amana_kernel.models.vendor
Responsibility: ORM persistence for vendor accounts and their catalogue.
    The vendor wallet accumulates from agent settlements and is drawn down
    by approved withdrawals.
Architecture position: Kernel > Models.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from amana_kernel.db.base import TrackedBase
from amana_kernel.models.retailer import VerificationStatus


class Vendor(TrackedBase):

    __tablename__ = "vendors"

    __table_args__ = (
        UniqueConstraint("email", name="uq_vendor_email"),
        CheckConstraint("wallet_balance >= 0", name="ck_vendor_wallet_non_negative"),
    )

    email: Mapped[str] = mapped_column(String(255), nullable=False)
    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    wallet_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    verification_status: Mapped[VerificationStatus] = mapped_column(
        String(20),
        nullable=False,
        default=VerificationStatus.UNSUBMITTED.value,
    )
    rejection_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Payout destination
    bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    @property
    def has_bank_details(self) -> bool:
        return bool(self.bank_name and self.account_number and self.account_name)

    def to_dto(self):
        from amana_kernel.domain.dtos import VendorInfo

        return VendorInfo(
            id=self.id,
            email=self.email,
            business_name=self.business_name,
            wallet_balance=self.wallet_balance,
            verification_status=VerificationStatus(self.verification_status).value,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<Vendor {self.email}: wallet={self.wallet_balance}>"


class Product(TrackedBase):
    """
    Catalogue item.

    ``count_in_stock`` is decremented only by a conditional UPDATE in
    OrderService, and the check constraint backs that up.
    """

    __tablename__ = "products"

    __table_args__ = (
        CheckConstraint("count_in_stock >= 0", name="ck_product_stock_non_negative"),
        CheckConstraint("price > 0", name="ck_product_price_positive"),
        Index("idx_product_vendor", "vendor_id"),
    )

    vendor_id: Mapped[UUID] = mapped_column(ForeignKey("vendors.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(nullable=False)
    count_in_stock: Mapped[int] = mapped_column(nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Product {self.name}: {self.price} x{self.count_in_stock}>"
