"""
Immutable DTOs returned by kernel services.

Pure domain objects with no ORM dependencies; ORM models build them through
``to_dto()``.  Callers outside the kernel never hold live ORM rows.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID


@dataclass(frozen=True)
class RetailerInfo:
    id: UUID
    email: str
    name: str
    trust_score: int
    tier: str
    credit_limit: Decimal
    used_credit: Decimal
    wallet_balance: Decimal
    verification_status: str
    is_agent: bool
    is_active: bool
    repayment_streak: int
    total_repaid: Decimal

    @property
    def available_credit(self) -> Decimal:
        return self.credit_limit - self.used_credit


@dataclass(frozen=True)
class VendorInfo:
    id: UUID
    email: str
    business_name: str
    wallet_balance: Decimal
    verification_status: str
    is_active: bool


@dataclass(frozen=True)
class OrderLineInfo:
    product_id: UUID
    name: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class OrderInfo:
    id: UUID
    retailer_id: UUID
    vendor_id: UUID
    agent_id: UUID | None
    status: str
    items_price: Decimal
    markup_percentage: Decimal
    markup_amount: Decimal
    total_repayment_amount: Decimal
    is_paid: bool
    due_date: datetime | None
    pickup_code: str | None
    lines: tuple[OrderLineInfo, ...] = ()


@dataclass(frozen=True)
class AgentPurchaseInfo:
    id: UUID
    agent_id: UUID
    retailer_id: UUID | None
    status: str
    product_name: str
    quantity: int
    purchase_price: Decimal
    repayment_term: int
    markup_percentage: Decimal | None
    markup_amount: Decimal | None
    total_retailer_cost: Decimal | None
    disbursement_method: str | None
    disbursement_reference: str | None
    expires_at: datetime | None
    due_date: datetime | None
    is_paid: bool
    decline_reason: str | None
    pickup_code: str | None = None
    product_photos: tuple[str, ...] = ()


@dataclass(frozen=True)
class LedgerTransactionInfo:
    id: UUID
    type: str
    amount: Decimal
    reference: str | None
    retailer_id: UUID | None
    vendor_id: UUID | None
    order_id: UUID | None
    agent_purchase_id: UUID | None
    description: str
    details: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass(frozen=True)
class WithdrawalInfo:
    id: UUID
    vendor_id: UUID
    amount: Decimal
    status: str
    bank_name: str
    account_number: str
    account_name: str
    admin_note: str | None
    paid_at: datetime | None
