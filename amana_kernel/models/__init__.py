"""ORM models for the credit engine."""

from amana_kernel.models.agent_purchase import AgentPurchase
from amana_kernel.models.order import (
    DEBT_RECOGNIZED_STATUSES,
    PAYABLE_ORDER_STATUSES,
    Order,
    OrderLine,
)
from amana_kernel.models.retailer import Retailer, VerificationStatus
from amana_kernel.models.transaction import LedgerTransaction, TransactionType
from amana_kernel.models.vendor import Product, Vendor
from amana_kernel.models.withdrawal import WithdrawalRequest, WithdrawalStatus

__all__ = [
    "AgentPurchase",
    "DEBT_RECOGNIZED_STATUSES",
    "LedgerTransaction",
    "Order",
    "OrderLine",
    "PAYABLE_ORDER_STATUSES",
    "Product",
    "Retailer",
    "TransactionType",
    "Vendor",
    "VerificationStatus",
    "WithdrawalRequest",
    "WithdrawalStatus",
]
