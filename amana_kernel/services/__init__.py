"""Services for the amana kernel."""

from amana_kernel.services.agent_purchase_service import AgentPurchaseDraft, AgentPurchaseService
from amana_kernel.services.credit_ledger import CreditLedger
from amana_kernel.services.order_service import OrderLineRequest, OrderService
from amana_kernel.services.payout_service import PayoutService
from amana_kernel.services.reconciliation_service import (
    PaymentConfirmation,
    PaymentMetadata,
    ReconciliationResult,
    ReconciliationService,
    SettledObligation,
)
from amana_kernel.services.transaction_history_service import TransactionHistoryService
from amana_kernel.services.verification_service import VerificationService

__all__ = [
    "AgentPurchaseDraft",
    "AgentPurchaseService",
    "CreditLedger",
    "OrderLineRequest",
    "OrderService",
    "PaymentConfirmation",
    "PaymentMetadata",
    "PayoutService",
    "ReconciliationResult",
    "ReconciliationService",
    "SettledObligation",
    "TransactionHistoryService",
    "VerificationService",
]
