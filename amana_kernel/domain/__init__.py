"""
Pure domain layer.

Scoring rules, state-machine definitions, obligation allocation, money
helpers and the DTOs services return.  No ORM, no database, no I/O; time
arrives only through ``Clock``.
"""

from amana_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from amana_kernel.domain.dtos import (
    AgentPurchaseInfo,
    LedgerTransactionInfo,
    OrderInfo,
    OrderLineInfo,
    RetailerInfo,
    VendorInfo,
    WithdrawalInfo,
)
from amana_kernel.domain.money import ZERO, round_money, to_money
from amana_kernel.domain.notifier import LoggingNotifier, Notifier
from amana_kernel.domain.obligation import Allocation, Obligation, allocate_payment, order_obligations
from amana_kernel.domain.principal import Principal, Role
from amana_kernel.domain.scoring import (
    DEFAULT_SCORING_RULES,
    BusinessSignals,
    CapitalTier,
    ScoringRules,
    Tier,
    calculate_initial_score,
    calculate_score_growth,
    compute_markup,
    determine_credit_limit,
    determine_markup,
    determine_tier,
    qualifies_for_growth,
)
from amana_kernel.domain.settlement import DEFAULT_SETTLEMENT_RULES, SettlementRules
from amana_kernel.domain.workflow import (
    AAP_WORKFLOW,
    ORDER_WORKFLOW,
    AgentPurchaseStatus,
    OrderStatus,
    Transition,
    Workflow,
)

__all__ = [
    "AAP_WORKFLOW",
    "AgentPurchaseInfo",
    "AgentPurchaseStatus",
    "Allocation",
    "BusinessSignals",
    "CapitalTier",
    "Clock",
    "DEFAULT_SCORING_RULES",
    "DEFAULT_SETTLEMENT_RULES",
    "DeterministicClock",
    "LedgerTransactionInfo",
    "LoggingNotifier",
    "Notifier",
    "ORDER_WORKFLOW",
    "Obligation",
    "OrderInfo",
    "OrderLineInfo",
    "OrderStatus",
    "Principal",
    "RetailerInfo",
    "Role",
    "ScoringRules",
    "SettlementRules",
    "SystemClock",
    "Tier",
    "Transition",
    "VendorInfo",
    "WithdrawalInfo",
    "Workflow",
    "ZERO",
    "allocate_payment",
    "calculate_initial_score",
    "calculate_score_growth",
    "compute_markup",
    "determine_credit_limit",
    "determine_markup",
    "determine_tier",
    "order_obligations",
    "qualifies_for_growth",
    "round_money",
    "to_money",
]
