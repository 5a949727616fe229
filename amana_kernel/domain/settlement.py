"""
Settlement policy -- windows, tolerances and code lengths.

Pure value object consumed by the Order, Agent Purchase and Reconciliation
services.  amana_config bridges YAML policy into an instance of this class.
"""

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class SettlementRules:
    order_due_days: int = 14
    aap_disbursement_window_minutes: int = 60
    aap_repayment_terms: tuple[int, ...] = (3, 7, 14)
    payment_tolerance: Decimal = Decimal("0.5")
    order_pickup_code_length: int = 4
    aap_pickup_code_length: int = 6
    disbursement_methods: tuple[str, ...] = ("bank_transfer", "cash", "mobile_money")
    disbursement_reference_prefix: str = "AAP-"


DEFAULT_SETTLEMENT_RULES = SettlementRules()
