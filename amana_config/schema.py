"""
PlatformConfig schema.

Typed, frozen view of ``defaults.yaml`` (or an override file).  The loader
parses YAML into these types; ``bridges`` turns them into the kernel's
``ScoringRules`` and ``SettlementRules``.  Nothing here imports the kernel.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class YearsStep:
    min_years: Decimal
    points: int


@dataclass(frozen=True)
class MarkupStep:
    min_score: int
    percentage: Decimal


@dataclass(frozen=True)
class TermDiscount:
    max_days: int
    multiplier: Decimal


@dataclass(frozen=True)
class StreakBonus:
    streak_above: int
    bonus: int


@dataclass(frozen=True)
class ScoringConfig:
    max_test_score: int
    psychometric_points: Decimal
    years_in_business: tuple[YearsStep, ...]
    physical_location_points: int
    starting_capital_points: tuple[tuple[str, int], ...]
    business_cap: int
    kyc_bonus: int
    max_score: int

    credit_gate: int
    credit_per_point: Decimal
    credit_ceiling: Decimal

    gold_threshold: int
    silver_threshold: int

    markup_ladder: tuple[MarkupStep, ...]
    markup_default: Decimal
    markup_floor: Decimal
    term_discounts: tuple[TermDiscount, ...]

    growth_base: int
    streak_bonuses: tuple[StreakBonus, ...]
    growth_threshold: Decimal


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SettlementConfig:
    order_due_days: int
    aap_disbursement_window_minutes: int
    aap_repayment_terms: tuple[int, ...]
    payment_tolerance: Decimal
    order_pickup_code_length: int
    aap_pickup_code_length: int
    disbursement_methods: tuple[str, ...]
    disbursement_reference_prefix: str


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SchedulerConfig:
    sweep_interval_seconds: int = 300
    jobs: tuple[str, ...] = ("aap_expiry", "overdue_orders")


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlatformConfig:
    """The single runtime configuration artifact."""

    config_id: str
    version: int
    scoring: ScoringConfig
    settlement: SettlementConfig
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    checksum: str = ""
