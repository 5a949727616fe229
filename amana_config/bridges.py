"""
Config -> Kernel Bridges.

Convert a ``PlatformConfig`` into the kernel's rule value objects.  These
live in amana_config (the producer) because the kernel must NEVER import
amana_config.

Usage:
    from amana_config import get_active_config
    from amana_config.bridges import to_scoring_rules, to_settlement_rules

    config = get_active_config()
    orders = OrderService(session, clock, to_scoring_rules(config), to_settlement_rules(config))
"""

from __future__ import annotations

from amana_config.schema import PlatformConfig
from amana_kernel.domain.scoring import CapitalTier, ScoringRules
from amana_kernel.domain.settlement import SettlementRules


def to_scoring_rules(config: PlatformConfig) -> ScoringRules:
    s = config.scoring
    return ScoringRules(
        max_test_score=s.max_test_score,
        psychometric_points=s.psychometric_points,
        years_ladder=tuple((step.min_years, step.points) for step in s.years_in_business),
        physical_location_points=s.physical_location_points,
        capital_points={CapitalTier(tier): points for tier, points in s.starting_capital_points},
        business_cap=s.business_cap,
        kyc_bonus=s.kyc_bonus,
        max_score=s.max_score,
        credit_gate=s.credit_gate,
        credit_per_point=s.credit_per_point,
        credit_ceiling=s.credit_ceiling,
        gold_threshold=s.gold_threshold,
        silver_threshold=s.silver_threshold,
        markup_ladder=tuple((step.min_score, step.percentage) for step in s.markup_ladder),
        markup_default=s.markup_default,
        term_discounts=tuple((d.max_days, d.multiplier) for d in s.term_discounts),
        markup_floor=s.markup_floor,
        growth_base=s.growth_base,
        streak_bonuses=tuple((b.streak_above, b.bonus) for b in s.streak_bonuses),
        growth_threshold=s.growth_threshold,
    )


def to_settlement_rules(config: PlatformConfig) -> SettlementRules:
    s = config.settlement
    return SettlementRules(
        order_due_days=s.order_due_days,
        aap_disbursement_window_minutes=s.aap_disbursement_window_minutes,
        aap_repayment_terms=s.aap_repayment_terms,
        payment_tolerance=s.payment_tolerance,
        order_pickup_code_length=s.order_pickup_code_length,
        aap_pickup_code_length=s.aap_pickup_code_length,
        disbursement_methods=s.disbursement_methods,
        disbursement_reference_prefix=s.disbursement_reference_prefix,
    )
