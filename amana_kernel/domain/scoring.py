"""
Scoring Engine -- trust score, tier, credit limit and markup.

Responsibility:
    Pure functions mapping applicant signals and repayment behaviour to the
    four numbers the rest of the engine runs on: trust score (0-100), tier,
    credit limit and markup percentage.

Architecture position:
    Kernel > Domain.  ZERO I/O.  Constants live in ``ScoringRules``; the
    defaults below are the platform policy, and amana_config may supply a
    different instance through its bridges.

Two independent threshold ladders are applied to the raw score: one for
tier, one for markup.  ``determine_markup`` never consults the tier.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from amana_kernel.domain.money import round_money, to_money
from amana_kernel.exceptions import ValidationError


class Tier(str, Enum):
    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"


class CapitalTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class BusinessSignals:
    """Business-maturity inputs collected at onboarding."""

    years_in_business: Decimal = Decimal("0")
    has_physical_location: bool = False
    starting_capital: CapitalTier | None = None


@dataclass(frozen=True)
class ScoringRules:
    """
    Scoring constants.

    Ladders are ``(threshold, value)`` pairs in descending threshold order;
    the first pair whose threshold the input reaches wins.
    """

    max_test_score: int = 75
    psychometric_points: Decimal = Decimal("40")
    years_ladder: tuple[tuple[Decimal, int], ...] = (
        (Decimal("5"), 15),
        (Decimal("2"), 10),
        (Decimal("1"), 5),
    )
    physical_location_points: int = 10
    capital_points: dict[CapitalTier, int] = field(
        default_factory=lambda: {CapitalTier.HIGH: 10, CapitalTier.MEDIUM: 5}
    )
    business_cap: int = 35
    kyc_bonus: int = 25
    max_score: int = 100

    credit_gate: int = 40
    credit_per_point: Decimal = Decimal("600")
    credit_ceiling: Decimal = Decimal("60000")

    gold_threshold: int = 75
    silver_threshold: int = 50

    markup_ladder: tuple[tuple[int, Decimal], ...] = (
        (80, Decimal("5.0")),
        (60, Decimal("8.0")),
        (40, Decimal("12.0")),
    )
    markup_default: Decimal = Decimal("15.0")
    # (max term days, multiplier); terms beyond the last entry pay full rate
    term_discounts: tuple[tuple[int, Decimal], ...] = (
        (3, Decimal("0.5")),
        (7, Decimal("0.75")),
    )
    markup_floor: Decimal = Decimal("4.0")

    growth_base: int = 2
    # (streak strictly above, bonus); bonuses are additive
    streak_bonuses: tuple[tuple[int, int], ...] = ((3, 1), (10, 2))
    growth_threshold: Decimal = Decimal("5000")


DEFAULT_SCORING_RULES = ScoringRules()


def calculate_initial_score(
    test_score,
    signals: BusinessSignals | None = None,
    rules: ScoringRules = DEFAULT_SCORING_RULES,
) -> int:
    """
    Onboarding score: psychometric band + business bucket + KYC bonus.

    The KYC bonus is unconditional; reaching this calculation means KYC was
    submitted.

    Raises:
        ValidationError: test_score outside [0, max_test_score].
    """
    test = to_money(test_score)
    if test < 0 or test > rules.max_test_score:
        raise ValidationError(
            f"test_score must be within [0, {rules.max_test_score}], got {test_score}",
            field="test_score",
        )

    psychometric = min(
        test / rules.max_test_score * rules.psychometric_points,
        rules.psychometric_points,
    )

    business = 0
    if signals is not None:
        years = to_money(signals.years_in_business)
        for threshold, points in rules.years_ladder:
            if years >= threshold:
                business += points
                break
        if signals.has_physical_location:
            business += rules.physical_location_points
        if signals.starting_capital is not None:
            business += rules.capital_points.get(CapitalTier(signals.starting_capital), 0)
        business = min(business, rules.business_cap)

    total = psychometric + business + rules.kyc_bonus
    rounded = int(total.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return min(rounded, rules.max_score)


def determine_credit_limit(score: int, rules: ScoringRules = DEFAULT_SCORING_RULES) -> Decimal:
    """0 below the credit gate; otherwise score x credit_per_point, capped."""
    if score < rules.credit_gate:
        return Decimal("0")
    return min(score * rules.credit_per_point, rules.credit_ceiling)


def determine_tier(score: int, rules: ScoringRules = DEFAULT_SCORING_RULES) -> Tier:
    if score >= rules.gold_threshold:
        return Tier.GOLD
    if score >= rules.silver_threshold:
        return Tier.SILVER
    return Tier.BRONZE


def determine_markup(
    score: int,
    term_days: int = 14,
    rules: ScoringRules = DEFAULT_SCORING_RULES,
) -> Decimal:
    """
    Markup percentage for a credit of ``term_days``.

    Base rate from the score ladder, times the term discount, never below
    the floor.
    """
    base = rules.markup_default
    for threshold, rate in rules.markup_ladder:
        if score >= threshold:
            base = rate
            break

    multiplier = Decimal("1")
    for max_days, discount in rules.term_discounts:
        if term_days <= max_days:
            multiplier = discount
            break

    return max(base * multiplier, rules.markup_floor)


def calculate_score_growth(
    current_score: int,
    streak: int,
    rules: ScoringRules = DEFAULT_SCORING_RULES,
) -> int:
    """New score after one qualifying repayment at the given streak."""
    growth = rules.growth_base
    for above, bonus in rules.streak_bonuses:
        if streak > above:
            growth += bonus
    return min(current_score + growth, rules.max_score)


def qualifies_for_growth(amount, rules: ScoringRules = DEFAULT_SCORING_RULES) -> bool:
    """Only repayments strictly above the threshold build trust."""
    return to_money(amount) > rules.growth_threshold


def compute_markup(principal, percentage: Decimal) -> tuple[Decimal, Decimal]:
    """
    Split a financed principal into (markup_amount, total_repayment).

    Money is rounded half-up to cents; the total is principal + rounded markup.
    """
    principal = to_money(principal)
    markup_amount = round_money(principal * to_money(percentage) / 100)
    return markup_amount, round_money(principal + markup_amount)
