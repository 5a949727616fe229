"""
Configuration Loader (``amana_config.loader``).

Responsibility
--------------
Loads a platform YAML file and parses it into the frozen dataclasses of
``amana_config.schema``.  Runtime callers go through
``amana_config.get_active_config()``; this module is its tooling.

Invariants enforced
-------------------
* Missing required keys raise ``KeyError``; malformed values raise
  ``ValueError``.  No silent defaults for scoring or settlement fields.
* Ladders must be strictly descending so the first matching step wins.
* ``compute_checksum`` is a deterministic SHA-256 over canonical JSON.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from amana_config.schema import (
    MarkupStep,
    PlatformConfig,
    SchedulerConfig,
    ScoringConfig,
    SettlementConfig,
    StreakBonus,
    TermDiscount,
    YearsStep,
)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse decimal from {value!r}")
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so YAML floats keep their written digits
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Cannot parse decimal from {value!r}") from exc


def _descending(values: list, label: str) -> None:
    if any(a <= b for a, b in zip(values, values[1:])):
        raise ValueError(f"{label} must be strictly descending, got {values}")


def _ascending(values: list, label: str) -> None:
    if any(a >= b for a, b in zip(values, values[1:])):
        raise ValueError(f"{label} must be strictly ascending, got {values}")


def parse_scoring(data: dict[str, Any]) -> ScoringConfig:
    years = tuple(
        YearsStep(min_years=parse_decimal(s["min_years"]), points=int(s["points"]))
        for s in data["years_in_business"]
    )
    _descending([s.min_years for s in years], "years_in_business")

    markup = data["markup"]
    ladder = tuple(
        MarkupStep(min_score=int(s["min_score"]), percentage=parse_decimal(s["percentage"]))
        for s in markup["ladder"]
    )
    _descending([s.min_score for s in ladder], "markup.ladder")

    discounts = tuple(
        TermDiscount(max_days=int(s["max_days"]), multiplier=parse_decimal(s["multiplier"]))
        for s in markup.get("term_discounts", ())
    )
    _ascending([d.max_days for d in discounts], "markup.term_discounts")

    growth = data["growth"]
    bonuses = tuple(
        StreakBonus(streak_above=int(s["streak_above"]), bonus=int(s["bonus"]))
        for s in growth.get("streak_bonuses", ())
    )

    credit = data["credit"]
    tiers = data["tiers"]
    config = ScoringConfig(
        max_test_score=int(data["max_test_score"]),
        psychometric_points=parse_decimal(data["psychometric_points"]),
        years_in_business=years,
        physical_location_points=int(data["physical_location_points"]),
        starting_capital_points=tuple(
            (str(k), int(v)) for k, v in sorted(data.get("starting_capital_points", {}).items())
        ),
        business_cap=int(data["business_cap"]),
        kyc_bonus=int(data["kyc_bonus"]),
        max_score=int(data["max_score"]),
        credit_gate=int(credit["gate"]),
        credit_per_point=parse_decimal(credit["per_point"]),
        credit_ceiling=parse_decimal(credit["ceiling"]),
        gold_threshold=int(tiers["gold"]),
        silver_threshold=int(tiers["silver"]),
        markup_ladder=ladder,
        markup_default=parse_decimal(markup["default"]),
        markup_floor=parse_decimal(markup["floor"]),
        term_discounts=discounts,
        growth_base=int(growth["base"]),
        streak_bonuses=bonuses,
        growth_threshold=parse_decimal(growth["threshold"]),
    )

    if config.max_test_score <= 0:
        raise ValueError("max_test_score must be positive")
    if not config.silver_threshold < config.gold_threshold <= config.max_score:
        raise ValueError(
            f"tier thresholds must satisfy silver < gold <= max_score, got "
            f"{config.silver_threshold}/{config.gold_threshold}/{config.max_score}"
        )
    return config


def parse_settlement(data: dict[str, Any]) -> SettlementConfig:
    config = SettlementConfig(
        order_due_days=int(data["order_due_days"]),
        aap_disbursement_window_minutes=int(data["aap_disbursement_window_minutes"]),
        aap_repayment_terms=tuple(int(t) for t in data["aap_repayment_terms"]),
        payment_tolerance=parse_decimal(data["payment_tolerance"]),
        order_pickup_code_length=int(data["order_pickup_code_length"]),
        aap_pickup_code_length=int(data["aap_pickup_code_length"]),
        disbursement_methods=tuple(str(m) for m in data["disbursement_methods"]),
        disbursement_reference_prefix=str(data["disbursement_reference_prefix"]),
    )
    if config.order_due_days <= 0:
        raise ValueError("order_due_days must be positive")
    if config.aap_disbursement_window_minutes <= 0:
        raise ValueError("aap_disbursement_window_minutes must be positive")
    if not config.aap_repayment_terms or any(t <= 0 for t in config.aap_repayment_terms):
        raise ValueError("aap_repayment_terms must be a non-empty list of positive day counts")
    if config.payment_tolerance < 0:
        raise ValueError("payment_tolerance must not be negative")
    if not config.disbursement_methods:
        raise ValueError("at least one disbursement method is required")
    return config


def parse_scheduler(data: dict[str, Any]) -> SchedulerConfig:
    defaults = SchedulerConfig()
    config = SchedulerConfig(
        sweep_interval_seconds=int(data.get("sweep_interval_seconds", defaults.sweep_interval_seconds)),
        jobs=tuple(str(j) for j in data.get("jobs", defaults.jobs)),
    )
    if config.sweep_interval_seconds <= 0:
        raise ValueError("sweep_interval_seconds must be positive")
    return config


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_platform_config(path: Path | str | None = None) -> PlatformConfig:
    """Parse a platform YAML file (``defaults.yaml`` when ``path`` is None)."""
    data = load_yaml_file(Path(path) if path is not None else DEFAULT_CONFIG_PATH)
    return PlatformConfig(
        config_id=str(data["config_id"]),
        version=int(data["version"]),
        scoring=parse_scoring(data["scoring"]),
        settlement=parse_settlement(data["settlement"]),
        scheduler=parse_scheduler(data.get("scheduler") or {}),
        checksum=compute_checksum(data),
    )
