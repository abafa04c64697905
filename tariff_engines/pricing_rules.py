"""
tariff_engines.pricing_rules -- Declarative pricing rule evaluation.

Responsibility:
    Match a pricing rule's closed condition set against a shipment and
    flatten its actions into an ordered list of typed results.  Also
    computes the delta a single rate adjustment makes to a running amount.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Consumed by
    tariff_services.cost_composer, which folds the results into a quote and
    records rule usage separately.

Invariants enforced:
    - Every populated condition is an AND filter; empty ones pass.  The
      first failing condition short-circuits.
    - Date range, weekday and time-of-day conditions read the evaluation
      moment ``now`` handed in by the caller, not the shipment date.  The
      validity window of the rule itself is checked against the shipment
      date.
    - Actions flatten as rate adjustments, then surcharge actions, then
      validation actions, each in authored order.
    - Matched rules come back in descending priority, stable on input
      order.
    - Evaluation never mutates usage bookkeeping.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from tariff_kernel.domain.pricing_rules import (
    ActionCategory,
    ActionResult,
    FixedDiscount,
    FixedMarkup,
    PercentageDiscount,
    PercentageMarkup,
    PricingRule,
    RateAdjustment,
    RuleConditions,
    RuleEvaluation,
    SetRate,
)
from tariff_kernel.domain.scope import weekday_name
from tariff_kernel.domain.shipment import ShipmentContext
from tariff_kernel.logging_config import get_logger
from tariff_engines.tracer import traced_engine

logger = get_logger("engines.pricing_rules")

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def is_valid_for_date(rule: PricingRule, on: date | datetime) -> bool:
    """Active and inside the rule's own validity window."""
    return rule.is_active and rule.validity.contains(on)


def _member(allowed: tuple[str, ...], actual: str | None) -> bool:
    return not allowed or actual in allowed


def first_failing_condition(
    rule: PricingRule,
    ctx: ShipmentContext,
    now: datetime,
) -> str | None:
    """Name of the first condition ``ctx`` fails, or None if all hold."""
    c: RuleConditions = rule.conditions

    if not _member(c.origin_countries, ctx.origin_country):
        return "origin_countries"
    if not _member(c.destination_countries, ctx.destination_country):
        return "destination_countries"
    if not _member(c.origin_zones, ctx.origin_zone):
        return "origin_zones"
    if not _member(c.destination_zones, ctx.destination_zone):
        return "destination_zones"
    if not _member(c.transport_modes, ctx.transport_mode):
        return "transport_modes"
    if not _member(c.service_types, ctx.service_type):
        return "service_types"

    if c.min_weight is not None and ctx.weight < c.min_weight:
        return "min_weight"
    if c.max_weight is not None and ctx.weight > c.max_weight:
        return "max_weight"
    if c.min_volume is not None and ctx.volume < c.min_volume:
        return "min_volume"
    if c.max_volume is not None and ctx.volume > c.max_volume:
        return "max_volume"
    if c.min_value is not None and ctx.value < c.min_value:
        return "min_value"
    if c.max_value is not None and ctx.value > c.max_value:
        return "max_value"

    today = now.date()
    if c.start_date is not None and today < c.start_date:
        return "start_date"
    if c.end_date is not None and today > c.end_date:
        return "end_date"
    if c.days_of_week and weekday_name(now) not in c.days_of_week:
        return "days_of_week"
    at = now.time().replace(second=0, microsecond=0)
    if c.start_time is not None and at < c.start_time:
        return "start_time"
    if c.end_time is not None and at > c.end_time:
        return "end_time"

    if not _member(c.customer_types, ctx.customer_type):
        return "customer_types"
    if not _member(c.customer_ids, ctx.customer_id):
        return "customer_ids"
    if not _member(c.carrier_types, ctx.carrier_type):
        return "carrier_types"
    if not _member(c.carrier_ids, ctx.carrier_id):
        return "carrier_ids"

    if c.min_monthly_volume is not None and ctx.monthly_volume < c.min_monthly_volume:
        return "min_monthly_volume"
    if c.min_annual_volume is not None and ctx.annual_volume < c.min_annual_volume:
        return "min_annual_volume"
    return None


def evaluate_conditions(rule: PricingRule, ctx: ShipmentContext, now: datetime) -> bool:
    """True iff every populated condition of ``rule`` holds for ``ctx`` at ``now``."""
    failed = first_failing_condition(rule, ctx, now)
    if failed is not None:
        logger.debug(
            "rule_condition_failed",
            extra={"rule_id": rule.id, "condition": failed},
        )
        return False
    return True


def execute_actions(rule: PricingRule, ctx: ShipmentContext) -> tuple[ActionResult, ...]:
    """Flatten a rule's actions into typed results.  Pure."""
    results: list[ActionResult] = []
    for adjustment in rule.actions.rate_adjustments:
        results.append(ActionResult(rule.id, rule.name, ActionCategory.RATE_ADJUSTMENT, adjustment))
    for surcharge_action in rule.actions.surcharge_actions:
        results.append(ActionResult(rule.id, rule.name, ActionCategory.SURCHARGE_ACTION, surcharge_action))
    for validation in rule.actions.validation_actions:
        results.append(ActionResult(rule.id, rule.name, ActionCategory.VALIDATION_ACTION, validation))
    return tuple(results)


@traced_engine("pricing_rules", "1.0", fingerprint_fields=("ctx", "now"))
def evaluate_rules(
    rules: list[PricingRule] | tuple[PricingRule, ...],
    ctx: ShipmentContext,
    now: datetime,
) -> tuple[RuleEvaluation, ...]:
    """
    Every rule valid on the shipment date whose conditions hold at ``now``.

    Returns:
        One RuleEvaluation per matched rule, descending priority, ties in
        input order.
    """
    ordered = sorted(enumerate(rules), key=lambda ir: (-ir[1].priority, ir[0]))
    matched: list[RuleEvaluation] = []
    for _, rule in ordered:
        if not is_valid_for_date(rule, ctx.shipment_date):
            continue
        if not evaluate_conditions(rule, ctx, now):
            continue
        matched.append(
            RuleEvaluation(
                rule_id=rule.id,
                rule_name=rule.name,
                rule_type=rule.rule_type,
                priority=rule.priority,
                actions=execute_actions(rule, ctx),
            )
        )

    logger.info(
        "pricing_rules_evaluated",
        extra={
            "shipment_id": ctx.shipment_id,
            "candidates": len(rules),
            "matched": [m.rule_id for m in matched],
        },
    )
    return tuple(matched)


def apply_rate_adjustment(amount: Decimal, adjustment: RateAdjustment) -> Decimal:
    """
    Delta ``adjustment`` makes to ``amount``.

    - percentage_discount: ``-amount * v / 100``
    - percentage_markup:   ``+amount * v / 100``
    - fixed_discount:      ``-min(v, amount)`` (never below zero)
    - fixed_markup:        ``+v``
    - set_rate:            ``v - amount``
    """
    v = adjustment.value
    if isinstance(adjustment, PercentageDiscount):
        return -(amount * v / HUNDRED)
    if isinstance(adjustment, PercentageMarkup):
        return amount * v / HUNDRED
    if isinstance(adjustment, FixedDiscount):
        return -min(v, amount)
    if isinstance(adjustment, FixedMarkup):
        return v
    if isinstance(adjustment, SetRate):
        return v - amount
    raise ValueError(f"Unsupported rate adjustment: {type(adjustment).__name__}")
