"""
tariff_engines.rate_catalog -- Rate term applicability and pricing.

Responsibility:
    Decide whether a single rate or contract line applies to a shipment,
    price it, and pick the best term among several applicable ones.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import tariff_kernel/domain types and sibling engine modules.
    Consumed by tariff_services.cost_composer and the invoice line auditor
    (expected figures for a referenced rate).

Invariants enforced:
    - Bounds are inclusive; an absent bound never filters.
    - Tier lookup is first-match over half-open ``[min, max)`` ranges, so a
      quantity equal to a tier's max belongs to the next tier.
    - Adjustment order: tier discount, then term discount, then markup.
    - Selection order: priority desc, then scope specificity desc, then
      input order.  Deterministic for identical inputs.
    - Purity: no clock access, no I/O.

Failure modes:
    - A rate_type this version does not know prices at Decimal("0") and
      logs ``rate_type_unrecognized``; it never raises.
    - select_best_term returns None when nothing applies; the composer
      turns that into NoApplicableRateError.
"""

from __future__ import annotations

from decimal import Decimal

from tariff_kernel.domain.rates import RateTerm, RateType
from tariff_kernel.domain.scope import find_tier
from tariff_kernel.domain.shipment import ShipmentContext
from tariff_kernel.logging_config import get_logger
from tariff_engines.tracer import traced_engine

logger = get_logger("engines.rate_catalog")

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

_BASIS_FIELD: dict[str, str] = {
    RateType.PER_KM.value: "distance",
    RateType.PER_KG.value: "weight",
    RateType.PER_M3.value: "volume",
    RateType.PER_PALLET.value: "pallets",
    RateType.PER_CONTAINER.value: "containers",
    RateType.PER_HOUR.value: "hours",
}


def quantity_for_rate_type(rate_type: str, ctx: ShipmentContext) -> Decimal:
    """Physical quantity a rate type is charged on.

    Per-unit types read the matching shipment figure.  Flat, percentage and
    unknown types fall back to ``ctx.quantity`` when given, else one.
    """
    field = _BASIS_FIELD.get(rate_type)
    if field is not None:
        return getattr(ctx, field)
    return ctx.quantity if ctx.quantity is not None else ONE


def scope_specificity(term: RateTerm) -> int:
    """How narrowly a term is scoped: populated geography plus mode, service and carrier."""
    return (
        term.geography.specificity
        + (term.transport_mode is not None)
        + (term.service_type is not None)
        + (term.carrier_id is not None)
    )


def is_applicable(term: RateTerm, ctx: ShipmentContext) -> bool:
    """True iff ``term`` may price ``ctx``.  Never raises for a mismatch."""
    if not term.is_active:
        return False
    if not term.validity.contains(ctx.shipment_date):
        return False
    if term.transport_mode is not None and term.transport_mode != ctx.transport_mode:
        return False
    if term.service_type is not None and term.service_type != ctx.service_type:
        return False
    if term.carrier_id is not None and term.carrier_id != ctx.carrier_id:
        return False
    if not term.geography.matches(
        ctx.origin_country,
        ctx.destination_country,
        ctx.origin_zone,
        ctx.destination_zone,
    ):
        return False
    if not term.weight_range.contains(ctx.weight):
        return False
    if not term.volume_range.contains(ctx.volume):
        return False
    if not term.distance_range.contains(ctx.distance):
        return False
    if not term.quantity_range.is_unbounded and not term.quantity_range.contains(
        quantity_for_rate_type(term.rate_type, ctx)
    ):
        return False
    return True


def unit_rate(term: RateTerm, quantity: Decimal) -> Decimal:
    """Rate per unit after tier selection and percentage adjustments."""
    rate = term.base_value
    tier = find_tier(term.tiers, quantity) if term.tiers else None
    if tier is not None:
        rate = tier.rate
        if tier.discount_percentage:
            rate = rate * (ONE - tier.discount_percentage / HUNDRED)
    if term.discount_percentage:
        rate = rate * (ONE - term.discount_percentage / HUNDRED)
    if term.markup_percentage:
        rate = rate * (ONE + term.markup_percentage / HUNDRED)
    return rate


@traced_engine("rate_catalog", "1.0", fingerprint_fields=("term", "quantity", "base_amount"))
def price(
    term: RateTerm,
    quantity: Decimal,
    ctx: ShipmentContext,
    base_amount: Decimal = ZERO,
) -> Decimal:
    """
    Price ``term`` for a shipment.

    Args:
        term: The rate term.
        quantity: Tier lookup key (usually ``quantity_for_rate_type``).
        ctx: Shipment supplying the physical basis.
        base_amount: Amount a ``percentage`` term is applied to.

    Returns:
        The base cost.  Zero for an unrecognized rate type.
    """
    rate = unit_rate(term, quantity)
    field = _BASIS_FIELD.get(term.rate_type)

    if field is not None:
        amount = rate * getattr(ctx, field)
    elif term.rate_type == RateType.PERCENTAGE.value:
        amount = base_amount * rate / HUNDRED
    elif term.rate_type == RateType.FLAT_RATE.value:
        amount = rate
    else:
        logger.warning(
            "rate_type_unrecognized",
            extra={"term_id": term.id, "rate_type": term.rate_type},
        )
        return ZERO

    logger.debug(
        "rate_term_priced",
        extra={
            "term_id": term.id,
            "rate_type": term.rate_type,
            "unit_rate": str(rate),
            "quantity": str(quantity),
            "amount": str(amount),
        },
    )
    return amount


def applicable_terms(
    terms: list[RateTerm] | tuple[RateTerm, ...],
    ctx: ShipmentContext,
) -> list[RateTerm]:
    """Applicable terms in selection order (best first)."""
    indexed = [(i, t) for i, t in enumerate(terms) if is_applicable(t, ctx)]
    indexed.sort(key=lambda it: (-it[1].priority, -scope_specificity(it[1]), it[0]))
    return [t for _, t in indexed]


@traced_engine("rate_catalog", "1.0", fingerprint_fields=("ctx",))
def select_best_term(
    terms: list[RateTerm] | tuple[RateTerm, ...],
    ctx: ShipmentContext,
) -> RateTerm | None:
    """Highest priority, then most specific, then earliest applicable term."""
    ranked = applicable_terms(terms, ctx)
    if not ranked:
        logger.info(
            "rate_term_none_applicable",
            extra={"shipment_id": ctx.shipment_id, "candidates": len(terms)},
        )
        return None
    best = ranked[0]
    logger.info(
        "rate_term_selected",
        extra={
            "shipment_id": ctx.shipment_id,
            "term_id": best.id,
            "priority": best.priority,
            "specificity": scope_specificity(best),
            "applicable": len(ranked),
            "candidates": len(terms),
        },
    )
    return best
