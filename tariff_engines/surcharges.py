"""
tariff_engines.surcharges -- Surcharge applicability and computation.

Responsibility:
    Decide whether a surcharge applies to a shipment and compute its amount
    against a base amount, including the index-linked fuel surcharge.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Applicability mirrors the rate catalog (activity, validity window,
      transport mode, geography, weight/volume bounds) plus optional
      weekday and time-of-day windows read from the shipment date.
    - Tier lookup uses the same first-match ``[min, max)`` rule as rate
      terms, keyed by ``ctx.quantity`` (zero when absent).
    - Fuel: ``(current - threshold) * factor`` when current > threshold,
      else zero with no clamp applied.  ``current`` defaults to the
      surcharge's fuel base price when the shipment carries no index.
    - Clamp order is floor then ceiling.

Failure modes:
    - An unknown calculation_method is treated as a fixed amount and
      logged as ``calculation_method_unrecognized``.
"""

from __future__ import annotations

from decimal import Decimal

from tariff_kernel.domain.scope import find_tier, weekday_name
from tariff_kernel.domain.shipment import ShipmentContext
from tariff_kernel.domain.surcharges import ALL_MODES, CalculationMethod, Surcharge
from tariff_kernel.logging_config import get_logger
from tariff_engines.tracer import traced_engine

logger = get_logger("engines.surcharges")

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

_PER_UNIT_FIELD: dict[str, str] = {
    CalculationMethod.PER_KM.value: "distance",
    CalculationMethod.PER_KG.value: "weight",
    CalculationMethod.PER_M3.value: "volume",
    CalculationMethod.PER_PALLET.value: "pallets",
    CalculationMethod.PER_CONTAINER.value: "containers",
    CalculationMethod.PER_HOUR.value: "hours",
}


def is_applicable(surcharge: Surcharge, ctx: ShipmentContext) -> bool:
    """True iff ``surcharge`` applies to ``ctx``."""
    if not surcharge.is_active:
        return False
    if not surcharge.validity.contains(ctx.shipment_date):
        return False
    if surcharge.transport_mode not in (None, ALL_MODES) and (
        surcharge.transport_mode != ctx.transport_mode
    ):
        return False
    if not surcharge.geography.matches(
        ctx.origin_country,
        ctx.destination_country,
        ctx.origin_zone,
        ctx.destination_zone,
    ):
        return False
    if not surcharge.weight_range.contains(ctx.weight):
        return False
    if not surcharge.volume_range.contains(ctx.volume):
        return False
    if surcharge.applicable_days and weekday_name(ctx.shipment_date) not in surcharge.applicable_days:
        return False
    if not surcharge.time_window.contains(ctx.shipment_date):
        return False
    return True


def fuel_value(surcharge: Surcharge, ctx: ShipmentContext) -> Decimal | None:
    """Index-linked calculation value of a fuel surcharge.

    Returns None when the surcharge carries no threshold (ordinary
    surcharge behaviour applies) and zero when the index is at or below
    the threshold.
    """
    if surcharge.fuel_threshold is None:
        return None
    current = ctx.current_fuel_price
    if current is None:
        current = surcharge.fuel_base_price
    if current is None:
        return None
    if current <= surcharge.fuel_threshold:
        return ZERO
    factor = surcharge.fuel_adjustment_factor
    if factor is None:
        factor = ONE
    return (current - surcharge.fuel_threshold) * factor


def apply_method(
    method: str,
    value: Decimal,
    base_amount: Decimal,
    ctx: ShipmentContext,
) -> Decimal:
    """Apply a calculation method to a calculation value."""
    if method == CalculationMethod.PERCENTAGE.value:
        return base_amount * value / HUNDRED
    field = _PER_UNIT_FIELD.get(method)
    if field is not None:
        return value * getattr(ctx, field)
    if method != CalculationMethod.FIXED_AMOUNT.value:
        logger.warning(
            "calculation_method_unrecognized",
            extra={"calculation_method": method},
        )
    return value


def clamp(amount: Decimal, minimum: Decimal | None, maximum: Decimal | None) -> Decimal:
    """Floor at ``minimum`` then cap at ``maximum``."""
    if minimum is not None and amount < minimum:
        amount = minimum
    if maximum is not None and amount > maximum:
        amount = maximum
    return amount


@traced_engine("surcharges", "1.0", fingerprint_fields=("surcharge", "base_amount"))
def compute(surcharge: Surcharge, base_amount: Decimal, ctx: ShipmentContext) -> Decimal:
    """
    Surcharge amount for ``ctx`` on top of ``base_amount``.

    Applicability is the caller's concern; this only computes.
    """
    value = surcharge.value
    if surcharge.tiers:
        tier = find_tier(surcharge.tiers, ctx.quantity or ZERO)
        if tier is not None:
            value = tier.rate

    if surcharge.is_fuel:
        indexed = fuel_value(surcharge, ctx)
        if indexed is not None:
            if indexed == ZERO:
                logger.debug(
                    "fuel_surcharge_below_threshold",
                    extra={
                        "surcharge_id": surcharge.id,
                        "current_fuel_price": str(ctx.current_fuel_price),
                        "fuel_threshold": str(surcharge.fuel_threshold),
                    },
                )
                return ZERO
            value = indexed

    amount = apply_method(surcharge.calculation_method, value, base_amount, ctx)
    amount = clamp(amount, surcharge.min_amount, surcharge.max_amount)

    logger.debug(
        "surcharge_computed",
        extra={
            "surcharge_id": surcharge.id,
            "surcharge_type": surcharge.surcharge_type,
            "calculation_method": surcharge.calculation_method,
            "value": str(value),
            "amount": str(amount),
        },
    )
    return amount


def applicable_surcharges(
    surcharges: list[Surcharge] | tuple[Surcharge, ...],
    ctx: ShipmentContext,
) -> list[Surcharge]:
    """Applicable surcharges, highest priority first, stable on input order."""
    matched = [s for s in surcharges if is_applicable(s, ctx)]
    return sorted(matched, key=lambda s: -s.priority)
