"""
tariff_engines.invoice_audit -- Carrier invoice line variance and anomaly detection.

Responsibility:
    Recompute a billed line's total, compare it with the expected reference
    figures, and flag anomalies.  Also carries the line-level bookkeeping
    operations (correction, approval, risk level) as pure functions that
    return new line records.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Consumed by
    tariff_services.invoice_controller.

Invariants enforced:
    - Line total: quantity x unit price, minus discount (rate % of the
      running total when a rate is set, else the fixed amount), plus tax
      when tax-exclusive.  Tax-inclusive lines only extract the tax.
    - Reported variance is the larger in magnitude of unit-price variance
      and line-total variance.
    - Anomaly thresholds are strict ``>`` comparisons.  Several anomalies
      may be raised for one line.
    - Every function is pure: re-running on an unchanged line yields the
      same output.

Failure modes:
    - None.  A line without expected figures gets no variance and no
      price anomalies.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal

from tariff_kernel.domain.control import ControlThresholds
from tariff_kernel.domain.invoices import (
    Anomaly,
    AnomalyType,
    CarrierInvoiceLine,
    LineType,
    LineValidationStatus,
    RiskLevel,
    Severity,
    variance_percentage,
)
from tariff_kernel.domain.rates import RateTerm
from tariff_kernel.domain.shipment import ShipmentContext
from tariff_kernel.logging_config import get_logger
from tariff_engines import rate_catalog
from tariff_engines.tracer import traced_engine

logger = get_logger("engines.invoice_audit")

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

DEFAULT_THRESHOLDS = ControlThresholds()


@dataclass(frozen=True)
class LineTotals:
    line_total: Decimal
    discount_amount: Decimal
    tax_amount: Decimal


@dataclass(frozen=True)
class PriceVariance:
    """Variance reported for a line.  ``basis`` is which comparison won."""

    variance: Decimal | None
    variance_percentage: Decimal | None
    basis: str | None = None


NO_VARIANCE = PriceVariance(None, None, None)


@dataclass(frozen=True)
class LineAudit:
    totals: LineTotals
    variance: PriceVariance
    anomalies: tuple[Anomaly, ...]

    @property
    def worst_anomaly(self) -> Anomaly | None:
        if not self.anomalies:
            return None
        # max() keeps the first of equally severe anomalies
        return max(self.anomalies, key=lambda a: a.severity.rank)


def calculate_line_total(line: CarrierInvoiceLine) -> LineTotals:
    """Recompute total, discount and tax of a billed line."""
    total = line.quantity * line.unit_price

    discount = ZERO
    if line.discount_rate > ZERO:
        discount = total * line.discount_rate / HUNDRED
    elif line.discount_amount > ZERO:
        discount = line.discount_amount
    total -= discount

    tax = ZERO
    if line.tax_rate > ZERO:
        if line.is_tax_inclusive:
            tax = total * line.tax_rate / (HUNDRED + line.tax_rate)
        else:
            tax = total * line.tax_rate / HUNDRED
            total += tax

    return LineTotals(line_total=total, discount_amount=discount, tax_amount=tax)


def calculate_price_variance(line: CarrierInvoiceLine) -> PriceVariance:
    """Larger-in-magnitude of unit-price and line-total variance."""
    result = NO_VARIANCE

    if line.expected_unit_price is not None:
        diff = line.unit_price - line.expected_unit_price
        result = PriceVariance(
            diff,
            variance_percentage(line.unit_price, line.expected_unit_price),
            "unit_price",
        )

    if line.expected_line_total is not None:
        diff = line.line_total - line.expected_line_total
        pct = variance_percentage(line.line_total, line.expected_line_total)
        current = abs(result.variance_percentage) if result.variance_percentage is not None else None
        if current is None or abs(pct) > current:
            result = PriceVariance(diff, pct, "line_total")

    return result


def detect_anomalies(
    line: CarrierInvoiceLine,
    variance: PriceVariance,
    thresholds: ControlThresholds = DEFAULT_THRESHOLDS,
) -> tuple[Anomaly, ...]:
    """Independent anomaly checks on a line and its variance."""
    anomalies: list[Anomaly] = []
    pct = variance.variance_percentage

    if pct is not None and abs(pct) > thresholds.line_high_variance_pct:
        severity = (
            Severity.CRITICAL
            if abs(pct) > thresholds.line_critical_variance_pct
            else Severity.HIGH
        )
        anomalies.append(
            Anomaly(
                anomaly_type=AnomalyType.PRICE_VARIANCE,
                severity=severity,
                description=f"Price variance of {pct:.2f}%",
                expected_value=line.expected_unit_price,
                actual_value=line.unit_price,
                variance=variance.variance,
                line_reference=line.id,
            )
        )

    if (
        line.expected_unit_price is not None
        and line.unit_price > line.expected_unit_price * thresholds.unit_price_critical_multiple
    ):
        anomalies.append(
            Anomaly(
                anomaly_type=AnomalyType.PRICE_VARIANCE,
                severity=Severity.CRITICAL,
                description=(
                    "Unit price above "
                    f"{thresholds.unit_price_critical_multiple}x the expected price"
                ),
                expected_value=line.expected_unit_price,
                actual_value=line.unit_price,
                variance=variance.variance,
                line_reference=line.id,
            )
        )

    if line.quantity <= ZERO:
        anomalies.append(
            Anomaly(
                anomaly_type=AnomalyType.QUANTITY_MISMATCH,
                severity=Severity.HIGH,
                description="Zero or negative quantity",
                expected_value=ONE,
                actual_value=line.quantity,
                variance=line.quantity - ONE,
                line_reference=line.id,
            )
        )

    if line.line_type == LineType.TRANSPORT and not line.has_tariff_reference:
        anomalies.append(
            Anomaly(
                anomaly_type=AnomalyType.SERVICE_NOT_CONTRACTED,
                severity=Severity.MEDIUM,
                description="Transport service without a rate or contract reference",
                expected_value=None,
                actual_value=line.unit_price,
                variance=line.unit_price,
                line_reference=line.id,
            )
        )

    return tuple(anomalies)


@traced_engine("invoice_audit", "1.0", fingerprint_fields=("line",))
def audit_line(
    line: CarrierInvoiceLine,
    thresholds: ControlThresholds = DEFAULT_THRESHOLDS,
) -> LineAudit:
    """Totals, variance and anomalies of one line."""
    totals = calculate_line_total(line)
    recomputed = replace(line, line_total=totals.line_total)
    variance = calculate_price_variance(recomputed)
    anomalies = detect_anomalies(recomputed, variance, thresholds)

    logger.info(
        "invoice_line_audited",
        extra={
            "line_id": line.id,
            "invoice_id": line.invoice_id,
            "line_total": str(totals.line_total),
            "variance_percentage": (
                str(variance.variance_percentage)
                if variance.variance_percentage is not None
                else None
            ),
            "anomalies": [a.anomaly_type.value + ":" + a.severity.value for a in anomalies],
        },
    )
    return LineAudit(totals=totals, variance=variance, anomalies=anomalies)


def apply_line_audit(
    line: CarrierInvoiceLine,
    audit: LineAudit,
) -> CarrierInvoiceLine:
    """New line record carrying the audit results.

    The most severe anomaly is summarised on the line.  A high or critical
    anomaly moves a pending line to ``disputed``; corrected or validated
    lines keep their status.
    """
    worst = audit.worst_anomaly
    status = line.validation_status
    if (
        worst is not None
        and worst.severity.rank >= Severity.HIGH.rank
        and status == LineValidationStatus.PENDING
    ):
        status = LineValidationStatus.DISPUTED
    return replace(
        line,
        line_total=audit.totals.line_total,
        discount_amount=audit.totals.discount_amount,
        tax_amount=audit.totals.tax_amount,
        price_variance=audit.variance.variance,
        price_variance_percentage=audit.variance.variance_percentage,
        has_anomaly=worst is not None,
        anomaly_type=worst.anomaly_type if worst else None,
        anomaly_severity=worst.severity if worst else None,
        anomaly_description=worst.description if worst else None,
        validation_status=status,
    )


def stamp_anomalies(anomalies: tuple[Anomaly, ...], detected_at: datetime) -> tuple[Anomaly, ...]:
    """Anomalies with their detection time set."""
    return tuple(replace(a, detected_at=detected_at) for a in anomalies)


def expected_totals_from_term(
    line: CarrierInvoiceLine,
    term: RateTerm,
    ctx: ShipmentContext,
) -> CarrierInvoiceLine:
    """Fill a line's expected total and unit price by pricing its referenced term."""
    quantity = rate_catalog.quantity_for_rate_type(term.rate_type, ctx)
    expected_total = rate_catalog.price(term, quantity, ctx, base_amount=ctx.value)
    expected_unit = expected_total / line.quantity if line.quantity > ZERO else None
    return replace(
        line,
        expected_line_total=expected_total,
        expected_unit_price=expected_unit,
    )


def expected_line_amount(line: CarrierInvoiceLine) -> Decimal | None:
    """Expected amount of a line: its expected total, else expected unit price times quantity."""
    if line.expected_line_total is not None:
        return line.expected_line_total
    if line.expected_unit_price is not None:
        return line.expected_unit_price * line.quantity
    return None


def correct_line(
    line: CarrierInvoiceLine,
    corrected_unit_price: Decimal,
    reason: str,
    actor_id: str,
    corrected_at: datetime,
) -> CarrierInvoiceLine:
    """Record an operator's corrected unit price; the total follows the quantity."""
    if corrected_unit_price < ZERO:
        raise ValueError(f"Corrected unit price cannot be negative: {corrected_unit_price}")
    if not reason:
        raise ValueError("A correction needs a reason")
    return replace(
        line,
        corrected_unit_price=corrected_unit_price,
        corrected_line_total=line.quantity * corrected_unit_price,
        correction_reason=reason,
        corrected_by=actor_id,
        corrected_at=corrected_at,
        validation_status=LineValidationStatus.CORRECTED,
    )


def approve_line(
    line: CarrierInvoiceLine,
    actor_id: str,
    approved_at: datetime,
    notes: str | None = None,
) -> CarrierInvoiceLine:
    return replace(
        line,
        approved=True,
        approved_by=actor_id,
        approved_at=approved_at,
        approval_notes=notes,
        validation_status=LineValidationStatus.VALIDATED,
    )


def line_risk_level(
    line: CarrierInvoiceLine,
    thresholds: ControlThresholds = DEFAULT_THRESHOLDS,
) -> RiskLevel:
    pct = abs(line.price_variance_percentage or ZERO)
    if line.anomaly_severity == Severity.CRITICAL or pct > thresholds.line_risk_critical_pct:
        return RiskLevel.CRITICAL
    if line.anomaly_severity == Severity.HIGH or pct > thresholds.line_risk_high_pct:
        return RiskLevel.HIGH
    if line.has_anomaly or pct > thresholds.line_risk_medium_pct:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def requires_attention(
    line: CarrierInvoiceLine,
    thresholds: ControlThresholds = DEFAULT_THRESHOLDS,
) -> bool:
    """A line an operator should look at before the invoice is approved."""
    pct = abs(line.price_variance_percentage or ZERO)
    return (
        line.has_anomaly
        or pct > thresholds.line_attention_pct
        or line.validation_status == LineValidationStatus.DISPUTED
    )
