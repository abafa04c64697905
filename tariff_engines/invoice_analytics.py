"""
tariff_engines.invoice_analytics -- Control statistics over a set of invoices.

Responsibility:
    Aggregate invoices already loaded by the caller into control
    statistics and variance trends.  Filtering by carrier and invoice
    date happens here so callers can hand in a plain list.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Variance figures use the absolute invoice variance percentage.
    - Averages over an empty group are zero, never a division error.
    - Per-status and per-validation-status groups only list statuses that
      occur in the input.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable

from tariff_kernel.domain.control import ControlThresholds
from tariff_kernel.domain.invoices import CarrierInvoice
from tariff_kernel.logging_config import get_logger

logger = get_logger("engines.invoice_analytics")

ZERO = Decimal("0")


@dataclass(frozen=True)
class StatusGroup:
    count: int = 0
    total_amount: Decimal = ZERO
    expected_amount: Decimal = ZERO


@dataclass(frozen=True)
class ControlStatistics:
    invoice_count: int
    by_status: dict[str, StatusGroup] = field(default_factory=dict)
    by_validation_status: dict[str, StatusGroup] = field(default_factory=dict)
    anomaly_count: int = 0
    invoices_with_anomalies: int = 0
    manual_review_count: int = 0


@dataclass(frozen=True)
class CarrierVariance:
    carrier_id: str
    carrier_name: str | None
    invoice_count: int
    total_variance_percentage: Decimal
    average_variance_percentage: Decimal


@dataclass(frozen=True)
class VarianceTrends:
    total_invoices: int
    average_variance_percentage: Decimal
    by_carrier: tuple[CarrierVariance, ...]
    high_variance_invoices: int


def _group(invoices: Iterable[CarrierInvoice], key) -> dict[str, StatusGroup]:
    groups: dict[str, StatusGroup] = {}
    for invoice in invoices:
        k = key(invoice).value
        g = groups.get(k, StatusGroup())
        groups[k] = StatusGroup(
            count=g.count + 1,
            total_amount=g.total_amount + invoice.total_amount,
            expected_amount=g.expected_amount + invoice.expected_amount,
        )
    return groups


def control_statistics(invoices: list[CarrierInvoice]) -> ControlStatistics:
    """Counts and amounts per status and validation status."""
    stats = ControlStatistics(
        invoice_count=len(invoices),
        by_status=_group(invoices, lambda i: i.status),
        by_validation_status=_group(invoices, lambda i: i.validation_status),
        anomaly_count=sum(len(i.anomalies) for i in invoices),
        invoices_with_anomalies=sum(1 for i in invoices if i.has_anomalies),
        manual_review_count=sum(1 for i in invoices if i.requires_manual_review),
    )
    logger.info(
        "control_statistics_computed",
        extra={
            "invoice_count": stats.invoice_count,
            "anomaly_count": stats.anomaly_count,
            "manual_review_count": stats.manual_review_count,
        },
    )
    return stats


def _in_period(invoice: CarrierInvoice, start: date | None, end: date | None) -> bool:
    if start is not None and invoice.invoice_date < start:
        return False
    if end is not None and invoice.invoice_date > end:
        return False
    return True


def analyze_variance_trends(
    invoices: list[CarrierInvoice],
    carrier_id: str | None = None,
    start: date | None = None,
    end: date | None = None,
    thresholds: ControlThresholds | None = None,
) -> VarianceTrends:
    """
    Absolute variance averages overall and per carrier.

    Args:
        invoices: Candidate invoices.
        carrier_id: Restrict to one carrier.
        start: First invoice date included.
        end: Last invoice date included.
        thresholds: ``trend_high_variance_pct`` decides what counts as a
            high-variance invoice (strict ``>``).
    """
    thresholds = thresholds or ControlThresholds()
    selected = [
        i
        for i in invoices
        if (carrier_id is None or i.carrier_id == carrier_id) and _in_period(i, start, end)
    ]

    per_carrier: dict[str, list[CarrierInvoice]] = defaultdict(list)
    for invoice in selected:
        per_carrier[invoice.carrier_id].append(invoice)

    by_carrier: list[CarrierVariance] = []
    for cid, group in per_carrier.items():
        total = sum((abs(i.variance_percentage) for i in group), ZERO)
        by_carrier.append(
            CarrierVariance(
                carrier_id=cid,
                carrier_name=group[0].carrier_name,
                invoice_count=len(group),
                total_variance_percentage=total,
                average_variance_percentage=total / len(group),
            )
        )

    overall = sum((abs(i.variance_percentage) for i in selected), ZERO)
    trends = VarianceTrends(
        total_invoices=len(selected),
        average_variance_percentage=overall / len(selected) if selected else ZERO,
        by_carrier=tuple(by_carrier),
        high_variance_invoices=sum(
            1
            for i in selected
            if abs(i.variance_percentage) > thresholds.trend_high_variance_pct
        ),
    )
    logger.info(
        "variance_trends_analyzed",
        extra={
            "carrier_id": carrier_id,
            "total_invoices": trends.total_invoices,
            "high_variance_invoices": trends.high_variance_invoices,
        },
    )
    return trends
