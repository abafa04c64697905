"""
tariff_engines.taxes -- Tax lines on a shipment quote.

Domestic legs carry the VAT of their country; international sea and air
legs carry the export tax.  Other international legs are untaxed.
Amounts are not rounded here; the quote rounds its outputs.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from tariff_kernel.domain.control import TaxSchedule
from tariff_kernel.domain.shipment import ShipmentContext
from tariff_kernel.logging_config import get_logger

logger = get_logger("engines.taxes")

HUNDRED = Decimal("100")

VAT = "VAT"
EXPORT_TAX = "EXPORT_TAX"


@dataclass(frozen=True)
class TaxLine:
    tax_type: str
    rate: Decimal
    amount: Decimal
    description: str


def calculate_taxes(
    amount: Decimal,
    ctx: ShipmentContext,
    schedule: TaxSchedule | None = None,
) -> tuple[TaxLine, ...]:
    """Tax lines due on ``amount`` for the shipment's route and mode."""
    schedule = schedule or TaxSchedule()
    lines: list[TaxLine] = []

    if ctx.is_domestic:
        rate = schedule.vat_rate(ctx.origin_country)
        if rate > 0:
            lines.append(
                TaxLine(
                    tax_type=VAT,
                    rate=rate,
                    amount=amount * rate / HUNDRED,
                    description=f"VAT {rate}% ({ctx.origin_country})",
                )
            )
    elif ctx.is_international and ctx.transport_mode in schedule.export_tax_modes:
        rate = schedule.export_tax_rate
        lines.append(
            TaxLine(
                tax_type=EXPORT_TAX,
                rate=rate,
                amount=amount * rate / HUNDRED,
                description=f"Export tax {rate}%",
            )
        )

    logger.debug(
        "taxes_calculated",
        extra={
            "shipment_id": ctx.shipment_id,
            "taxable_amount": str(amount),
            "tax_lines": [t.tax_type for t in lines],
        },
    )
    return tuple(lines)


def total_tax(lines: tuple[TaxLine, ...]) -> Decimal:
    return sum((t.amount for t in lines), Decimal("0"))
