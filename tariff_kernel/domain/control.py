"""
Control thresholds and tax schedule.

Frozen settings records consumed by the invoice auditor, the invoice
controller and the quote tax calculation.  Defaults carry the standard
control policy; ``tariff_config.settings`` overrides them from YAML.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

from tariff_kernel.logging_config import get_logger

logger = get_logger("domain.control")


@dataclass(frozen=True)
class ControlThresholds:
    """Percentages are absolute variance percentages, compared with strict ``>``."""

    # line anomalies
    line_high_variance_pct: Decimal = Decimal("10")
    line_critical_variance_pct: Decimal = Decimal("25")
    unit_price_critical_multiple: Decimal = Decimal("2")
    # invoice risk level
    invoice_critical_variance_pct: Decimal = Decimal("20")
    invoice_high_variance_pct: Decimal = Decimal("10")
    invoice_medium_variance_pct: Decimal = Decimal("5")
    # line risk level / attention
    line_risk_critical_pct: Decimal = Decimal("25")
    line_risk_high_pct: Decimal = Decimal("15")
    line_risk_medium_pct: Decimal = Decimal("5")
    line_attention_pct: Decimal = Decimal("5")
    # variance trend reporting
    trend_high_variance_pct: Decimal = Decimal("15")

    def __post_init__(self) -> None:
        for name, value in vars(self).items():
            if value < 0:
                raise ValueError(f"Threshold {name} cannot be negative: {value}")
        if self.line_high_variance_pct > self.line_critical_variance_pct:
            raise ValueError("line_high_variance_pct must not exceed line_critical_variance_pct")
        if not (
            self.invoice_medium_variance_pct
            <= self.invoice_high_variance_pct
            <= self.invoice_critical_variance_pct
        ):
            raise ValueError("Invoice risk thresholds must be ordered medium <= high <= critical")
        if not (
            self.line_risk_medium_pct
            <= self.line_risk_high_pct
            <= self.line_risk_critical_pct
        ):
            raise ValueError("Line risk thresholds must be ordered medium <= high <= critical")
        logger.debug("control_thresholds_built", extra={k: str(v) for k, v in vars(self).items()})


DEFAULT_VAT_RATES: Mapping[str, Decimal] = MappingProxyType(
    {
        "FR": Decimal("20"),
        "DE": Decimal("19"),
        "ES": Decimal("21"),
        "IT": Decimal("22"),
        "BE": Decimal("21"),
        "NL": Decimal("21"),
        "GB": Decimal("20"),
        "US": Decimal("0"),
        "CA": Decimal("5"),
    }
)

EXPORT_TAX_MODES: tuple[str, ...] = ("sea", "air")


@dataclass(frozen=True)
class TaxSchedule:
    """Domestic VAT rates by country and the export tax on international sea/air legs."""

    vat_rates: Mapping[str, Decimal] = field(default_factory=lambda: DEFAULT_VAT_RATES)
    export_tax_rate: Decimal = Decimal("0.5")
    export_tax_modes: tuple[str, ...] = EXPORT_TAX_MODES

    def __post_init__(self) -> None:
        for country, rate in self.vat_rates.items():
            if rate < 0:
                raise ValueError(f"VAT rate for {country} cannot be negative: {rate}")
        if self.export_tax_rate < 0:
            raise ValueError(f"export_tax_rate cannot be negative: {self.export_tax_rate}")
        object.__setattr__(self, "vat_rates", MappingProxyType(dict(self.vat_rates)))

    def vat_rate(self, country: str | None) -> Decimal:
        if country is None:
            return Decimal("0")
        return self.vat_rates.get(country, Decimal("0"))
