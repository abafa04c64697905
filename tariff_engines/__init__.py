"""
Module: tariff_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the import surface for tariff_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import tariff_kernel.domain, tariff_kernel.logging_config and
    sibling engine modules.  MUST NOT import tariff_config or
    tariff_services.

Invariants enforced:
    - Purity: engines never call ``datetime.now()``.  Evaluation moments
      are passed in by the caller.
    - Decimal-only arithmetic.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine entry points are traced via ``@traced_engine`` (see
    ``tariff_engines.tracer``), emitting TARIFF_ENGINE_TRACE log records
    with engine name, version, input fingerprint and duration.

Usage:
    from tariff_engines import rate_catalog, surcharges, pricing_rules
    from tariff_engines.invoice_audit import audit_line
    from tariff_engines.taxes import calculate_taxes
"""

from tariff_kernel.logging_config import get_logger

logger = get_logger("engines")

from tariff_engines import (  # noqa: E402
    invoice_analytics,
    invoice_audit,
    pricing_rules,
    rate_catalog,
    surcharges,
    taxes,
)
from tariff_engines.invoice_analytics import (  # noqa: E402
    ControlStatistics,
    VarianceTrends,
    analyze_variance_trends,
    control_statistics,
)
from tariff_engines.invoice_audit import (  # noqa: E402
    LineAudit,
    LineTotals,
    PriceVariance,
    apply_line_audit,
    audit_line,
    calculate_line_total,
    calculate_price_variance,
    detect_anomalies,
)
from tariff_engines.pricing_rules import (  # noqa: E402
    apply_rate_adjustment,
    evaluate_rules,
)
from tariff_engines.rate_catalog import select_best_term  # noqa: E402
from tariff_engines.taxes import TaxLine, calculate_taxes  # noqa: E402
from tariff_engines.tracer import compute_input_fingerprint, traced_engine  # noqa: E402

__all__ = [
    "ControlStatistics",
    "LineAudit",
    "LineTotals",
    "PriceVariance",
    "TaxLine",
    "VarianceTrends",
    "analyze_variance_trends",
    "apply_line_audit",
    "apply_rate_adjustment",
    "audit_line",
    "calculate_line_total",
    "calculate_price_variance",
    "calculate_taxes",
    "compute_input_fingerprint",
    "control_statistics",
    "detect_anomalies",
    "evaluate_rules",
    "invoice_analytics",
    "invoice_audit",
    "pricing_rules",
    "rate_catalog",
    "select_best_term",
    "surcharges",
    "taxes",
    "traced_engine",
]
