"""
Pure domain layer.

Frozen records and enums with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (except the Clock abstraction itself)
- I/O
"""

from tariff_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from tariff_kernel.domain.control import ControlThresholds, TaxSchedule
from tariff_kernel.domain.invoices import (
    Anomaly,
    AnomalyType,
    CarrierInvoice,
    CarrierInvoiceLine,
    InvoiceStatus,
    LineType,
    LineValidationStatus,
    NextAction,
    PaymentDetails,
    RiskLevel,
    Severity,
    TransitionRecord,
    ValidationStatus,
)
from tariff_kernel.domain.pricing_rules import (
    ActionCategory,
    ActionResult,
    AddSurcharge,
    AppliesTo,
    FixedDiscount,
    FixedMarkup,
    ModifySurcharge,
    PercentageDiscount,
    PercentageMarkup,
    PricingRule,
    RemoveSurcharge,
    RuleActions,
    RuleConditions,
    RuleEvaluation,
    RuleType,
    SetRate,
    ValidationAction,
    ValidationKind,
)
from tariff_kernel.domain.rates import RateTerm, RateType
from tariff_kernel.domain.scope import (
    GeographicScope,
    QuantityRange,
    Tier,
    TimeWindow,
    ValidityWindow,
)
from tariff_kernel.domain.shipment import ShipmentContext, TransportMode
from tariff_kernel.domain.surcharges import CalculationMethod, Surcharge, SurchargeType

__all__ = [
    "ActionCategory",
    "ActionResult",
    "AddSurcharge",
    "Anomaly",
    "AnomalyType",
    "AppliesTo",
    "CalculationMethod",
    "CarrierInvoice",
    "CarrierInvoiceLine",
    "Clock",
    "ControlThresholds",
    "DeterministicClock",
    "FixedDiscount",
    "FixedMarkup",
    "GeographicScope",
    "InvoiceStatus",
    "LineType",
    "LineValidationStatus",
    "ModifySurcharge",
    "NextAction",
    "PaymentDetails",
    "PercentageDiscount",
    "PercentageMarkup",
    "PricingRule",
    "QuantityRange",
    "RateTerm",
    "RateType",
    "RemoveSurcharge",
    "RiskLevel",
    "RuleActions",
    "RuleConditions",
    "RuleEvaluation",
    "RuleType",
    "SetRate",
    "Severity",
    "ShipmentContext",
    "Surcharge",
    "SurchargeType",
    "SystemClock",
    "TaxSchedule",
    "Tier",
    "TimeWindow",
    "TransitionRecord",
    "TransportMode",
    "ValidationAction",
    "ValidationKind",
    "ValidationStatus",
    "ValidityWindow",
]
