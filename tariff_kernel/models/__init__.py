"""ORM models for the tariff kernel."""

from tariff_kernel.models.carrier_invoice import (
    CarrierInvoiceLineModel,
    CarrierInvoiceModel,
    CarrierInvoiceTransitionModel,
)
from tariff_kernel.models.pricing_rule import PricingRuleModel

__all__ = [
    "CarrierInvoiceLineModel",
    "CarrierInvoiceModel",
    "CarrierInvoiceTransitionModel",
    "PricingRuleModel",
]
