"""Kernel services -- persistence of the two pieces of durable shared state."""

from tariff_kernel.services.invoice_store import CarrierInvoiceStore
from tariff_kernel.services.rule_usage_service import RuleUsageRecorder, RuleUsageService

__all__ = [
    "CarrierInvoiceStore",
    "RuleUsageRecorder",
    "RuleUsageService",
]
