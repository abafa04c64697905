"""
tariff_services -- orchestration over the pure engines.

Responsibility:
    Composes shipment quotes (CostComposer), drives the carrier invoice
    state machine (InvoiceController), and persists invoices and pricing
    rules behind optimistic locking (CarrierInvoiceService,
    PricingRuleRepository).

Architecture position:
    Services -- top layer.  May import tariff_kernel, tariff_engines and
    tariff_config.  Nothing below imports from here.

Usage:
    from tariff_services import CostComposer, InvoiceController

    quote = CostComposer(clock=clock).compose_cost(ctx, catalog.rate_terms)
"""

from tariff_services.cost_composer import (
    CostBreakdown,
    CostComposer,
    CostQuote,
    RuleAdjustmentLine,
    SurchargeCharge,
    TransitEstimate,
    TransportComparison,
    TransportOption,
    estimate_transit_time,
)
from tariff_services.invoice_controller import ControlOutcome, ControlSummary, InvoiceController
from tariff_services.invoice_service import CarrierInvoiceService
from tariff_services.invoice_workflow import CARRIER_INVOICE_WORKFLOW
from tariff_services.rule_repository import PricingRuleRepository

__all__ = [
    "CARRIER_INVOICE_WORKFLOW",
    "CarrierInvoiceService",
    "ControlOutcome",
    "ControlSummary",
    "CostBreakdown",
    "CostComposer",
    "CostQuote",
    "InvoiceController",
    "PricingRuleRepository",
    "RuleAdjustmentLine",
    "SurchargeCharge",
    "TransitEstimate",
    "TransportComparison",
    "TransportOption",
    "estimate_transit_time",
]
