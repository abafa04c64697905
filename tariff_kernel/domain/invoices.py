"""
Carrier invoice records.

Responsibility:
    Immutable representation of a carrier invoice and its lines.  Variance
    figures on the invoice are derived properties so they can never drift
    from total/expected; line variance is stored because it depends on
    which of unit-price or line-total variance was the larger.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.  Changes are made by
    the invoice line auditor and invoice controller, which return new
    records via ``dataclasses.replace``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class InvoiceStatus(str, Enum):
    RECEIVED = "received"
    UNDER_REVIEW = "under_review"
    VALIDATED = "validated"
    DISPUTED = "disputed"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


TERMINAL_STATUSES: frozenset[InvoiceStatus] = frozenset(
    {InvoiceStatus.REJECTED, InvoiceStatus.PAID}
)


class ValidationStatus(str, Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    MANUAL_REVIEW = "manual_review"


class LineValidationStatus(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    DISPUTED = "disputed"
    CORRECTED = "corrected"


class LineType(str, Enum):
    TRANSPORT = "transport"
    SURCHARGE = "surcharge"
    TAX = "tax"
    DISCOUNT = "discount"
    PENALTY = "penalty"
    OTHER = "other"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class AnomalyType(str, Enum):
    PRICE_VARIANCE = "price_variance"
    QUANTITY_MISMATCH = "quantity_mismatch"
    SERVICE_NOT_CONTRACTED = "service_not_contracted"
    DUPLICATE_CHARGE = "duplicate_charge"
    MISSING_REFERENCE = "missing_reference"
    CALCULATION_ERROR = "calculation_error"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NextAction(str, Enum):
    PAYMENT = "payment"
    RETURN_TO_CARRIER = "return_to_carrier"
    RESOLVE_DISPUTE = "resolve_dispute"


def variance_percentage(actual: Decimal, expected: Decimal) -> Decimal:
    """``(actual - expected) / expected * 100``; zero when expected is not positive."""
    if expected <= ZERO:
        return ZERO
    return (actual - expected) / expected * HUNDRED


@dataclass(frozen=True)
class Anomaly:
    """A flagged discrepancy on an invoice or invoice line."""

    anomaly_type: AnomalyType
    severity: Severity
    description: str
    expected_value: Decimal | None = None
    actual_value: Decimal | None = None
    variance: Decimal | None = None
    line_reference: str | None = None
    detected_at: datetime | None = None


@dataclass(frozen=True)
class PaymentDetails:
    payment_date: date
    payment_reference: str
    payment_method: str | None = None


@dataclass(frozen=True)
class TransitionRecord:
    """One applied workflow transition."""

    action: str
    from_status: InvoiceStatus
    to_status: InvoiceStatus
    actor_id: str
    occurred_at: datetime
    notes: str | None = None


@dataclass(frozen=True)
class CarrierInvoice:
    """A carrier-submitted invoice under control."""

    id: str
    invoice_number: str
    carrier_id: str
    invoice_date: date
    total_amount: Decimal
    carrier_name: str | None = None
    contract_id: str | None = None
    due_date: date | None = None
    currency: str = "EUR"
    base_currency: str = "EUR"
    exchange_rate: Decimal | None = None
    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    expected_amount: Decimal = ZERO
    status: InvoiceStatus = InvoiceStatus.RECEIVED
    validation_status: ValidationStatus = ValidationStatus.PENDING
    anomalies: tuple[Anomaly, ...] = ()
    requires_manual_review: bool = False
    control_notes: str | None = None
    next_action: NextAction | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    approval_notes: str | None = None
    rejected_by: str | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    disputed_by: str | None = None
    disputed_at: datetime | None = None
    dispute_reason: str | None = None
    payment: PaymentDetails | None = None
    history: tuple[TransitionRecord, ...] = ()
    version: int = 1

    @property
    def variance_amount(self) -> Decimal:
        return self.total_amount - self.expected_amount

    @property
    def variance_percentage(self) -> Decimal:
        return variance_percentage(self.total_amount, self.expected_amount)

    @property
    def has_anomalies(self) -> bool:
        return bool(self.anomalies)

    def anomalies_of(self, severity: Severity) -> tuple[Anomaly, ...]:
        return tuple(a for a in self.anomalies if a.severity == severity)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_overdue(self, as_of: date) -> bool:
        if self.due_date is None or self.is_terminal:
            return False
        return as_of > self.due_date

    def days_overdue(self, as_of: date) -> int:
        if not self.is_overdue(as_of):
            return 0
        return (as_of - self.due_date).days

    def convert_to_base_currency(self) -> dict[str, Decimal]:
        """Monetary figures in the base currency using the supplied rate."""
        figures = {
            "subtotal": self.subtotal,
            "tax_amount": self.tax_amount,
            "discount_amount": self.discount_amount,
            "total_amount": self.total_amount,
            "expected_amount": self.expected_amount,
            "variance_amount": self.variance_amount,
        }
        if self.currency == self.base_currency or not self.exchange_rate:
            return figures
        return {name: amount * self.exchange_rate for name, amount in figures.items()}


@dataclass(frozen=True)
class CarrierInvoiceLine:
    """One billed line of a carrier invoice."""

    id: str
    invoice_id: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    line_type: LineType = LineType.TRANSPORT
    line_total: Decimal = ZERO
    discount_rate: Decimal = ZERO
    discount_amount: Decimal = ZERO
    tax_rate: Decimal = ZERO
    tax_amount: Decimal = ZERO
    is_tax_inclusive: bool = False
    expected_unit_price: Decimal | None = None
    expected_line_total: Decimal | None = None
    price_variance: Decimal | None = None
    price_variance_percentage: Decimal | None = None
    rate_id: str | None = None
    contract_line_id: str | None = None
    surcharge_id: str | None = None
    shipment_id: str | None = None
    validation_status: LineValidationStatus = LineValidationStatus.PENDING
    has_anomaly: bool = False
    anomaly_type: AnomalyType | None = None
    anomaly_severity: Severity | None = None
    anomaly_description: str | None = None
    corrected_unit_price: Decimal | None = None
    corrected_line_total: Decimal | None = None
    correction_reason: str | None = None
    corrected_by: str | None = None
    corrected_at: datetime | None = None
    approved: bool = False
    approved_by: str | None = None
    approved_at: datetime | None = None
    approval_notes: str | None = None

    @property
    def final_unit_price(self) -> Decimal:
        if self.corrected_unit_price is not None:
            return self.corrected_unit_price
        return self.unit_price

    @property
    def final_amount(self) -> Decimal:
        if self.corrected_line_total is not None:
            return self.corrected_line_total
        return self.line_total

    @property
    def is_corrected(self) -> bool:
        return self.corrected_unit_price is not None

    @property
    def has_tariff_reference(self) -> bool:
        return self.rate_id is not None or self.contract_line_id is not None
