"""
Module: tariff_kernel.models.carrier_invoice
Responsibility: ORM persistence for carrier invoices, their lines and their
    workflow transition history.

Architecture position: Kernel > Models.  May import from db/base.py and the
    kernel domain records it maps.

Invariants enforced:
    - status and validation_status are limited to their enum values by
      check constraints.
    - ``version`` starts at 1 and is bumped by every status-changing UPDATE;
      CarrierInvoiceStore matches on it (optimistic concurrency).
    - Transition history rows are append-only.

Anomalies are stored as a JSON array with Decimal figures rendered as
strings so no precision is lost.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tariff_kernel.db.base import Base, TrackedBase
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
    Severity,
    TransitionRecord,
    ValidationStatus,
)


def _dec(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def _undec(value: str | None) -> Decimal | None:
    return None if value is None else Decimal(value)


def anomaly_to_json(anomaly: Anomaly) -> dict[str, Any]:
    return {
        "type": anomaly.anomaly_type.value,
        "severity": anomaly.severity.value,
        "description": anomaly.description,
        "expected_value": _dec(anomaly.expected_value),
        "actual_value": _dec(anomaly.actual_value),
        "variance": _dec(anomaly.variance),
        "line_reference": anomaly.line_reference,
        "detected_at": anomaly.detected_at.isoformat() if anomaly.detected_at else None,
    }


def anomaly_from_json(data: dict[str, Any]) -> Anomaly:
    detected_at = data.get("detected_at")
    return Anomaly(
        anomaly_type=AnomalyType(data["type"]),
        severity=Severity(data["severity"]),
        description=data["description"],
        expected_value=_undec(data.get("expected_value")),
        actual_value=_undec(data.get("actual_value")),
        variance=_undec(data.get("variance")),
        line_reference=data.get("line_reference"),
        detected_at=datetime.fromisoformat(detected_at) if detected_at else None,
    )


class CarrierInvoiceModel(TrackedBase):
    """
    ORM model for carrier invoices.

    Maps to the ``CarrierInvoice`` frozen dataclass.  Variance columns are
    denormalized copies of the derived domain properties, kept for
    reporting queries.
    """

    __tablename__ = "carrier_invoices"

    __table_args__ = (
        UniqueConstraint(
            "carrier_id", "invoice_number", name="uq_carrier_invoices_carrier_number"
        ),
        CheckConstraint(
            "status IN ('received', 'under_review', 'validated', 'disputed', "
            "'approved', 'rejected', 'paid')",
            name="ck_carrier_invoices_status",
        ),
        CheckConstraint(
            "validation_status IN ('pending', 'passed', 'failed', 'manual_review')",
            name="ck_carrier_invoices_validation_status",
        ),
        CheckConstraint("version >= 1", name="ck_carrier_invoices_version"),
        Index("idx_carrier_invoices_status", "status"),
        Index("idx_carrier_invoices_carrier", "carrier_id"),
    )

    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False)
    carrier_id: Mapped[str] = mapped_column(String(100), nullable=False)
    carrier_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    contract_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    expected_amount: Mapped[Decimal] = mapped_column(nullable=False)
    variance_amount: Mapped[Decimal] = mapped_column(nullable=False)
    variance_percentage: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    validation_status: Mapped[str] = mapped_column(String(20), nullable=False)
    anomalies: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    requires_manual_review: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    control_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_action: Mapped[str | None] = mapped_column(String(30), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    disputed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    disputed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    lines: Mapped[list["CarrierInvoiceLineModel"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="CarrierInvoiceLineModel.position",
    )
    transitions: Mapped[list["CarrierInvoiceTransitionModel"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="CarrierInvoiceTransitionModel.sequence",
    )

    def to_dto(self) -> CarrierInvoice:
        """Convert ORM model to frozen dataclass."""
        payment = None
        if self.payment_date is not None:
            payment = PaymentDetails(
                payment_date=self.payment_date,
                payment_reference=self.payment_reference or "",
                payment_method=self.payment_method,
            )
        return CarrierInvoice(
            id=str(self.id),
            invoice_number=self.invoice_number,
            carrier_id=self.carrier_id,
            carrier_name=self.carrier_name,
            contract_id=self.contract_id,
            invoice_date=self.invoice_date,
            due_date=self.due_date,
            currency=self.currency,
            base_currency=self.base_currency,
            exchange_rate=self.exchange_rate,
            subtotal=self.subtotal,
            tax_amount=self.tax_amount,
            discount_amount=self.discount_amount,
            total_amount=self.total_amount,
            expected_amount=self.expected_amount,
            status=InvoiceStatus(self.status),
            validation_status=ValidationStatus(self.validation_status),
            anomalies=tuple(anomaly_from_json(a) for a in self.anomalies or ()),
            requires_manual_review=self.requires_manual_review,
            control_notes=self.control_notes,
            next_action=NextAction(self.next_action) if self.next_action else None,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            approval_notes=self.approval_notes,
            rejected_by=self.rejected_by,
            rejected_at=self.rejected_at,
            rejection_reason=self.rejection_reason,
            disputed_by=self.disputed_by,
            disputed_at=self.disputed_at,
            dispute_reason=self.dispute_reason,
            payment=payment,
            history=tuple(t.to_dto() for t in self.transitions),
            version=self.version,
        )

    @staticmethod
    def column_values(dto: CarrierInvoice) -> dict[str, Any]:
        """Mutable column values of a domain invoice (everything but identity)."""
        return {
            "carrier_name": dto.carrier_name,
            "contract_id": dto.contract_id,
            "due_date": dto.due_date,
            "exchange_rate": dto.exchange_rate,
            "subtotal": dto.subtotal,
            "tax_amount": dto.tax_amount,
            "discount_amount": dto.discount_amount,
            "total_amount": dto.total_amount,
            "expected_amount": dto.expected_amount,
            "variance_amount": dto.variance_amount,
            "variance_percentage": dto.variance_percentage,
            "status": dto.status.value,
            "validation_status": dto.validation_status.value,
            "anomalies": [anomaly_to_json(a) for a in dto.anomalies],
            "requires_manual_review": dto.requires_manual_review,
            "control_notes": dto.control_notes,
            "next_action": dto.next_action.value if dto.next_action else None,
            "approved_by": dto.approved_by,
            "approved_at": dto.approved_at,
            "approval_notes": dto.approval_notes,
            "rejected_by": dto.rejected_by,
            "rejected_at": dto.rejected_at,
            "rejection_reason": dto.rejection_reason,
            "disputed_by": dto.disputed_by,
            "disputed_at": dto.disputed_at,
            "dispute_reason": dto.dispute_reason,
            "payment_date": dto.payment.payment_date if dto.payment else None,
            "payment_reference": dto.payment.payment_reference if dto.payment else None,
            "payment_method": dto.payment.payment_method if dto.payment else None,
        }

    @classmethod
    def from_dto(cls, dto: CarrierInvoice, created_by_id: UUID) -> "CarrierInvoiceModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=UUID(dto.id),
            invoice_number=dto.invoice_number,
            carrier_id=dto.carrier_id,
            invoice_date=dto.invoice_date,
            currency=dto.currency,
            base_currency=dto.base_currency,
            version=dto.version,
            created_by_id=created_by_id,
            transitions=[
                CarrierInvoiceTransitionModel.from_dto(record, sequence)
                for sequence, record in enumerate(dto.history, start=1)
            ],
            **cls.column_values(dto),
        )

    def __repr__(self) -> str:
        return f"<CarrierInvoiceModel {self.invoice_number} {self.status} v{self.version}>"


class CarrierInvoiceLineModel(Base):
    """ORM model for carrier invoice lines.  Maps to ``CarrierInvoiceLine``."""

    __tablename__ = "carrier_invoice_lines"

    __table_args__ = (
        CheckConstraint(
            "validation_status IN ('pending', 'validated', 'disputed', 'corrected')",
            name="ck_carrier_invoice_lines_validation_status",
        ),
        Index("idx_carrier_invoice_lines_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("carrier_invoices.id"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    line_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    line_total: Mapped[Decimal] = mapped_column(nullable=False)
    discount_rate: Mapped[Decimal] = mapped_column(nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    is_tax_inclusive: Mapped[bool] = mapped_column(Boolean, nullable=False)
    expected_unit_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    expected_line_total: Mapped[Decimal | None] = mapped_column(nullable=True)
    price_variance: Mapped[Decimal | None] = mapped_column(nullable=True)
    price_variance_percentage: Mapped[Decimal | None] = mapped_column(nullable=True)
    rate_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    contract_line_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    surcharge_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    shipment_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    validation_status: Mapped[str] = mapped_column(String(20), nullable=False)
    has_anomaly: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    anomaly_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    anomaly_severity: Mapped[str | None] = mapped_column(String(10), nullable=True)
    anomaly_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    corrected_unit_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    corrected_line_total: Mapped[Decimal | None] = mapped_column(nullable=True)
    correction_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    corrected_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    corrected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    invoice: Mapped[CarrierInvoiceModel] = relationship(back_populates="lines")

    def to_dto(self) -> CarrierInvoiceLine:
        return CarrierInvoiceLine(
            id=str(self.id),
            invoice_id=str(self.invoice_id),
            description=self.description,
            line_type=LineType(self.line_type),
            quantity=self.quantity,
            unit_price=self.unit_price,
            line_total=self.line_total,
            discount_rate=self.discount_rate,
            discount_amount=self.discount_amount,
            tax_rate=self.tax_rate,
            tax_amount=self.tax_amount,
            is_tax_inclusive=self.is_tax_inclusive,
            expected_unit_price=self.expected_unit_price,
            expected_line_total=self.expected_line_total,
            price_variance=self.price_variance,
            price_variance_percentage=self.price_variance_percentage,
            rate_id=self.rate_id,
            contract_line_id=self.contract_line_id,
            surcharge_id=self.surcharge_id,
            shipment_id=self.shipment_id,
            validation_status=LineValidationStatus(self.validation_status),
            has_anomaly=self.has_anomaly,
            anomaly_type=AnomalyType(self.anomaly_type) if self.anomaly_type else None,
            anomaly_severity=Severity(self.anomaly_severity) if self.anomaly_severity else None,
            anomaly_description=self.anomaly_description,
            corrected_unit_price=self.corrected_unit_price,
            corrected_line_total=self.corrected_line_total,
            correction_reason=self.correction_reason,
            corrected_by=self.corrected_by,
            corrected_at=self.corrected_at,
            approved=self.approved,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            approval_notes=self.approval_notes,
        )

    @staticmethod
    def column_values(dto: CarrierInvoiceLine) -> dict[str, Any]:
        """Mutable column values of a domain line (everything but identity and position)."""
        return {
            "description": dto.description,
            "line_type": dto.line_type.value,
            "quantity": dto.quantity,
            "unit_price": dto.unit_price,
            "line_total": dto.line_total,
            "discount_rate": dto.discount_rate,
            "discount_amount": dto.discount_amount,
            "tax_rate": dto.tax_rate,
            "tax_amount": dto.tax_amount,
            "is_tax_inclusive": dto.is_tax_inclusive,
            "expected_unit_price": dto.expected_unit_price,
            "expected_line_total": dto.expected_line_total,
            "price_variance": dto.price_variance,
            "price_variance_percentage": dto.price_variance_percentage,
            "rate_id": dto.rate_id,
            "contract_line_id": dto.contract_line_id,
            "surcharge_id": dto.surcharge_id,
            "shipment_id": dto.shipment_id,
            "validation_status": dto.validation_status.value,
            "has_anomaly": dto.has_anomaly,
            "anomaly_type": dto.anomaly_type.value if dto.anomaly_type else None,
            "anomaly_severity": dto.anomaly_severity.value if dto.anomaly_severity else None,
            "anomaly_description": dto.anomaly_description,
            "corrected_unit_price": dto.corrected_unit_price,
            "corrected_line_total": dto.corrected_line_total,
            "correction_reason": dto.correction_reason,
            "corrected_by": dto.corrected_by,
            "corrected_at": dto.corrected_at,
            "approved": dto.approved,
            "approved_by": dto.approved_by,
            "approved_at": dto.approved_at,
            "approval_notes": dto.approval_notes,
        }

    @classmethod
    def from_dto(cls, dto: CarrierInvoiceLine, position: int) -> "CarrierInvoiceLineModel":
        return cls(
            id=UUID(dto.id),
            invoice_id=UUID(dto.invoice_id),
            position=position,
            **cls.column_values(dto),
        )


class CarrierInvoiceTransitionModel(Base):
    """Append-only workflow history row.  Maps to ``TransitionRecord``."""

    __tablename__ = "carrier_invoice_transitions"

    __table_args__ = (
        UniqueConstraint(
            "invoice_id", "sequence", name="uq_carrier_invoice_transitions_sequence"
        ),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("carrier_invoices.id"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(40), nullable=False)
    from_status: Mapped[str] = mapped_column(String(20), nullable=False)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    invoice: Mapped[CarrierInvoiceModel] = relationship(back_populates="transitions")

    def to_dto(self) -> TransitionRecord:
        return TransitionRecord(
            action=self.action,
            from_status=InvoiceStatus(self.from_status),
            to_status=InvoiceStatus(self.to_status),
            actor_id=self.actor_id,
            occurred_at=self.occurred_at,
            notes=self.notes,
        )

    @classmethod
    def from_dto(cls, record: TransitionRecord, sequence: int) -> "CarrierInvoiceTransitionModel":
        return cls(
            sequence=sequence,
            action=record.action,
            from_status=record.from_status.value,
            to_status=record.to_status.value,
            actor_id=record.actor_id,
            occurred_at=record.occurred_at,
            notes=record.notes,
        )
