"""
Tests for CarrierInvoiceService.

The service glues the pure InvoiceController to CarrierInvoiceStore: every
test here goes through a real database session and reads the result back
from the store, so what is asserted is what was persisted.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from tariff_kernel.domain.invoices import (
    InvoiceStatus,
    LineValidationStatus,
    NextAction,
    PaymentDetails,
    RiskLevel,
    Severity,
    ValidationStatus,
)
from tariff_kernel.exceptions import (
    InvalidTransitionError,
    InvoiceNotFoundError,
    OptimisticLockError,
)
from tariff_kernel.services.invoice_store import CarrierInvoiceStore
from tariff_services.invoice_service import CarrierInvoiceService

PAYMENT = PaymentDetails(date(2024, 7, 1), "PAY-0001", "transfer")


@pytest.fixture
def service(session, deterministic_clock):
    return CarrierInvoiceService(session, clock=deterministic_clock)


@pytest.fixture
def receive(service, make_invoice, make_line, test_actor_id):
    """Store an invoice billing one transport line at ``billed`` against ``expected``."""

    def _receive(billed="1000", expected="1000", **invoice_overrides):
        invoice = make_invoice(total_amount=Decimal(billed), subtotal=Decimal(billed), **invoice_overrides)
        line = make_line(
            invoice.id,
            unit_price=Decimal(billed),
            line_total=Decimal(billed),
            expected_unit_price=Decimal(expected),
            expected_line_total=Decimal(expected),
        )
        return service.receive(invoice, [line], actor_id=test_actor_id)

    return _receive


class TestReceive:

    def test_received_invoice_is_readable(self, service, receive, captured_logs):
        invoice = receive()

        assert invoice.status == InvoiceStatus.RECEIVED
        assert invoice.validation_status == ValidationStatus.PENDING
        assert invoice.version == 1
        assert invoice.history == ()

        lines = service.get_lines(invoice.id)
        assert len(lines) == 1
        assert lines[0].unit_price == Decimal("1000")
        assert lines[0].invoice_id == invoice.id

        messages = [r["message"] for r in captured_logs()]
        assert "carrier_invoice_stored" in messages
        assert "carrier_invoice_received" in messages

    def test_unknown_invoice(self, service):
        missing = str(uuid4())
        with pytest.raises(InvoiceNotFoundError) as exc_info:
            service.get(missing)
        assert exc_info.value.invoice_id == missing


class TestControl:

    def test_clean_invoice_is_validated(self, service, receive, test_actor_id):
        invoice = receive()

        outcome = service.control(invoice.id, actor_id=test_actor_id)

        assert outcome.invoice.status == InvoiceStatus.VALIDATED
        assert outcome.invoice.version == 2
        assert outcome.risk_level == RiskLevel.LOW

        stored = service.get(invoice.id)
        assert stored.status == InvoiceStatus.VALIDATED
        assert stored.validation_status == ValidationStatus.PASSED
        assert stored.expected_amount == Decimal("1000")
        assert stored.control_notes == "Automatic control performed. 0 anomaly(ies) detected."
        assert [r.action for r in stored.history] == ["start_review", "validate"]
        assert all(r.actor_id == str(test_actor_id) for r in stored.history)

    def test_variance_is_persisted_for_review(
        self, service, receive, test_actor_id, deterministic_clock
    ):
        invoice = receive(billed="1200", expected="1000")

        service.control(invoice.id, actor_id=test_actor_id)

        stored = service.get(invoice.id)
        assert stored.status == InvoiceStatus.UNDER_REVIEW
        assert stored.validation_status == ValidationStatus.MANUAL_REVIEW
        assert stored.requires_manual_review
        assert stored.variance_percentage == Decimal("20")
        assert len(stored.anomalies) == 1
        anomaly = stored.anomalies[0]
        assert anomaly.severity == Severity.HIGH
        assert anomaly.expected_value == Decimal("1000")
        assert anomaly.detected_at == deterministic_clock.now()

        (line,) = service.get_lines(invoice.id)
        assert line.validation_status == LineValidationStatus.DISPUTED
        assert line.anomaly_severity == Severity.HIGH
        assert line.price_variance == Decimal("200")

    def test_terminal_invoice_cannot_be_controlled(self, service, receive, test_actor_id):
        invoice = receive()
        service.apply_transition(invoice.id, "reject", test_actor_id, notes="duplicate")

        with pytest.raises(InvalidTransitionError):
            service.control(invoice.id, actor_id=test_actor_id)
        assert service.get(invoice.id).version == 2


class TestTransitions:

    def test_approve_then_pay(self, service, receive, test_actor_id):
        invoice = receive()
        service.control(invoice.id, actor_id=test_actor_id)

        approved = service.apply_transition(
            invoice.id, "approve", test_actor_id, notes="matches contract"
        )
        assert approved.status == InvoiceStatus.APPROVED
        assert approved.next_action == NextAction.PAYMENT

        service.apply_transition(invoice.id, "pay", test_actor_id, payment=PAYMENT)

        stored = service.get(invoice.id)
        assert stored.status == InvoiceStatus.PAID
        assert stored.version == 4
        assert stored.approved_by == str(test_actor_id)
        assert stored.approval_notes == "matches contract"
        assert stored.payment.payment_reference == "PAY-0001"
        assert [r.to_status for r in stored.history] == [
            InvoiceStatus.UNDER_REVIEW,
            InvoiceStatus.VALIDATED,
            InvoiceStatus.APPROVED,
            InvoiceStatus.PAID,
        ]

    def test_rejected_transition_changes_nothing(self, service, receive, test_actor_id):
        invoice = receive()

        with pytest.raises(InvalidTransitionError):
            service.apply_transition(invoice.id, "approve", test_actor_id)

        stored = service.get(invoice.id)
        assert stored.status == InvoiceStatus.RECEIVED
        assert stored.version == 1

    def test_stale_version_is_refused(self, session, service, receive, test_actor_id):
        invoice = receive()
        service.apply_transition(invoice.id, "start_review", test_actor_id)

        store = CarrierInvoiceStore(session)
        with pytest.raises(OptimisticLockError) as exc_info:
            store.save(invoice, expected_version=1, expected_status=InvoiceStatus.RECEIVED)
        assert exc_info.value.entity_id == invoice.id
        assert exc_info.value.expected_version == 1


class TestLineCorrections:

    def test_correction_refreshes_totals(self, service, receive, test_actor_id):
        invoice = receive(billed="1200", expected="1000")
        service.control(invoice.id, actor_id=test_actor_id)
        (line,) = service.get_lines(invoice.id)

        saved, corrected = service.correct_line(
            invoice.id, line.id, Decimal("1000"), "contract rate", test_actor_id
        )

        assert saved.total_amount == Decimal("1000")
        assert saved.version == 3
        assert saved.status == InvoiceStatus.UNDER_REVIEW
        assert corrected.corrected_line_total == Decimal("1000")

        (stored_line,) = service.get_lines(invoice.id)
        assert stored_line.validation_status == LineValidationStatus.CORRECTED
        assert stored_line.corrected_by == str(test_actor_id)
        assert stored_line.final_amount == Decimal("1000")
        assert service.get(invoice.id).variance_percentage == Decimal("0")

    def test_invalid_correction(self, service, receive, test_actor_id):
        invoice = receive()
        (line,) = service.get_lines(invoice.id)
        with pytest.raises(ValueError):
            service.correct_line(invoice.id, line.id, Decimal("-1"), "typo", test_actor_id)

    def test_approve_line(self, service, receive, test_actor_id):
        invoice = receive()
        (line,) = service.get_lines(invoice.id)

        _, approved = service.approve_line(invoice.id, line.id, test_actor_id, notes="ok")

        (stored_line,) = service.get_lines(invoice.id)
        assert approved.approved
        assert stored_line.approved
        assert stored_line.approval_notes == "ok"
        assert stored_line.validation_status == LineValidationStatus.VALIDATED

    def test_unknown_line(self, service, receive, test_actor_id):
        invoice = receive()
        with pytest.raises(ValueError):
            service.approve_line(invoice.id, str(uuid4()), test_actor_id)

    @pytest.mark.parametrize("status", [InvoiceStatus.PAID, InvoiceStatus.REJECTED])
    def test_terminal_invoice_lines_are_frozen(
        self, service, receive, test_actor_id, captured_logs, status
    ):
        invoice = receive()
        if status == InvoiceStatus.PAID:
            service.control(invoice.id, actor_id=test_actor_id)
            service.apply_transition(invoice.id, "approve", test_actor_id)
            service.apply_transition(invoice.id, "pay", test_actor_id, payment=PAYMENT)
        else:
            service.apply_transition(invoice.id, "reject", test_actor_id, notes="duplicate")
        closed = service.get(invoice.id)
        assert closed.status == status
        (line,) = service.get_lines(invoice.id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            service.correct_line(invoice.id, line.id, Decimal("1"), "late claim", test_actor_id)
        assert exc_info.value.action == "correct_line"
        with pytest.raises(InvalidTransitionError):
            service.approve_line(invoice.id, line.id, test_actor_id)

        stored = service.get(invoice.id)
        assert stored.total_amount == closed.total_amount
        assert stored.version == closed.version
        (stored_line,) = service.get_lines(invoice.id)
        assert stored_line.corrected_unit_price is None
        assert not stored_line.approved

        rejected = [
            r for r in captured_logs() if r["message"] == "invoice_transition_rejected"
        ]
        assert [r["action"] for r in rejected] == ["correct_line", "approve_line"]

    def test_correction_keeps_line_order_and_references(
        self, service, make_invoice, make_line, test_actor_id
    ):
        invoice = make_invoice(total_amount=Decimal("1300"), subtotal=Decimal("1300"))
        transport = make_line(invoice.id, line_total=Decimal("1000"), shipment_id="SHP-1")
        fuel = make_line(
            invoice.id,
            description="Fuel surcharge",
            unit_price=Decimal("300"),
            line_total=Decimal("300"),
            rate_id=None,
            surcharge_id="FUEL-1",
            shipment_id="SHP-1",
        )
        service.receive(invoice, [transport, fuel], actor_id=test_actor_id)

        saved, _ = service.correct_line(
            invoice.id, fuel.id, Decimal("250"), "indexed fuel rate", test_actor_id
        )

        assert saved.total_amount == Decimal("1250")
        first, second = service.get_lines(invoice.id)
        assert (first.id, second.id) == (transport.id, fuel.id)
        assert first.corrected_unit_price is None
        assert first.line_total == Decimal("1000")
        assert second.description == "Fuel surcharge"
        assert second.surcharge_id == "FUEL-1"
        assert second.shipment_id == "SHP-1"
        assert second.rate_id is None
        assert second.unit_price == Decimal("300")
        assert second.corrected_line_total == Decimal("250")


class TestReporting:

    def test_summary(self, service, receive, test_actor_id):
        invoice = receive()
        service.control(invoice.id, actor_id=test_actor_id)

        summary = service.summary(invoice.id, as_of=date(2024, 7, 10))

        assert summary.status == InvoiceStatus.VALIDATED
        assert summary.risk_level == RiskLevel.LOW
        assert summary.is_overdue
        assert summary.days_overdue == 9
        assert summary.lines_requiring_attention == ()

    def test_statistics_and_trends(self, service, receive, test_actor_id):
        clean = receive()
        costly = receive(billed="1200", expected="1000")
        receive(carrier_id="CARRIER-2")
        service.control(clean.id, actor_id=test_actor_id)
        service.control(costly.id, actor_id=test_actor_id)

        stats = service.control_statistics()
        assert stats.invoice_count == 3
        assert stats.by_status["validated"].count == 1
        assert stats.by_status["under_review"].count == 1
        assert stats.by_status["received"].count == 1
        assert stats.anomaly_count == 1
        assert stats.manual_review_count == 1

        trends = service.variance_trends(carrier_id="CARRIER-1")
        assert trends.total_invoices == 2
        assert trends.average_variance_percentage == Decimal("10")
        assert trends.high_variance_invoices == 1
        assert [c.carrier_id for c in trends.by_carrier] == ["CARRIER-1"]
