"""
InvoiceController -- carrier invoice risk and status transitions.

Responsibility:
    Aggregates line-level audit results into invoice-level variance, risk
    and validation status, and is the only way an invoice changes status.
    Every transition is looked up in CARRIER_INVOICE_WORKFLOW, its guard
    evaluated, and the result returned as a new CarrierInvoice carrying
    actor, timestamp, notes and next_action.

Architecture position:
    Services -- pure orchestration over the invoice audit engine and the
    workflow definition.  Persistence (with its optimistic lock) lives in
    CarrierInvoiceService; this class performs no I/O.

Invariants enforced:
    - Status only changes through a declared transition whose guard holds.
    - Terminal invoices (rejected, paid) never change again.
    - Risk level is derived, never stored: critical if a critical anomaly
      or |variance| > 20 %, high if a high anomaly or > 10 %, medium if any
      anomaly or > 5 %, else low.
    - Timestamps come from the injected Clock.

Failure modes:
    - InvalidTransitionError: no edge from the current status, a failed
      guard, or an invoice in a terminal status.
    - UnknownActionError: the action is not part of the workflow.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal

from tariff_engines import invoice_audit
from tariff_kernel.domain.clock import Clock, SystemClock
from tariff_kernel.domain.control import ControlThresholds
from tariff_kernel.domain.invoices import (
    Anomaly,
    CarrierInvoice,
    CarrierInvoiceLine,
    InvoiceStatus,
    NextAction,
    PaymentDetails,
    RiskLevel,
    Severity,
    TransitionRecord,
    ValidationStatus,
    variance_percentage,
)
from tariff_kernel.domain.rates import RateTerm
from tariff_kernel.domain.shipment import ShipmentContext
from tariff_kernel.domain.workflow import Transition, Workflow
from tariff_kernel.exceptions import InvalidTransitionError, UnknownActionError
from tariff_kernel.logging_config import LogContext, get_logger
from tariff_services.invoice_workflow import (
    APPROVE,
    CARRIER_INVOICE_WORKFLOW,
    DISPUTE,
    HAS_ANOMALIES,
    PAY,
    PAYMENT_DETAILS_SUPPLIED,
    REJECT,
    REQUIRE_MANUAL_REVIEW,
    START_REVIEW,
    VALIDATE,
    VALIDATION_PASSED,
)

logger = get_logger("services.invoice_controller")

ZERO = Decimal("0")
SYSTEM_ACTOR = "system"
CONTROL_ACTION = "control"


@dataclass(frozen=True)
class ControlOutcome:
    """Result of the automatic control of one invoice."""

    invoice: CarrierInvoice
    lines: tuple[CarrierInvoiceLine, ...]
    risk_level: RiskLevel


@dataclass(frozen=True)
class ControlSummary:
    invoice_id: str
    invoice_number: str
    status: InvoiceStatus
    validation_status: ValidationStatus
    risk_level: RiskLevel
    total_amount: Decimal
    expected_amount: Decimal
    variance_amount: Decimal
    variance_percentage: Decimal
    anomalies_by_severity: dict[str, int]
    lines_requiring_attention: tuple[str, ...]
    requires_manual_review: bool
    next_action: NextAction | None
    is_overdue: bool
    days_overdue: int


class InvoiceController:
    """
    Carrier invoice state machine and control pipeline.

    Contract:
        Receives a Clock and ControlThresholds via constructor injection.
        Invoices and lines are frozen records; every method returns new ones.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        thresholds: ControlThresholds | None = None,
        workflow: Workflow = CARRIER_INVOICE_WORKFLOW,
    ):
        self._clock = clock or SystemClock()
        self._thresholds = thresholds or ControlThresholds()
        self._workflow = workflow

    @property
    def thresholds(self) -> ControlThresholds:
        return self._thresholds

    # =========================================================================
    # Transitions
    # =========================================================================

    def _guard_failure(
        self,
        transition: Transition,
        invoice: CarrierInvoice,
        payment: PaymentDetails | None,
    ) -> str | None:
        guard = transition.guard
        if guard is None:
            return None
        if guard == VALIDATION_PASSED and invoice.validation_status != ValidationStatus.PASSED:
            return f"validation status is '{invoice.validation_status.value}', not 'passed'"
        if guard == HAS_ANOMALIES and not invoice.has_anomalies:
            return "no anomaly has been detected on the invoice"
        if guard == PAYMENT_DETAILS_SUPPLIED and payment is None:
            return "payment details are required"
        return None

    def _reject(self, invoice: CarrierInvoice, action: str, reason: str) -> InvalidTransitionError:
        logger.warning(
            "invoice_transition_rejected",
            extra={
                "invoice_id": invoice.id,
                "action": action,
                "from_status": invoice.status.value,
                "reason": reason,
            },
        )
        return InvalidTransitionError(invoice.id, action, invoice.status.value, reason)

    def ensure_open(self, invoice: CarrierInvoice, action: str) -> None:
        """
        Refuse line-level changes on a paid or rejected invoice.

        Raises:
            InvalidTransitionError: the invoice is in a terminal status.
        """
        if invoice.is_terminal:
            raise self._reject(invoice, action, "invoice is in a terminal status")

    def can(self, invoice: CarrierInvoice, action: str, payment: PaymentDetails | None = None) -> bool:
        """True iff ``transition`` would succeed with the same arguments."""
        transition = self._workflow.find(action, invoice.status.value)
        return transition is not None and self._guard_failure(transition, invoice, payment) is None

    def transition(
        self,
        invoice: CarrierInvoice,
        action: str,
        actor_id: str,
        notes: str | None = None,
        payment: PaymentDetails | None = None,
    ) -> CarrierInvoice:
        """
        Apply ``action`` to ``invoice``.

        Returns:
            The invoice in its new status, with the transition appended to
            its history and ``next_action`` set.

        Raises:
            UnknownActionError: ``action`` is not a workflow action.
            InvalidTransitionError: the edge or its guard does not hold.
        """
        if action not in self._workflow.actions:
            raise UnknownActionError(action)

        with LogContext.bind(invoice_id=invoice.id, actor_id=actor_id):
            if invoice.is_terminal:
                raise self._reject(invoice, action, "invoice is in a terminal status")
            transition = self._workflow.find(action, invoice.status.value)
            if transition is None:
                raise self._reject(
                    invoice, action, f"no '{action}' transition from '{invoice.status.value}'"
                )
            failure = self._guard_failure(transition, invoice, payment)
            if failure is not None:
                raise self._reject(invoice, action, failure)

            now = self._clock.now()
            to_status = InvoiceStatus(transition.to_state)
            record = TransitionRecord(
                action=action,
                from_status=invoice.status,
                to_status=to_status,
                actor_id=actor_id,
                occurred_at=now,
                notes=notes,
            )
            changes: dict = {
                "status": to_status,
                "next_action": NextAction(transition.next_action) if transition.next_action else None,
                "history": invoice.history + (record,),
            }
            if action == APPROVE:
                changes.update(approved_by=actor_id, approved_at=now, approval_notes=notes)
            elif action == REJECT:
                changes.update(rejected_by=actor_id, rejected_at=now, rejection_reason=notes)
            elif action == DISPUTE:
                changes.update(disputed_by=actor_id, disputed_at=now, dispute_reason=notes)
            elif action == PAY:
                changes.update(payment=payment)
            elif action == REQUIRE_MANUAL_REVIEW:
                changes.update(requires_manual_review=True, control_notes=notes or invoice.control_notes)

            updated = replace(invoice, **changes)
            logger.info(
                "invoice_transition_applied",
                extra={
                    "action": action,
                    "from_status": invoice.status.value,
                    "to_status": to_status.value,
                    "next_action": updated.next_action,
                },
            )
            return updated

    def require_manual_review(
        self,
        invoice: CarrierInvoice,
        actor_id: str,
        reason: str,
    ) -> CarrierInvoice:
        """Force ``under_review`` from any non-terminal status."""
        return self.transition(invoice, REQUIRE_MANUAL_REVIEW, actor_id, notes=reason)

    # =========================================================================
    # Risk
    # =========================================================================

    def derive_risk_level(self, invoice: CarrierInvoice) -> RiskLevel:
        return self._risk_level(invoice.anomalies, invoice.variance_percentage)

    def _risk_level(self, anomalies: tuple[Anomaly, ...], variance_pct: Decimal) -> RiskLevel:
        t = self._thresholds
        pct = abs(variance_pct)
        severities = {a.severity for a in anomalies}
        if Severity.CRITICAL in severities or pct > t.invoice_critical_variance_pct:
            return RiskLevel.CRITICAL
        if Severity.HIGH in severities or pct > t.invoice_high_variance_pct:
            return RiskLevel.HIGH
        if anomalies or pct > t.invoice_medium_variance_pct:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def classify(
        self,
        anomalies: tuple[Anomaly, ...],
        variance_pct: Decimal,
    ) -> tuple[ValidationStatus, bool]:
        """Validation status and manual-review flag for a control result."""
        t = self._thresholds
        pct = abs(variance_pct)
        severities = {a.severity for a in anomalies}
        if Severity.CRITICAL in severities or pct > t.invoice_critical_variance_pct:
            return ValidationStatus.FAILED, True
        if Severity.HIGH in severities or pct > t.invoice_high_variance_pct:
            return ValidationStatus.MANUAL_REVIEW, True
        return ValidationStatus.PASSED, False

    # =========================================================================
    # Control pipeline
    # =========================================================================

    def fill_expected_figures(
        self,
        lines: tuple[CarrierInvoiceLine, ...],
        reference_terms: Mapping[str, RateTerm],
        shipments: Mapping[str, ShipmentContext],
    ) -> tuple[CarrierInvoiceLine, ...]:
        """Price the rate term a line references (by rate or contract line) when it has no expected total."""
        filled: list[CarrierInvoiceLine] = []
        for line in lines:
            key = line.rate_id or line.contract_line_id
            term = reference_terms.get(key) if key else None
            ctx = shipments.get(line.shipment_id) if line.shipment_id else None
            if line.expected_line_total is None and term is not None and ctx is not None:
                line = invoice_audit.expected_totals_from_term(line, term, ctx)
            filled.append(line)
        return tuple(filled)

    def control_invoice(
        self,
        invoice: CarrierInvoice,
        lines: tuple[CarrierInvoiceLine, ...] | list[CarrierInvoiceLine],
        actor_id: str = SYSTEM_ACTOR,
        reference_terms: Mapping[str, RateTerm] | None = None,
        shipments: Mapping[str, ShipmentContext] | None = None,
    ) -> ControlOutcome:
        """
        Automatic control of a received invoice.

        Audits every line, sums the expected amount, classifies the
        invoice and moves it to ``validated`` when the control passed, or
        leaves it ``under_review`` otherwise.  An invoice already under
        review may be controlled again.

        Raises:
            InvalidTransitionError: invoice neither received nor under review.
        """
        if invoice.status not in (InvoiceStatus.RECEIVED, InvoiceStatus.UNDER_REVIEW):
            raise self._reject(
                invoice, CONTROL_ACTION, "only received or under-review invoices can be controlled"
            )

        with LogContext.bind(invoice_id=invoice.id, actor_id=actor_id):
            now = self._clock.now()
            lines = tuple(lines)
            if reference_terms and shipments:
                lines = self.fill_expected_figures(lines, reference_terms, shipments)

            audited: list[CarrierInvoiceLine] = []
            anomalies: list[Anomaly] = []
            expected_total = ZERO
            for line in lines:
                audit = invoice_audit.audit_line(line, self._thresholds)
                audited.append(invoice_audit.apply_line_audit(line, audit))
                anomalies.extend(invoice_audit.stamp_anomalies(audit.anomalies, now))
                amount = invoice_audit.expected_line_amount(line)
                if amount is not None:
                    expected_total += amount

            found = tuple(anomalies)
            pct = variance_percentage(invoice.total_amount, expected_total)
            validation_status, manual_review = self.classify(found, pct)

            if invoice.status == InvoiceStatus.RECEIVED:
                invoice = self.transition(invoice, START_REVIEW, actor_id)
            invoice = replace(
                invoice,
                expected_amount=expected_total,
                anomalies=found,
                validation_status=validation_status,
                requires_manual_review=manual_review,
                control_notes=f"Automatic control performed. {len(found)} anomaly(ies) detected.",
            )
            if validation_status == ValidationStatus.PASSED:
                invoice = self.transition(invoice, VALIDATE, actor_id)

            risk = self.derive_risk_level(invoice)
            logger.info(
                "invoice_controlled",
                extra={
                    "expected_amount": str(expected_total),
                    "variance_percentage": str(invoice.variance_percentage),
                    "validation_status": validation_status.value,
                    "risk_level": risk.value,
                    "anomaly_count": len(found),
                    "status": invoice.status.value,
                },
            )
            return ControlOutcome(invoice=invoice, lines=tuple(audited), risk_level=risk)

    def recalculate_totals(
        self,
        invoice: CarrierInvoice,
        lines: tuple[CarrierInvoiceLine, ...] | list[CarrierInvoiceLine],
    ) -> CarrierInvoice:
        """
        Invoice amounts from its lines' final figures.

        ``total_amount`` sums the lines' final amounts (corrections win);
        ``subtotal`` is that total less the line taxes.
        """
        total = sum((line.final_amount for line in lines), ZERO)
        tax = sum((line.tax_amount for line in lines), ZERO)
        discount = sum((line.discount_amount for line in lines), ZERO)
        updated = replace(
            invoice,
            total_amount=total,
            tax_amount=tax,
            discount_amount=discount,
            subtotal=total - tax,
        )
        logger.info(
            "invoice_totals_recalculated",
            extra={
                "invoice_id": invoice.id,
                "previous_total": str(invoice.total_amount),
                "total_amount": str(total),
                "line_count": len(lines),
            },
        )
        return updated

    def control_summary(
        self,
        invoice: CarrierInvoice,
        lines: tuple[CarrierInvoiceLine, ...] | list[CarrierInvoiceLine] = (),
        as_of: date | None = None,
    ) -> ControlSummary:
        as_of = as_of or self._clock.now().date()
        by_severity = {s.value: len(invoice.anomalies_of(s)) for s in Severity}
        return ControlSummary(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            status=invoice.status,
            validation_status=invoice.validation_status,
            risk_level=self.derive_risk_level(invoice),
            total_amount=invoice.total_amount,
            expected_amount=invoice.expected_amount,
            variance_amount=invoice.variance_amount,
            variance_percentage=invoice.variance_percentage,
            anomalies_by_severity=by_severity,
            lines_requiring_attention=tuple(
                line.id for line in lines if invoice_audit.requires_attention(line, self._thresholds)
            ),
            requires_manual_review=invoice.requires_manual_review,
            next_action=invoice.next_action,
            is_overdue=invoice.is_overdue(as_of),
            days_overdue=invoice.days_overdue(as_of),
        )
