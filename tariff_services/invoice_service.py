"""
CarrierInvoiceService -- persisted carrier invoice control.

Responsibility:
    Loads an invoice, lets the InvoiceController compute its next state,
    and writes it back under the store's optimistic lock.  This is the
    seam where two operators acting on the same invoice (approve vs
    dispute) are serialized: the second writer gets OptimisticLockError.

Architecture position:
    Services -- imperative shell.  Pure decisions live in
    InvoiceController and the invoice audit engine; persistence lives in
    CarrierInvoiceStore.

Invariants enforced:
    - Every write carries the version and status the caller loaded.
    - Line corrections and approvals recompute the invoice totals in the
      same write, and are refused once the invoice is paid or rejected.

Failure modes:
    - InvoiceNotFoundError: unknown invoice id.
    - InvalidTransitionError / UnknownActionError: from the controller,
      including line changes on a terminal invoice.
    - OptimisticLockError: the invoice moved since it was loaded.
    - ValueError: unknown line id, or an invalid correction.

Non-goals:
    Does NOT call ``session.commit()`` -- the caller owns the transaction.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from tariff_engines import invoice_analytics, invoice_audit
from tariff_engines.invoice_analytics import ControlStatistics, VarianceTrends
from tariff_kernel.domain.clock import Clock, SystemClock
from tariff_kernel.domain.invoices import (
    CarrierInvoice,
    CarrierInvoiceLine,
    InvoiceStatus,
    PaymentDetails,
)
from tariff_kernel.domain.rates import RateTerm
from tariff_kernel.domain.shipment import ShipmentContext
from tariff_kernel.exceptions import OptimisticLockError
from tariff_kernel.logging_config import LogContext, get_logger
from tariff_kernel.services.invoice_store import CarrierInvoiceStore
from tariff_services.invoice_controller import ControlOutcome, ControlSummary, InvoiceController

logger = get_logger("services.invoice_service")


class CarrierInvoiceService:
    """
    Carrier invoice use cases over the database.

    Contract:
        Receives a Session and, optionally, an InvoiceController and a
        Clock.  Returns frozen domain records; never commits.
    """

    def __init__(
        self,
        session: Session,
        controller: InvoiceController | None = None,
        clock: Clock | None = None,
    ):
        self._clock = clock or SystemClock()
        self._store = CarrierInvoiceStore(session)
        self._controller = controller or InvoiceController(clock=self._clock)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, invoice_id: str) -> CarrierInvoice:
        return self._store.get(invoice_id)

    def get_lines(self, invoice_id: str) -> tuple[CarrierInvoiceLine, ...]:
        return self._store.get_lines(invoice_id)

    def summary(self, invoice_id: str, as_of: date | None = None) -> ControlSummary:
        return self._controller.control_summary(
            self._store.get(invoice_id), self._store.get_lines(invoice_id), as_of
        )

    def _all_invoices(self) -> list[CarrierInvoice]:
        invoices: list[CarrierInvoice] = []
        for status in InvoiceStatus:
            invoices.extend(self._store.list_by_status(status))
        return invoices

    def control_statistics(self) -> ControlStatistics:
        return invoice_analytics.control_statistics(self._all_invoices())

    def variance_trends(
        self,
        carrier_id: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> VarianceTrends:
        return invoice_analytics.analyze_variance_trends(
            self._all_invoices(),
            carrier_id=carrier_id,
            start=start,
            end=end,
            thresholds=self._controller.thresholds,
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def receive(
        self,
        invoice: CarrierInvoice,
        lines: tuple[CarrierInvoiceLine, ...] | list[CarrierInvoiceLine],
        actor_id: UUID,
    ) -> CarrierInvoice:
        """Store a freshly received invoice with its lines."""
        lines = tuple(lines)
        self._store.add(invoice, lines, created_by_id=actor_id)
        logger.info(
            "carrier_invoice_received",
            extra={
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "carrier_id": invoice.carrier_id,
                "total_amount": str(invoice.total_amount),
            },
        )
        return self._store.get(invoice.id)

    def _save(
        self,
        loaded: CarrierInvoice,
        updated: CarrierInvoice,
        actor_id: UUID,
        lines: tuple[CarrierInvoiceLine, ...] | None = None,
    ) -> CarrierInvoice:
        try:
            return self._store.save(
                updated,
                expected_version=loaded.version,
                expected_status=loaded.status,
                updated_by_id=actor_id,
                lines=lines,
            )
        except OptimisticLockError:
            logger.warning(
                "carrier_invoice_concurrent_update",
                extra={
                    "invoice_id": loaded.id,
                    "loaded_version": loaded.version,
                    "loaded_status": loaded.status.value,
                    "attempted_status": updated.status.value,
                },
            )
            raise

    def apply_transition(
        self,
        invoice_id: str,
        action: str,
        actor_id: UUID,
        notes: str | None = None,
        payment: PaymentDetails | None = None,
    ) -> CarrierInvoice:
        """
        Apply a workflow action to a stored invoice.

        Raises:
            InvalidTransitionError: the action is not allowed now.
            OptimisticLockError: another writer moved the invoice first.
        """
        with LogContext.bind(invoice_id=invoice_id, actor_id=str(actor_id)):
            loaded = self._store.get(invoice_id)
            updated = self._controller.transition(
                loaded, action, str(actor_id), notes=notes, payment=payment
            )
            return self._save(loaded, updated, actor_id)

    def control(
        self,
        invoice_id: str,
        actor_id: UUID,
        reference_terms: Mapping[str, RateTerm] | None = None,
        shipments: Mapping[str, ShipmentContext] | None = None,
    ) -> ControlOutcome:
        """Run the automatic control of a stored invoice and persist the result."""
        with LogContext.bind(invoice_id=invoice_id, actor_id=str(actor_id)):
            loaded = self._store.get(invoice_id)
            outcome = self._controller.control_invoice(
                loaded,
                self._store.get_lines(invoice_id),
                actor_id=str(actor_id),
                reference_terms=reference_terms,
                shipments=shipments,
            )
            saved = self._save(loaded, outcome.invoice, actor_id, lines=outcome.lines)
            return ControlOutcome(invoice=saved, lines=outcome.lines, risk_level=outcome.risk_level)

    def _replace_line(
        self,
        invoice_id: str,
        line_id: str,
        action: str,
        change,
        actor_id: UUID,
    ) -> tuple[CarrierInvoice, CarrierInvoiceLine]:
        loaded = self._store.get(invoice_id)
        self._controller.ensure_open(loaded, action)
        lines = self._store.get_lines(invoice_id)
        target = next((line for line in lines if line.id == line_id), None)
        if target is None:
            raise ValueError(f"Invoice {invoice_id} has no line {line_id}")
        changed = change(target)
        new_lines = tuple(changed if line.id == line_id else line for line in lines)
        updated = self._controller.recalculate_totals(loaded, new_lines)
        saved = self._save(loaded, updated, actor_id, lines=(changed,))
        return saved, changed

    def correct_line(
        self,
        invoice_id: str,
        line_id: str,
        corrected_unit_price: Decimal,
        reason: str,
        actor_id: UUID,
    ) -> tuple[CarrierInvoice, CarrierInvoiceLine]:
        """Record a corrected unit price on a line and refresh the invoice totals."""
        now = self._clock.now()
        saved, line = self._replace_line(
            invoice_id,
            line_id,
            "correct_line",
            lambda line: invoice_audit.correct_line(
                line, corrected_unit_price, reason, str(actor_id), now
            ),
            actor_id,
        )
        logger.info(
            "invoice_line_corrected",
            extra={
                "invoice_id": invoice_id,
                "line_id": line_id,
                "corrected_unit_price": str(corrected_unit_price),
                "corrected_line_total": str(line.corrected_line_total),
            },
        )
        return saved, line

    def approve_line(
        self,
        invoice_id: str,
        line_id: str,
        actor_id: UUID,
        notes: str | None = None,
    ) -> tuple[CarrierInvoice, CarrierInvoiceLine]:
        now = self._clock.now()
        saved, line = self._replace_line(
            invoice_id,
            line_id,
            "approve_line",
            lambda line: invoice_audit.approve_line(line, str(actor_id), now, notes),
            actor_id,
        )
        logger.info(
            "invoice_line_approved",
            extra={"invoice_id": invoice_id, "line_id": line_id},
        )
        return saved, line
