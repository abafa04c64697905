"""
CarrierInvoiceStore -- persistence of carrier invoices under optimistic locking.

Responsibility:
    Loads carrier invoices (with lines and transition history) as frozen
    domain records and writes changed records back.  Every write is guarded
    by a version + status precondition so two operators racing on the same
    invoice (e.g. approve vs dispute) cannot silently overwrite each other.

Architecture position:
    Kernel > Services -- imperative shell.  Called by
    tariff_services.invoice_service; never by the pure engines.

Invariants enforced:
    - save() issues ``UPDATE ... WHERE id = :id AND version = :v AND
      status = :s``.  Zero matched rows raises OptimisticLockError, the
      concurrent-modification error callers map to a conflict response.
    - Every successful save bumps version by exactly one.
    - Transition history is append-only: only records beyond those already
      stored are inserted.

Failure modes:
    - InvoiceNotFoundError from get().
    - OptimisticLockError from save().
    - IntegrityError from add() on a duplicate (carrier_id, invoice_number).

Non-goals:
    Does NOT call ``session.commit()`` -- the caller owns the transaction.
"""

from __future__ import annotations

from dataclasses import replace
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from tariff_kernel.domain.invoices import CarrierInvoice, CarrierInvoiceLine, InvoiceStatus
from tariff_kernel.exceptions import InvoiceNotFoundError, OptimisticLockError
from tariff_kernel.logging_config import get_logger
from tariff_kernel.models.carrier_invoice import (
    CarrierInvoiceLineModel,
    CarrierInvoiceModel,
    CarrierInvoiceTransitionModel,
)

logger = get_logger("services.invoice_store")


class CarrierInvoiceStore:
    """Repository for carrier invoices and their lines."""

    def __init__(self, session: Session):
        self._session = session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load(self, invoice_id: str) -> CarrierInvoiceModel:
        model = self._session.execute(
            select(CarrierInvoiceModel)
            .where(CarrierInvoiceModel.id == UUID(invoice_id))
            .options(
                selectinload(CarrierInvoiceModel.lines),
                selectinload(CarrierInvoiceModel.transitions),
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise InvoiceNotFoundError(invoice_id)
        return model

    def get(self, invoice_id: str) -> CarrierInvoice:
        return self._load(invoice_id).to_dto()

    def get_lines(self, invoice_id: str) -> tuple[CarrierInvoiceLine, ...]:
        return tuple(line.to_dto() for line in self._load(invoice_id).lines)

    def list_by_status(self, status: InvoiceStatus) -> list[CarrierInvoice]:
        models = self._session.execute(
            select(CarrierInvoiceModel)
            .where(CarrierInvoiceModel.status == status.value)
            .options(selectinload(CarrierInvoiceModel.transitions))
            .order_by(CarrierInvoiceModel.invoice_date, CarrierInvoiceModel.invoice_number)
        ).scalars()
        return [m.to_dto() for m in models]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add(
        self,
        invoice: CarrierInvoice,
        lines: tuple[CarrierInvoiceLine, ...],
        created_by_id: UUID,
    ) -> None:
        """Insert a freshly received invoice and its lines."""
        model = CarrierInvoiceModel.from_dto(invoice, created_by_id)
        model.lines = [
            CarrierInvoiceLineModel.from_dto(line, position)
            for position, line in enumerate(lines, start=1)
        ]
        self._session.add(model)
        self._session.flush()
        logger.info(
            "carrier_invoice_stored",
            extra={
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "line_count": len(lines),
            },
        )

    def save(
        self,
        invoice: CarrierInvoice,
        expected_version: int,
        expected_status: InvoiceStatus,
        updated_by_id: UUID | None = None,
        lines: tuple[CarrierInvoiceLine, ...] | None = None,
    ) -> CarrierInvoice:
        """
        Write ``invoice`` back if nobody changed it since it was loaded.

        Args:
            invoice: The new state of the invoice.
            expected_version: Version the caller loaded.
            expected_status: Status the caller loaded.
            updated_by_id: Actor recorded on the row.
            lines: Replacement line states, matched by id.

        Returns:
            ``invoice`` with its version bumped.

        Raises:
            OptimisticLockError: If the stored version or status moved.
        """
        values = CarrierInvoiceModel.column_values(invoice)
        values["version"] = CarrierInvoiceModel.version + 1
        values["updated_at"] = func.now()
        if updated_by_id is not None:
            values["updated_by_id"] = updated_by_id

        result = self._session.execute(
            update(CarrierInvoiceModel)
            .where(
                CarrierInvoiceModel.id == UUID(invoice.id),
                CarrierInvoiceModel.version == expected_version,
                CarrierInvoiceModel.status == expected_status.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "carrier_invoice_save_conflict",
                extra={
                    "invoice_id": invoice.id,
                    "expected_version": expected_version,
                    "expected_status": expected_status.value,
                },
            )
            raise OptimisticLockError("CarrierInvoice", invoice.id, expected_version)

        self._append_history(invoice)
        if lines is not None:
            self._save_lines(invoice.id, lines)
        self._session.flush()

        saved = replace(invoice, version=expected_version + 1)
        logger.info(
            "carrier_invoice_saved",
            extra={
                "invoice_id": invoice.id,
                "status": invoice.status.value,
                "version": saved.version,
            },
        )
        return saved

    def _append_history(self, invoice: CarrierInvoice) -> None:
        stored = self._session.execute(
            select(func.count(CarrierInvoiceTransitionModel.id)).where(
                CarrierInvoiceTransitionModel.invoice_id == UUID(invoice.id)
            )
        ).scalar_one()
        for sequence, record in enumerate(invoice.history[stored:], start=stored + 1):
            row = CarrierInvoiceTransitionModel.from_dto(record, sequence)
            row.invoice_id = UUID(invoice.id)
            self._session.add(row)

    def _save_lines(self, invoice_id: str, lines: tuple[CarrierInvoiceLine, ...]) -> None:
        for line in lines:
            if line.invoice_id != invoice_id:
                raise ValueError(f"Line {line.id} belongs to invoice {line.invoice_id}")
            model = self._session.get(CarrierInvoiceLineModel, UUID(line.id))
            if model is None:
                raise ValueError(f"Unknown invoice line {line.id}")
            for column, value in CarrierInvoiceLineModel.column_values(line).items():
                setattr(model, column, value)
