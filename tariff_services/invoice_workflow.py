"""
Carrier Invoice Workflow (``tariff_services.invoice_workflow``).

Responsibility
--------------
Declares the state machine of a carrier invoice.  Guards name the
preconditions the controller evaluates; ``next_action`` is the hint set on
the invoice once a transition has fired.

Architecture position
---------------------
**Services layer** -- declarative workflow definition.  Imports the
canonical Guard, Transition, Workflow from
``tariff_kernel.domain.workflow``.  Consumed by the InvoiceController.

Invariants enforced
-------------------
* ``rejected`` and ``paid`` are terminal.
* ``require_manual_review`` is an escape hatch from any non-terminal
  status to ``under_review``.
* ``disputed`` only returns to ``under_review`` through
  ``resolve_dispute``, triggered by the surrounding workflow.

Audit relevance
---------------
The definition is logged at module-load time with state and transition
counts.
"""

from tariff_kernel.domain.invoices import InvoiceStatus, NextAction
from tariff_kernel.domain.workflow import ANY_STATE, Guard, Transition, Workflow
from tariff_kernel.logging_config import get_logger

logger = get_logger("services.invoice_workflow")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

VALIDATION_PASSED = Guard(
    name="validation_passed",
    description="Automatic control passed (validation_status == passed)",
)

HAS_ANOMALIES = Guard(
    name="has_anomalies",
    description="At least one anomaly was detected on the invoice",
)

PAYMENT_DETAILS_SUPPLIED = Guard(
    name="payment_details_supplied",
    description="Payment date and reference are given",
)


# -----------------------------------------------------------------------------
# Actions
# -----------------------------------------------------------------------------

START_REVIEW = "start_review"
VALIDATE = "validate"
APPROVE = "approve"
DISPUTE = "dispute"
REJECT = "reject"
PAY = "pay"
RESOLVE_DISPUTE = "resolve_dispute"
REQUIRE_MANUAL_REVIEW = "require_manual_review"

_RECEIVED = InvoiceStatus.RECEIVED.value
_UNDER_REVIEW = InvoiceStatus.UNDER_REVIEW.value
_VALIDATED = InvoiceStatus.VALIDATED.value
_DISPUTED = InvoiceStatus.DISPUTED.value
_APPROVED = InvoiceStatus.APPROVED.value
_REJECTED = InvoiceStatus.REJECTED.value
_PAID = InvoiceStatus.PAID.value

logger.info(
    "carrier_invoice_workflow_guards_defined",
    extra={
        "guards": [
            VALIDATION_PASSED.name,
            HAS_ANOMALIES.name,
            PAYMENT_DETAILS_SUPPLIED.name,
        ],
    },
)

CARRIER_INVOICE_WORKFLOW = Workflow(
    name="carrier_invoice",
    description="Carrier invoice control and approval workflow",
    initial_state=_RECEIVED,
    states=tuple(s.value for s in InvoiceStatus),
    terminal_states=(_REJECTED, _PAID),
    transitions=(
        Transition(_RECEIVED, _UNDER_REVIEW, action=START_REVIEW),
        Transition(_UNDER_REVIEW, _VALIDATED, action=VALIDATE),
        Transition(
            _VALIDATED,
            _APPROVED,
            action=APPROVE,
            guard=VALIDATION_PASSED,
            next_action=NextAction.PAYMENT.value,
        ),
        Transition(
            _VALIDATED,
            _DISPUTED,
            action=DISPUTE,
            guard=HAS_ANOMALIES,
            next_action=NextAction.RESOLVE_DISPUTE.value,
        ),
        Transition(_RECEIVED, _REJECTED, action=REJECT, next_action=NextAction.RETURN_TO_CARRIER.value),
        Transition(_UNDER_REVIEW, _REJECTED, action=REJECT, next_action=NextAction.RETURN_TO_CARRIER.value),
        Transition(_VALIDATED, _REJECTED, action=REJECT, next_action=NextAction.RETURN_TO_CARRIER.value),
        Transition(_DISPUTED, _REJECTED, action=REJECT, next_action=NextAction.RETURN_TO_CARRIER.value),
        Transition(_APPROVED, _PAID, action=PAY, guard=PAYMENT_DETAILS_SUPPLIED),
        Transition(_DISPUTED, _UNDER_REVIEW, action=RESOLVE_DISPUTE),
        Transition(ANY_STATE, _UNDER_REVIEW, action=REQUIRE_MANUAL_REVIEW),
    ),
)

logger.info(
    "carrier_invoice_workflow_registered",
    extra={
        "workflow_name": CARRIER_INVOICE_WORKFLOW.name,
        "state_count": len(CARRIER_INVOICE_WORKFLOW.states),
        "transition_count": len(CARRIER_INVOICE_WORKFLOW.transitions),
        "initial_state": CARRIER_INVOICE_WORKFLOW.initial_state,
    },
)
