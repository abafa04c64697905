"""
Typed exception hierarchy for the tariff kernel.

Every error the engines and services raise is a typed class carrying a
machine-readable ``code`` and the structured context an operator needs
(rule id, invoice id, attempted transition).  Callers catch by type and
translate to protocol responses themselves; nothing here knows about HTTP.

    TariffKernelError (base)
    |
    +-- QuotingError
    |   +-- NoApplicableRateError
    |   +-- QuotingBlockedError
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |   +-- UnknownActionError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- DefinitionError
    |   +-- MalformedRuleDefinitionError
    |   +-- MalformedCatalogEntryError
    |   +-- OverlappingTiersError
    |   +-- SettingsError
    |
    +-- NotFoundError
        +-- InvoiceNotFoundError
        +-- PricingRuleNotFoundError

A term, surcharge or rule that does not match a shipment is NOT an error:
the calculation leaves return False, zero or an empty tuple.
"""


class TariffKernelError(Exception):
    """
    Base exception for all tariff kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "TARIFF_KERNEL_ERROR"


# Quoting


class QuotingError(TariffKernelError):
    """Base exception for cost composition failures."""

    code: str = "QUOTING_ERROR"


class NoApplicableRateError(QuotingError):
    """No active rate term matches the shipment."""

    code: str = "NO_APPLICABLE_RATE"

    def __init__(self, shipment_id: str | None, candidates: int):
        self.shipment_id = shipment_id
        self.candidates = candidates
        super().__init__(
            f"No applicable rate term for shipment {shipment_id} "
            f"({candidates} candidate(s) considered)"
        )


class QuotingBlockedError(QuotingError):
    """A pricing rule's block_quote action vetoed the composition."""

    code: str = "QUOTING_BLOCKED"

    def __init__(self, rule_id: str, rule_name: str, reason: str):
        self.rule_id = rule_id
        self.rule_name = rule_name
        self.reason = reason
        super().__init__(f"Quote blocked by rule {rule_name} ({rule_id}): {reason}")


# Workflow


class WorkflowError(TariffKernelError):
    """Base exception for invoice workflow errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """A state machine guard rejected the attempted transition."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        invoice_id: str,
        action: str,
        from_status: str,
        reason: str,
    ):
        self.invoice_id = invoice_id
        self.action = action
        self.from_status = from_status
        self.reason = reason
        super().__init__(
            f"Cannot {action} invoice {invoice_id} from status "
            f"'{from_status}': {reason}"
        )


class UnknownActionError(WorkflowError):
    """The action name is not part of the invoice workflow."""

    code: str = "UNKNOWN_ACTION"

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Unknown invoice workflow action: {action}")


# Concurrency


class ConcurrencyError(TariffKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected (concurrent modification)."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Authoring-time definitions


class DefinitionError(TariffKernelError):
    """Base exception for catalog records that fail structural validation."""

    code: str = "DEFINITION_ERROR"


class MalformedRuleDefinitionError(DefinitionError):
    """A pricing rule's conditions or actions payload is structurally invalid."""

    code: str = "MALFORMED_RULE_DEFINITION"

    def __init__(self, rule_name: str, field_errors: list[str]):
        self.rule_name = rule_name
        self.field_errors = list(field_errors)
        super().__init__(
            f"Pricing rule '{rule_name}' is malformed: " + "; ".join(self.field_errors)
        )


class MalformedCatalogEntryError(DefinitionError):
    """A rate term or surcharge definition is structurally invalid."""

    code: str = "MALFORMED_CATALOG_ENTRY"

    def __init__(self, entry_kind: str, entry_name: str, field_errors: list[str]):
        self.entry_kind = entry_kind
        self.entry_name = entry_name
        self.field_errors = list(field_errors)
        super().__init__(
            f"{entry_kind} '{entry_name}' is malformed: " + "; ".join(self.field_errors)
        )


class OverlappingTiersError(DefinitionError):
    """Two tiers of the same rate term or surcharge cover a common quantity."""

    code: str = "OVERLAPPING_TIERS"

    def __init__(self, entry_name: str, first_tier: str, second_tier: str):
        self.entry_name = entry_name
        self.first_tier = first_tier
        self.second_tier = second_tier
        super().__init__(
            f"Tiers of '{entry_name}' overlap: {first_tier} and {second_tier}"
        )


class SettingsError(DefinitionError):
    """Engine settings failed validation."""

    code: str = "INVALID_SETTINGS"

    def __init__(self, setting: str, message: str):
        self.setting = setting
        super().__init__(f"Invalid setting '{setting}': {message}")


# Lookups


class NotFoundError(TariffKernelError):
    """Base exception for missing persisted records."""

    code: str = "NOT_FOUND"


class InvoiceNotFoundError(NotFoundError):
    """Carrier invoice with given ID was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Carrier invoice not found: {invoice_id}")


class PricingRuleNotFoundError(NotFoundError):
    """Pricing rule with given ID was not found."""

    code: str = "PRICING_RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Pricing rule not found: {rule_id}")
