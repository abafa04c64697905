"""
Pricing rule records -- a closed condition/action vocabulary.

Responsibility:
    Typed representation of a declarative pricing rule.  Conditions are one
    closed record whose every populated field is an AND filter; actions are
    tagged unions, one frozen class per kind.  ``tariff_config.compiler``
    builds these from authoring payloads and rejects anything outside the
    vocabulary, so the evaluator never sees a malformed rule.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.

Invariants enforced:
    - Priority lies in [1, 100].
    - ``specific_service`` adjustments name a service type.
    - A percentage discount never exceeds 100.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Union

from tariff_kernel.domain.scope import ALWAYS_VALID, ValidityWindow


class RuleType(str, Enum):
    RATE_SELECTION = "rate_selection"
    DISCOUNT = "discount"
    SURCHARGE = "surcharge"
    VALIDATION = "validation"
    APPROVAL = "approval"


class AppliesTo(str, Enum):
    """Which running amount a rate adjustment is computed against."""

    BASE_RATE = "base_rate"
    TOTAL_COST = "total_cost"
    SPECIFIC_SERVICE = "specific_service"


MIN_RULE_PRIORITY = 1
MAX_RULE_PRIORITY = 100


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuleConditions:
    """Conjunctive filter set.  Empty tuples and None fields always pass."""

    origin_countries: tuple[str, ...] = ()
    destination_countries: tuple[str, ...] = ()
    origin_zones: tuple[str, ...] = ()
    destination_zones: tuple[str, ...] = ()
    transport_modes: tuple[str, ...] = ()
    service_types: tuple[str, ...] = ()
    customer_ids: tuple[str, ...] = ()
    customer_types: tuple[str, ...] = ()
    carrier_ids: tuple[str, ...] = ()
    carrier_types: tuple[str, ...] = ()
    min_weight: Decimal | None = None
    max_weight: Decimal | None = None
    min_volume: Decimal | None = None
    max_volume: Decimal | None = None
    min_value: Decimal | None = None
    max_value: Decimal | None = None
    start_date: date | None = None
    end_date: date | None = None
    days_of_week: tuple[str, ...] = ()
    start_time: time | None = None
    end_time: time | None = None
    min_monthly_volume: Decimal | None = None
    min_annual_volume: Decimal | None = None


NO_CONDITIONS = RuleConditions()


# ---------------------------------------------------------------------------
# Rate adjustments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateAdjustment:
    """Common shape of every rate adjustment kind."""

    kind: ClassVar[str] = ""

    value: Decimal
    applies_to: AppliesTo = AppliesTo.TOTAL_COST
    service_type: str | None = None

    def __post_init__(self) -> None:
        if self.applies_to == AppliesTo.SPECIFIC_SERVICE and not self.service_type:
            raise ValueError(f"{self.kind} on specific_service requires a service_type")


@dataclass(frozen=True)
class PercentageDiscount(RateAdjustment):
    kind: ClassVar[str] = "percentage_discount"

    def __post_init__(self) -> None:
        super().__post_init__()
        if not Decimal("0") <= self.value <= Decimal("100"):
            raise ValueError(f"percentage_discount must lie in [0, 100], got {self.value}")


@dataclass(frozen=True)
class PercentageMarkup(RateAdjustment):
    kind: ClassVar[str] = "percentage_markup"


@dataclass(frozen=True)
class FixedDiscount(RateAdjustment):
    kind: ClassVar[str] = "fixed_discount"


@dataclass(frozen=True)
class FixedMarkup(RateAdjustment):
    kind: ClassVar[str] = "fixed_markup"


@dataclass(frozen=True)
class SetRate(RateAdjustment):
    kind: ClassVar[str] = "set_rate"


RateAdjustmentAction = Union[
    PercentageDiscount, PercentageMarkup, FixedDiscount, FixedMarkup, SetRate
]

RATE_ADJUSTMENT_KINDS: dict[str, type[RateAdjustment]] = {
    cls.kind: cls
    for cls in (PercentageDiscount, PercentageMarkup, FixedDiscount, FixedMarkup, SetRate)
}


# ---------------------------------------------------------------------------
# Surcharge actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AddSurcharge:
    """Add a surcharge line of ``value`` computed by ``calculation_method``."""

    kind: ClassVar[str] = "add_surcharge"

    surcharge_name: str
    value: Decimal
    calculation_method: str = "fixed_amount"
    surcharge_id: str | None = None


@dataclass(frozen=True)
class RemoveSurcharge:
    """Drop a previously computed surcharge by id or name."""

    kind: ClassVar[str] = "remove_surcharge"

    surcharge_id: str | None = None
    surcharge_name: str | None = None

    def __post_init__(self) -> None:
        if self.surcharge_id is None and self.surcharge_name is None:
            raise ValueError("remove_surcharge needs a surcharge_id or surcharge_name")


@dataclass(frozen=True)
class ModifySurcharge:
    """Recompute a previously computed surcharge with a new value/method."""

    kind: ClassVar[str] = "modify_surcharge"

    value: Decimal
    surcharge_id: str | None = None
    surcharge_name: str | None = None
    calculation_method: str | None = None

    def __post_init__(self) -> None:
        if self.surcharge_id is None and self.surcharge_name is None:
            raise ValueError("modify_surcharge needs a surcharge_id or surcharge_name")


SurchargeAction = Union[AddSurcharge, RemoveSurcharge, ModifySurcharge]

SURCHARGE_ACTION_KINDS: dict[str, type] = {
    cls.kind: cls for cls in (AddSurcharge, RemoveSurcharge, ModifySurcharge)
}


# ---------------------------------------------------------------------------
# Validation actions
# ---------------------------------------------------------------------------


class ValidationKind(str, Enum):
    REQUIRE_APPROVAL = "require_approval"
    BLOCK_QUOTE = "block_quote"
    WARNING_MESSAGE = "warning_message"
    AUTO_APPROVE = "auto_approve"


@dataclass(frozen=True)
class ValidationAction:
    validation_type: ValidationKind
    message: str | None = None
    approval_level: str | None = None


# ---------------------------------------------------------------------------
# Rule
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuleActions:
    rate_adjustments: tuple[RateAdjustmentAction, ...] = ()
    surcharge_actions: tuple[SurchargeAction, ...] = ()
    validation_actions: tuple[ValidationAction, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.rate_adjustments or self.surcharge_actions or self.validation_actions)


@dataclass(frozen=True)
class PricingRule:
    """
    A declarative condition -> action rule.

    ``usage_count`` and ``last_used_at`` are bookkeeping snapshots from the
    store; evaluation never changes them.
    """

    id: str
    name: str
    rule_type: RuleType
    conditions: RuleConditions = NO_CONDITIONS
    actions: RuleActions = field(default_factory=RuleActions)
    priority: int = 50
    validity: ValidityWindow = ALWAYS_VALID
    is_active: bool = True
    description: str | None = None
    usage_count: int = 0
    last_used_at: datetime | None = None

    def __post_init__(self) -> None:
        if not MIN_RULE_PRIORITY <= self.priority <= MAX_RULE_PRIORITY:
            raise ValueError(
                f"PricingRule {self.id} priority {self.priority} outside "
                f"[{MIN_RULE_PRIORITY}, {MAX_RULE_PRIORITY}]"
            )


# ---------------------------------------------------------------------------
# Evaluation results
# ---------------------------------------------------------------------------


class ActionCategory(str, Enum):
    RATE_ADJUSTMENT = "rate_adjustment"
    SURCHARGE_ACTION = "surcharge_action"
    VALIDATION_ACTION = "validation_action"


@dataclass(frozen=True)
class ActionResult:
    """One flattened action emitted by a matched rule."""

    rule_id: str
    rule_name: str
    category: ActionCategory
    action: RateAdjustmentAction | SurchargeAction | ValidationAction


@dataclass(frozen=True)
class RuleEvaluation:
    """A rule that matched a shipment, with its flattened actions."""

    rule_id: str
    rule_name: str
    rule_type: RuleType
    priority: int
    actions: tuple[ActionResult, ...]
