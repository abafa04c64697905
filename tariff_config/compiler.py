"""
Catalog Compiler (``tariff_config.compiler``).

Responsibility
--------------
Turns authoring payloads (plain mappings, usually parsed from YAML) into
the closed, typed catalog records the engines evaluate: ``RateTerm``,
``Surcharge`` and ``PricingRule``.  Everything the evaluator must never
see is rejected here, once, at authoring time.

Architecture position
---------------------
**Config layer**.  Imports kernel domain records and exceptions; the
kernel and the engines never import from this module.

Invariants enforced
-------------------
* Unknown keys are rejected.  ``custom_conditions`` and ``custom_actions``
  are rejected with an explicit message: the rule vocabulary is closed.
* Tiers of one entry may not overlap (``OverlappingTiersError``).
  Evaluation still takes the first matching tier.
* Numeric fields become ``Decimal`` (floats go through ``str`` first so
  ``2.5`` stays ``Decimal("2.5")``).  Booleans are never numbers.
* A rule's ``min_*`` may not exceed its ``max_*``; ``start_time`` must be
  before ``end_time``; a percentage discount lies in [0, 100].
* An unknown ``rate_type`` or ``calculation_method`` is kept and logged as
  a warning; the engines price it as documented.

Failure modes
-------------
* ``MalformedRuleDefinitionError`` -- every field error of a pricing rule,
  collected before raising.
* ``MalformedCatalogEntryError`` -- same, for rate terms and surcharges.
* ``OverlappingTiersError`` -- first overlapping tier pair found.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any

from tariff_kernel.domain.pricing_rules import (
    RATE_ADJUSTMENT_KINDS,
    AddSurcharge,
    AppliesTo,
    ModifySurcharge,
    PricingRule,
    RemoveSurcharge,
    RuleActions,
    RuleConditions,
    RuleType,
    ValidationAction,
    ValidationKind,
)
from tariff_kernel.domain.rates import RATE_TYPES, RateTerm
from tariff_kernel.domain.scope import (
    WEEKDAY_NAMES,
    GeographicScope,
    QuantityRange,
    Tier,
    TimeWindow,
    ValidityWindow,
)
from tariff_kernel.domain.surcharges import CALCULATION_METHODS, SURCHARGE_TYPES, Surcharge
from tariff_kernel.exceptions import (
    MalformedCatalogEntryError,
    MalformedRuleDefinitionError,
    OverlappingTiersError,
)
from tariff_kernel.logging_config import get_logger

logger = get_logger("config.compiler")

_MISSING = object()

UNSUPPORTED_RULE_KEYS = ("custom_conditions", "custom_actions")

_GEOGRAPHY_KEYS = ("origin_country", "destination_country", "origin_zone", "destination_zone")
_VALIDITY_KEYS = ("effective_date", "expiry_date")
_TIER_KEYS = {"min_quantity", "max_quantity", "rate", "discount_percentage"}

RATE_TERM_KEYS = frozenset(
    {
        "id",
        "name",
        "rate_type",
        "base_value",
        "currency",
        "transport_mode",
        "service_type",
        "min_weight",
        "max_weight",
        "min_volume",
        "max_volume",
        "min_distance",
        "max_distance",
        "min_quantity",
        "max_quantity",
        "tiers",
        "discount_percentage",
        "markup_percentage",
        "priority",
        "is_active",
        "contract_id",
        "carrier_id",
        *_GEOGRAPHY_KEYS,
        *_VALIDITY_KEYS,
    }
)

SURCHARGE_KEYS = frozenset(
    {
        "id",
        "name",
        "surcharge_type",
        "calculation_method",
        "value",
        "currency",
        "transport_mode",
        "min_weight",
        "max_weight",
        "min_volume",
        "max_volume",
        "applicable_days",
        "start_time",
        "end_time",
        "min_amount",
        "max_amount",
        "tiers",
        "fuel_base_price",
        "fuel_threshold",
        "fuel_adjustment_factor",
        "is_mandatory",
        "priority",
        "is_active",
        *_GEOGRAPHY_KEYS,
        *_VALIDITY_KEYS,
    }
)

PRICING_RULE_KEYS = frozenset(
    {
        "id",
        "name",
        "description",
        "rule_type",
        "priority",
        "is_active",
        "conditions",
        "actions",
        *_VALIDITY_KEYS,
    }
)

_LIST_CONDITIONS = (
    "origin_countries",
    "destination_countries",
    "origin_zones",
    "destination_zones",
    "transport_modes",
    "service_types",
    "customer_ids",
    "customer_types",
    "carrier_ids",
    "carrier_types",
    "days_of_week",
)
_DECIMAL_CONDITIONS = (
    "min_weight",
    "max_weight",
    "min_volume",
    "max_volume",
    "min_value",
    "max_value",
    "min_monthly_volume",
    "min_annual_volume",
)
_BOUNDED_CONDITIONS = (("min_weight", "max_weight"), ("min_volume", "max_volume"), ("min_value", "max_value"))
CONDITION_KEYS = frozenset(
    {*_LIST_CONDITIONS, *_DECIMAL_CONDITIONS, "start_date", "end_date", "start_time", "end_time"}
)
ACTION_KEYS = frozenset({"rate_adjustments", "surcharge_actions", "validation_actions"})


# ---------------------------------------------------------------------------
# Field reader
# ---------------------------------------------------------------------------


class _FieldReader:
    """Reads typed values out of a payload and collects every field error."""

    def __init__(self, data: Mapping[str, Any], prefix: str = ""):
        self.data = data
        self.prefix = prefix
        self.errors: list[str] = []

    def error(self, key: str, message: str) -> None:
        self.errors.append(f"{self.prefix}{key}: {message}")

    def child(self, data: Mapping[str, Any], prefix: str) -> _FieldReader:
        reader = _FieldReader(data, self.prefix + prefix)
        reader.errors = self.errors
        return reader

    def reject_unknown(self, allowed: frozenset[str]) -> None:
        for key in self.data:
            if key in UNSUPPORTED_RULE_KEYS:
                self.error(key, "not supported; the condition/action vocabulary is closed")
            elif key not in allowed:
                self.error(key, "unknown field")

    def raw(self, key: str, default: Any = None) -> Any:
        value = self.data.get(key, _MISSING)
        return default if value is _MISSING or value is None else value

    def required_str(self, key: str) -> str:
        value = self.data.get(key)
        if value is None or value == "":
            self.error(key, "is required")
            return ""
        return str(value)

    def optional_str(self, key: str) -> str | None:
        value = self.data.get(key)
        return None if value is None else str(value)

    def decimal(self, key: str, required: bool = False) -> Decimal | None:
        value = self.data.get(key)
        if value is None:
            if required:
                self.error(key, "is required")
            return None
        return self._to_decimal(key, value)

    def _to_decimal(self, key: str, value: Any) -> Decimal | None:
        if isinstance(value, bool):
            self.error(key, f"expected a number, got {value!r}")
            return None
        if isinstance(value, Decimal):
            return value
        try:
            return Decimal(str(value))
        except InvalidOperation:
            self.error(key, f"expected a number, got {value!r}")
            return None

    def integer(self, key: str, default: int) -> int:
        value = self.data.get(key)
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, int):
            self.error(key, f"expected an integer, got {value!r}")
            return default
        return value

    def boolean(self, key: str, default: bool) -> bool:
        value = self.data.get(key)
        if value is None:
            return default
        if not isinstance(value, bool):
            self.error(key, f"expected true or false, got {value!r}")
            return default
        return value

    def date(self, key: str) -> date | None:
        value = self.data.get(key)
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                return date.fromisoformat(value)
            except ValueError:
                pass
        self.error(key, f"expected an ISO date, got {value!r}")
        return None

    def time(self, key: str) -> time | None:
        value = self.data.get(key)
        if value is None:
            return None
        if isinstance(value, time):
            return value
        if isinstance(value, str):
            try:
                return time.fromisoformat(value)
            except ValueError:
                pass
        self.error(key, f"expected a quoted 'HH:MM' time, got {value!r}")
        return None

    def string_list(self, key: str) -> tuple[str, ...]:
        value = self.data.get(key)
        if value is None:
            return ()
        if isinstance(value, str) or not isinstance(value, (list, tuple)):
            self.error(key, "expected a list")
            return ()
        return tuple(str(v) for v in value)

    def mapping(self, key: str) -> Mapping[str, Any]:
        value = self.data.get(key)
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            self.error(key, "expected a mapping")
            return {}
        return value

    def mapping_list(self, key: str) -> list[Mapping[str, Any]]:
        value = self.data.get(key)
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            self.error(key, "expected a list")
            return []
        items: list[Mapping[str, Any]] = []
        for i, item in enumerate(value):
            if not isinstance(item, Mapping):
                self.error(f"{key}[{i}]", "expected a mapping")
                continue
            items.append(item)
        return items

    def range(self, min_key: str, max_key: str) -> QuantityRange:
        minimum = self.decimal(min_key)
        maximum = self.decimal(max_key)
        if minimum is not None and maximum is not None and minimum > maximum:
            self.error(min_key, f"{minimum} exceeds {max_key} {maximum}")
            return QuantityRange()
        return QuantityRange(minimum, maximum)

    def geography(self) -> GeographicScope:
        return GeographicScope(*(self.optional_str(k) for k in _GEOGRAPHY_KEYS))

    def validity(self) -> ValidityWindow:
        effective = self.date("effective_date")
        expiry = self.date("expiry_date")
        if effective is not None and expiry is not None and effective > expiry:
            self.error("effective_date", f"{effective} is after expiry_date {expiry}")
            return ValidityWindow()
        return ValidityWindow(effective, expiry)

    def tiers(self) -> tuple[Tier, ...]:
        tiers: list[Tier] = []
        for i, item in enumerate(self.mapping_list("tiers")):
            sub = self.child(item, f"tiers[{i}].")
            sub.reject_unknown(frozenset(_TIER_KEYS))
            minimum = sub.decimal("min_quantity", required=True)
            maximum = sub.decimal("max_quantity")
            rate = sub.decimal("rate", required=True)
            discount = sub.decimal("discount_percentage")
            if minimum is None or rate is None:
                continue
            try:
                tiers.append(Tier(minimum, maximum, rate, discount))
            except ValueError as exc:
                sub.error("max_quantity", str(exc))
        return tuple(tiers)


def _check_tier_overlap(entry_name: str, tiers: tuple[Tier, ...]) -> None:
    for i, first in enumerate(tiers):
        for second in tiers[i + 1:]:
            if first.overlaps(second):
                raise OverlappingTiersError(entry_name, first.label(), second.label())


def _check_percentage(reader: _FieldReader, key: str, value: Decimal | None) -> None:
    if value is not None and not Decimal("0") <= value <= Decimal("100"):
        reader.error(key, f"must lie in [0, 100], got {value}")


# ---------------------------------------------------------------------------
# Rate terms
# ---------------------------------------------------------------------------


def compile_rate_term(data: Mapping[str, Any]) -> RateTerm:
    """
    Build a RateTerm from an authoring payload.

    Raises:
        MalformedCatalogEntryError: on any field error.
        OverlappingTiersError: when two tiers overlap.
    """
    name = str(data.get("name") or data.get("id") or "<unnamed>")
    r = _FieldReader(data)
    r.reject_unknown(RATE_TERM_KEYS)

    term_id = r.required_str("id")
    rate_type = r.required_str("rate_type")
    base_value = r.decimal("base_value", required=True)
    discount = r.decimal("discount_percentage")
    markup = r.decimal("markup_percentage")
    _check_percentage(r, "discount_percentage", discount)
    if markup is not None and markup < 0:
        r.error("markup_percentage", f"cannot be negative: {markup}")
    if base_value is not None and base_value < 0:
        r.error("base_value", f"cannot be negative: {base_value}")

    fields = dict(
        id=term_id,
        name=name,
        rate_type=rate_type,
        base_value=base_value,
        currency=r.raw("currency", "EUR"),
        transport_mode=r.optional_str("transport_mode"),
        service_type=r.optional_str("service_type"),
        geography=r.geography(),
        weight_range=r.range("min_weight", "max_weight"),
        volume_range=r.range("min_volume", "max_volume"),
        distance_range=r.range("min_distance", "max_distance"),
        quantity_range=r.range("min_quantity", "max_quantity"),
        validity=r.validity(),
        tiers=r.tiers(),
        discount_percentage=discount,
        markup_percentage=markup,
        priority=r.integer("priority", 5),
        is_active=r.boolean("is_active", True),
        contract_id=r.optional_str("contract_id"),
        carrier_id=r.optional_str("carrier_id"),
    )

    term = None
    if not r.errors:
        try:
            term = RateTerm(**fields)
        except ValueError as exc:
            r.error("priority", str(exc))
    if r.errors:
        logger.warning(
            "catalog_entry_rejected",
            extra={"entry_kind": "rate_term", "entry_name": name, "field_errors": r.errors},
        )
        raise MalformedCatalogEntryError("rate_term", name, r.errors)

    _check_tier_overlap(name, term.tiers)
    if not term.is_known_rate_type:
        logger.warning(
            "rate_type_unrecognized",
            extra={"term_id": term.id, "rate_type": term.rate_type, "known": sorted(RATE_TYPES)},
        )
    return term


# ---------------------------------------------------------------------------
# Surcharges
# ---------------------------------------------------------------------------


def compile_surcharge(data: Mapping[str, Any]) -> Surcharge:
    """
    Build a Surcharge from an authoring payload.

    Raises:
        MalformedCatalogEntryError: on any field error.
        OverlappingTiersError: when two tiers overlap.
    """
    name = str(data.get("name") or data.get("id") or "<unnamed>")
    r = _FieldReader(data)
    r.reject_unknown(SURCHARGE_KEYS)

    surcharge_id = r.required_str("id")
    surcharge_type = r.required_str("surcharge_type")
    if surcharge_type and surcharge_type not in SURCHARGE_TYPES:
        r.error("surcharge_type", f"unknown surcharge type {surcharge_type!r}")
    method = r.required_str("calculation_method")
    value = r.decimal("value", required=True)

    days = tuple(d.lower() for d in r.string_list("applicable_days"))
    for day in days:
        if day not in WEEKDAY_NAMES:
            r.error("applicable_days", f"unknown weekday {day!r}")

    min_amount = r.decimal("min_amount")
    max_amount = r.decimal("max_amount")
    if min_amount is not None and max_amount is not None and min_amount > max_amount:
        r.error("min_amount", f"{min_amount} exceeds max_amount {max_amount}")

    fields = dict(
        id=surcharge_id,
        name=name,
        surcharge_type=surcharge_type,
        calculation_method=method,
        value=value,
        currency=r.raw("currency", "EUR"),
        transport_mode=r.optional_str("transport_mode"),
        geography=r.geography(),
        weight_range=r.range("min_weight", "max_weight"),
        volume_range=r.range("min_volume", "max_volume"),
        validity=r.validity(),
        applicable_days=days,
        # start after end is a window across midnight
        time_window=TimeWindow(r.time("start_time"), r.time("end_time")),
        min_amount=min_amount,
        max_amount=max_amount,
        tiers=r.tiers(),
        fuel_base_price=r.decimal("fuel_base_price"),
        fuel_threshold=r.decimal("fuel_threshold"),
        fuel_adjustment_factor=r.decimal("fuel_adjustment_factor"),
        is_mandatory=r.boolean("is_mandatory", False),
        priority=r.integer("priority", 5),
        is_active=r.boolean("is_active", True),
    )

    if r.errors:
        logger.warning(
            "catalog_entry_rejected",
            extra={"entry_kind": "surcharge", "entry_name": name, "field_errors": r.errors},
        )
        raise MalformedCatalogEntryError("surcharge", name, r.errors)

    surcharge = Surcharge(**fields)
    _check_tier_overlap(name, surcharge.tiers)
    if method not in CALCULATION_METHODS:
        logger.warning(
            "calculation_method_unrecognized",
            extra={"surcharge_id": surcharge.id, "calculation_method": method},
        )
    return surcharge


# ---------------------------------------------------------------------------
# Pricing rules
# ---------------------------------------------------------------------------


def _compile_conditions(r: _FieldReader) -> RuleConditions:
    r.reject_unknown(CONDITION_KEYS)
    lists = {key: r.string_list(key) for key in _LIST_CONDITIONS}
    lists["days_of_week"] = tuple(d.lower() for d in lists["days_of_week"])
    for day in lists["days_of_week"]:
        if day not in WEEKDAY_NAMES:
            r.error("days_of_week", f"unknown weekday {day!r}")

    numbers = {key: r.decimal(key) for key in _DECIMAL_CONDITIONS}
    for low, high in _BOUNDED_CONDITIONS:
        if numbers[low] is not None and numbers[high] is not None and numbers[low] > numbers[high]:
            r.error(low, f"{numbers[low]} exceeds {high} {numbers[high]}")

    start_date = r.date("start_date")
    end_date = r.date("end_date")
    if start_date is not None and end_date is not None and start_date > end_date:
        r.error("start_date", f"{start_date} is after end_date {end_date}")

    start_time = r.time("start_time")
    end_time = r.time("end_time")
    if start_time is not None and end_time is not None and start_time >= end_time:
        r.error("start_time", f"{start_time:%H:%M} must be before end_time {end_time:%H:%M}")

    return RuleConditions(
        **lists,
        **numbers,
        start_date=start_date,
        end_date=end_date,
        start_time=start_time,
        end_time=end_time,
    )


def _compile_rate_adjustment(r: _FieldReader):
    r.reject_unknown(frozenset({"type", "value", "applies_to", "service_type"}))
    kind = r.required_str("type")
    cls = RATE_ADJUSTMENT_KINDS.get(kind)
    if kind and cls is None:
        r.error("type", f"unknown rate adjustment {kind!r}")
    value = r.decimal("value", required=True)
    applies_raw = r.raw("applies_to", AppliesTo.TOTAL_COST.value)
    try:
        applies_to = AppliesTo(applies_raw)
    except ValueError:
        r.error("applies_to", f"unknown target {applies_raw!r}")
        return None
    if cls is None or value is None:
        return None
    try:
        return cls(value=value, applies_to=applies_to, service_type=r.optional_str("service_type"))
    except ValueError as exc:
        r.error("value", str(exc))
        return None


def _compile_surcharge_action(r: _FieldReader):
    kind = r.required_str("action")
    if kind == AddSurcharge.kind:
        r.reject_unknown(frozenset({"action", "surcharge_name", "surcharge_id", "value", "calculation_method"}))
        name = r.required_str("surcharge_name")
        value = r.decimal("value", required=True)
        if value is None:
            return None
        return AddSurcharge(
            surcharge_name=name,
            value=value,
            calculation_method=r.raw("calculation_method", "fixed_amount"),
            surcharge_id=r.optional_str("surcharge_id"),
        )
    if kind == RemoveSurcharge.kind:
        r.reject_unknown(frozenset({"action", "surcharge_name", "surcharge_id"}))
        try:
            return RemoveSurcharge(
                surcharge_id=r.optional_str("surcharge_id"),
                surcharge_name=r.optional_str("surcharge_name"),
            )
        except ValueError as exc:
            r.error("surcharge_id", str(exc))
            return None
    if kind == ModifySurcharge.kind:
        r.reject_unknown(frozenset({"action", "surcharge_name", "surcharge_id", "value", "calculation_method"}))
        value = r.decimal("value", required=True)
        if value is None:
            return None
        try:
            return ModifySurcharge(
                value=value,
                surcharge_id=r.optional_str("surcharge_id"),
                surcharge_name=r.optional_str("surcharge_name"),
                calculation_method=r.optional_str("calculation_method"),
            )
        except ValueError as exc:
            r.error("surcharge_id", str(exc))
            return None
    if kind:
        r.error("action", f"unknown surcharge action {kind!r}")
    return None


def _compile_validation_action(r: _FieldReader) -> ValidationAction | None:
    r.reject_unknown(frozenset({"type", "message", "approval_level"}))
    kind = r.required_str("type")
    try:
        validation_type = ValidationKind(kind)
    except ValueError:
        if kind:
            r.error("type", f"unknown validation action {kind!r}")
        return None
    return ValidationAction(
        validation_type=validation_type,
        message=r.optional_str("message"),
        approval_level=r.optional_str("approval_level"),
    )


def _compile_actions(r: _FieldReader) -> RuleActions:
    r.reject_unknown(ACTION_KEYS)
    adjustments = [
        _compile_rate_adjustment(r.child(item, f"rate_adjustments[{i}]."))
        for i, item in enumerate(r.mapping_list("rate_adjustments"))
    ]
    surcharge_actions = [
        _compile_surcharge_action(r.child(item, f"surcharge_actions[{i}]."))
        for i, item in enumerate(r.mapping_list("surcharge_actions"))
    ]
    validations = [
        _compile_validation_action(r.child(item, f"validation_actions[{i}]."))
        for i, item in enumerate(r.mapping_list("validation_actions"))
    ]
    return RuleActions(
        rate_adjustments=tuple(a for a in adjustments if a is not None),
        surcharge_actions=tuple(a for a in surcharge_actions if a is not None),
        validation_actions=tuple(a for a in validations if a is not None),
    )


def compile_pricing_rule(data: Mapping[str, Any]) -> PricingRule:
    """
    Build a PricingRule from an authoring payload.

    Preconditions:
        - ``data`` carries ``id``, ``name`` and ``rule_type``; ``conditions``
          and ``actions`` are optional mappings.
    Raises:
        MalformedRuleDefinitionError: with every field error found.
    """
    name = str(data.get("name") or data.get("id") or "<unnamed>")
    r = _FieldReader(data)
    r.reject_unknown(PRICING_RULE_KEYS)

    rule_id = r.required_str("id")
    rule_type_raw = r.required_str("rule_type")
    rule_type = None
    if rule_type_raw:
        try:
            rule_type = RuleType(rule_type_raw)
        except ValueError:
            r.error("rule_type", f"unknown rule type {rule_type_raw!r}")

    conditions = _compile_conditions(r.child(r.mapping("conditions"), "conditions."))
    actions = _compile_actions(r.child(r.mapping("actions"), "actions."))
    priority = r.integer("priority", 50)
    validity = r.validity()

    rule = None
    if not r.errors:
        try:
            rule = PricingRule(
                id=rule_id,
                name=name,
                rule_type=rule_type,
                conditions=conditions,
                actions=actions,
                priority=priority,
                validity=validity,
                is_active=r.boolean("is_active", True),
                description=r.optional_str("description"),
            )
        except ValueError as exc:
            r.error("priority", str(exc))
    if r.errors:
        logger.warning(
            "pricing_rule_rejected",
            extra={"rule_name": name, "field_errors": r.errors},
        )
        raise MalformedRuleDefinitionError(name, r.errors)

    logger.debug(
        "pricing_rule_compiled",
        extra={"rule_id": rule.id, "rule_type": rule.rule_type.value, "priority": rule.priority},
    )
    return rule
