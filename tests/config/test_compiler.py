"""
Tests for authoring-time catalog compilation.

Verifies that payloads become typed kernel records and that anything
outside the closed vocabulary is rejected with every field error listed.
"""

from datetime import date, time
from decimal import Decimal

import pytest

from tariff_config.compiler import compile_pricing_rule, compile_rate_term, compile_surcharge
from tariff_kernel.domain.pricing_rules import (
    AddSurcharge,
    AppliesTo,
    PercentageDiscount,
    RemoveSurcharge,
    RuleType,
    SetRate,
    ValidationKind,
)
from tariff_kernel.exceptions import (
    MalformedCatalogEntryError,
    MalformedRuleDefinitionError,
    OverlappingTiersError,
)


def _rule(**overrides) -> dict:
    payload = {"id": "vip", "name": "VIP discount", "rule_type": "discount"}
    payload.update(overrides)
    return payload


class TestCompileRateTerm:

    def test_full_payload(self):
        term = compile_rate_term(
            {
                "id": "road-fr",
                "name": "Road FR",
                "rate_type": "per_km",
                "base_value": 2.5,
                "transport_mode": "road",
                "origin_country": "FR",
                "min_weight": "100",
                "max_weight": "500",
                "effective_date": "2024-01-01",
                "tiers": [
                    {"min_quantity": 0, "max_quantity": 100, "rate": "10"},
                    {"min_quantity": 100, "rate": "8"},
                ],
                "priority": 7,
            }
        )
        assert term.base_value == Decimal("2.5")
        assert term.geography.origin_country == "FR"
        assert term.weight_range.maximum == Decimal("500")
        assert term.validity.effective_date == date(2024, 1, 1)
        assert term.tiers[1].max_quantity is None
        assert term.priority == 7

    def test_collects_every_field_error(self):
        with pytest.raises(MalformedCatalogEntryError) as exc_info:
            compile_rate_term({"name": "broken", "base_value": "abc", "colour": "red"})
        errors = exc_info.value.field_errors
        assert "colour: unknown field" in errors
        assert "id: is required" in errors
        assert "rate_type: is required" in errors
        assert any(e.startswith("base_value: expected a number") for e in errors)
        assert exc_info.value.code == "MALFORMED_CATALOG_ENTRY"

    def test_booleans_are_not_numbers(self):
        with pytest.raises(MalformedCatalogEntryError):
            compile_rate_term({"id": "t", "name": "t", "rate_type": "flat_rate", "base_value": True})

    def test_inverted_range_rejected(self):
        with pytest.raises(MalformedCatalogEntryError) as exc_info:
            compile_rate_term(
                {
                    "id": "t",
                    "name": "t",
                    "rate_type": "per_kg",
                    "base_value": "1",
                    "min_weight": "500",
                    "max_weight": "100",
                }
            )
        assert exc_info.value.field_errors[0].startswith("min_weight:")

    def test_priority_out_of_range(self):
        with pytest.raises(MalformedCatalogEntryError):
            compile_rate_term(
                {"id": "t", "name": "t", "rate_type": "per_kg", "base_value": "1", "priority": 11}
            )

    def test_overlapping_tiers_rejected(self):
        with pytest.raises(OverlappingTiersError) as exc_info:
            compile_rate_term(
                {
                    "id": "t",
                    "name": "overlap",
                    "rate_type": "per_kg",
                    "base_value": "1",
                    "tiers": [
                        {"min_quantity": 0, "max_quantity": 100, "rate": "10"},
                        {"min_quantity": 50, "rate": "8"},
                    ],
                }
            )
        assert exc_info.value.first_tier == "[0, 100)"

    def test_unknown_rate_type_kept_with_warning(self, captured_logs):
        term = compile_rate_term({"id": "t", "name": "t", "rate_type": "per_parsec", "base_value": "1"})
        assert term.rate_type == "per_parsec"
        assert any(r["message"] == "rate_type_unrecognized" for r in captured_logs())


class TestCompileSurcharge:

    def test_night_window_and_days(self):
        s = compile_surcharge(
            {
                "id": "night",
                "name": "Night delivery",
                "surcharge_type": "handling",
                "calculation_method": "fixed_amount",
                "value": "40",
                "applicable_days": ["Saturday", "sunday"],
                "start_time": "22:00",
                "end_time": "06:00",
            }
        )
        assert s.applicable_days == ("saturday", "sunday")
        assert s.time_window.start == time(22, 0)
        assert s.time_window.wraps_midnight

    def test_unquoted_yaml_time_rejected(self):
        # YAML 1.1 reads an unquoted 22:00 as the integer 1320
        with pytest.raises(MalformedCatalogEntryError) as exc_info:
            compile_surcharge(
                {
                    "id": "night",
                    "name": "Night",
                    "surcharge_type": "handling",
                    "calculation_method": "fixed_amount",
                    "value": "40",
                    "start_time": 1320,
                }
            )
        assert "quoted 'HH:MM'" in exc_info.value.field_errors[0]

    def test_unknown_surcharge_type_rejected(self):
        with pytest.raises(MalformedCatalogEntryError) as exc_info:
            compile_surcharge(
                {
                    "id": "x",
                    "name": "x",
                    "surcharge_type": "carbon",
                    "calculation_method": "fixed_amount",
                    "value": "1",
                }
            )
        assert exc_info.value.field_errors == ["surcharge_type: unknown surcharge type 'carbon'"]

    def test_unknown_method_kept_with_warning(self, captured_logs):
        s = compile_surcharge(
            {
                "id": "x",
                "name": "x",
                "surcharge_type": "toll",
                "calculation_method": "per_league",
                "value": "1",
            }
        )
        assert s.calculation_method == "per_league"
        assert any(r["message"] == "calculation_method_unrecognized" for r in captured_logs())

    def test_min_above_max_rejected(self):
        with pytest.raises(MalformedCatalogEntryError):
            compile_surcharge(
                {
                    "id": "x",
                    "name": "x",
                    "surcharge_type": "fuel",
                    "calculation_method": "percentage",
                    "value": "1",
                    "min_amount": "50",
                    "max_amount": "10",
                }
            )


class TestCompilePricingRule:

    def test_full_rule(self):
        rule = compile_pricing_rule(
            _rule(
                priority=80,
                conditions={
                    "origin_countries": ["FR"],
                    "transport_modes": ["road"],
                    "min_weight": "100",
                    "days_of_week": ["Monday", "Friday"],
                    "start_time": "08:00",
                    "end_time": "18:00",
                },
                actions={
                    "rate_adjustments": [
                        {"type": "percentage_discount", "value": "10", "applies_to": "base_rate"},
                        {"type": "set_rate", "value": "600"},
                    ],
                    "surcharge_actions": [
                        {"action": "add_surcharge", "surcharge_name": "Eco", "value": "12"},
                        {"action": "remove_surcharge", "surcharge_name": "Handling"},
                    ],
                    "validation_actions": [{"type": "require_approval", "approval_level": "manager"}],
                },
            )
        )
        assert rule.rule_type == RuleType.DISCOUNT
        assert rule.priority == 80
        assert rule.conditions.days_of_week == ("monday", "friday")
        assert rule.conditions.min_weight == Decimal("100")
        adjustments = rule.actions.rate_adjustments
        assert adjustments[0] == PercentageDiscount(Decimal("10"), AppliesTo.BASE_RATE)
        assert isinstance(adjustments[1], SetRate)
        assert adjustments[1].applies_to == AppliesTo.TOTAL_COST
        assert rule.actions.surcharge_actions == (
            AddSurcharge("Eco", Decimal("12")),
            RemoveSurcharge(surcharge_name="Handling"),
        )
        assert rule.actions.validation_actions[0].validation_type == ValidationKind.REQUIRE_APPROVAL

    @pytest.mark.parametrize("key", ["custom_conditions", "custom_actions"])
    def test_free_form_extensions_rejected(self, key):
        with pytest.raises(MalformedRuleDefinitionError) as exc_info:
            compile_pricing_rule(_rule(**{key: {"lambda": "x > 1"}}))
        assert exc_info.value.field_errors == [
            f"{key}: not supported; the condition/action vocabulary is closed"
        ]

    def test_nested_errors_are_prefixed(self):
        with pytest.raises(MalformedRuleDefinitionError) as exc_info:
            compile_pricing_rule(
                _rule(
                    conditions={"planet": ["mars"]},
                    actions={"rate_adjustments": [{"type": "percentage_discount", "value": "150"}]},
                )
            )
        errors = exc_info.value.field_errors
        assert "conditions.planet: unknown field" in errors
        assert any(e.startswith("actions.rate_adjustments[0].value:") for e in errors)

    def test_specific_service_needs_service_type(self):
        with pytest.raises(MalformedRuleDefinitionError):
            compile_pricing_rule(
                _rule(
                    actions={
                        "rate_adjustments": [
                            {"type": "fixed_markup", "value": "5", "applies_to": "specific_service"}
                        ]
                    }
                )
            )

    def test_time_window_must_be_ordered(self):
        with pytest.raises(MalformedRuleDefinitionError) as exc_info:
            compile_pricing_rule(_rule(conditions={"start_time": "18:00", "end_time": "08:00"}))
        assert exc_info.value.field_errors[0].startswith("conditions.start_time:")

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"rule_type": "magic"}, "rule_type"),
            ({"priority": 0}, "priority"),
            ({"priority": 101}, "priority"),
            ({"actions": {"surcharge_actions": [{"action": "remove_surcharge"}]}}, "actions."),
            ({"actions": {"validation_actions": [{"type": "shout"}]}}, "actions."),
            ({"conditions": {"min_value": "10", "max_value": "5"}}, "conditions.min_value"),
        ],
    )
    def test_rejections(self, overrides, field):
        with pytest.raises(MalformedRuleDefinitionError) as exc_info:
            compile_pricing_rule(_rule(**overrides))
        assert exc_info.value.field_errors[0].startswith(field)
        assert exc_info.value.rule_name == "VIP discount"

    def test_rejection_is_logged(self, captured_logs):
        with pytest.raises(MalformedRuleDefinitionError):
            compile_pricing_rule(_rule(id=None))
        rejected = [r for r in captured_logs() if r["message"] == "pricing_rule_rejected"]
        assert rejected[0]["field_errors"] == ["id: is required"]
