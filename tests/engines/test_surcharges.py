"""
Tests for the surcharge engine.

Covers:
- Applicability (mode, geography, weekday, time-of-day windows)
- Calculation methods and clamping
- Quantity tiers
- Index-linked fuel surcharge
"""

from datetime import datetime, time, timezone
from decimal import Decimal

import pytest

from tariff_engines import surcharges
from tariff_kernel.domain.scope import GeographicScope, QuantityRange, Tier, TimeWindow


class TestApplicability:

    def test_mode_all_applies_to_every_mode(self, make_surcharge, make_ctx):
        s = make_surcharge(transport_mode="all")
        assert surcharges.is_applicable(s, make_ctx(transport_mode="sea"))
        assert surcharges.is_applicable(s, make_ctx(transport_mode="road"))

    def test_specific_mode_filters(self, make_surcharge, make_ctx):
        s = make_surcharge(transport_mode="air")
        assert not surcharges.is_applicable(s, make_ctx())

    def test_inactive_never_applies(self, make_surcharge, make_ctx):
        assert not surcharges.is_applicable(make_surcharge(is_active=False), make_ctx())

    def test_geography_and_weight(self, make_surcharge, make_ctx):
        s = make_surcharge(
            geography=GeographicScope(destination_country="FR"),
            weight_range=QuantityRange(maximum=Decimal("500")),
        )
        assert surcharges.is_applicable(s, make_ctx())
        assert not surcharges.is_applicable(s, make_ctx(weight=Decimal("501")))
        assert not surcharges.is_applicable(s, make_ctx(destination_country="BE"))

    def test_weekday_filter_reads_shipment_date(self, make_surcharge, make_ctx):
        # the default shipment date is a Wednesday
        assert surcharges.is_applicable(make_surcharge(applicable_days=("wednesday",)), make_ctx())
        assert not surcharges.is_applicable(
            make_surcharge(applicable_days=("saturday", "sunday")), make_ctx()
        )

    def test_time_window_inclusive(self, make_surcharge, make_ctx):
        s = make_surcharge(time_window=TimeWindow(time(8, 0), time(10, 0)))
        assert surcharges.is_applicable(s, make_ctx())
        late = make_ctx(shipment_date=datetime(2024, 6, 12, 10, 1, tzinfo=timezone.utc))
        assert not surcharges.is_applicable(s, late)

    @pytest.mark.parametrize(
        "hour, minute, expected",
        [(23, 30, True), (2, 0, True), (6, 0, True), (10, 0, False), (21, 59, False)],
    )
    def test_night_window_wraps_midnight(self, make_surcharge, make_ctx, hour, minute, expected):
        s = make_surcharge(time_window=TimeWindow(time(22, 0), time(6, 0)))
        ctx = make_ctx(shipment_date=datetime(2024, 6, 12, hour, minute, tzinfo=timezone.utc))
        assert surcharges.is_applicable(s, ctx) is expected

    def test_applicable_surcharges_highest_priority_first(self, make_surcharge, make_ctx):
        a = make_surcharge(name="a", priority=2)
        b = make_surcharge(name="b", priority=7, transport_mode="air")
        c = make_surcharge(name="c", priority=7)
        d = make_surcharge(name="d", priority=7)
        names = [s.name for s in surcharges.applicable_surcharges([a, b, c, d], make_ctx())]
        assert names == ["c", "d", "a"]


class TestCompute:

    def test_fixed_amount(self, make_surcharge, make_ctx):
        assert surcharges.compute(make_surcharge(), Decimal("750"), make_ctx()) == Decimal("50")

    def test_percentage_of_base(self, make_surcharge, make_ctx):
        s = make_surcharge(calculation_method="percentage", value=Decimal("10"))
        assert surcharges.compute(s, Decimal("750"), make_ctx()) == Decimal("75")

    def test_per_unit_method(self, make_surcharge, make_ctx):
        s = make_surcharge(calculation_method="per_km", value=Decimal("0.10"))
        assert surcharges.compute(s, Decimal("750"), make_ctx()) == Decimal("30")

    def test_clamp_floor_then_ceiling(self, make_surcharge, make_ctx):
        s = make_surcharge(
            calculation_method="percentage",
            value=Decimal("5"),
            min_amount=Decimal("100"),
            max_amount=Decimal("200"),
        )
        assert surcharges.compute(s, Decimal("1000"), make_ctx()) == Decimal("100")
        assert surcharges.compute(s, Decimal("10000"), make_ctx()) == Decimal("200")
        assert surcharges.compute(s, Decimal("3000"), make_ctx()) == Decimal("150")

    def test_tier_rate_replaces_value(self, make_surcharge, make_ctx):
        s = make_surcharge(
            value=Decimal("50"),
            tiers=(
                Tier(Decimal("0"), Decimal("10"), Decimal("20")),
                Tier(Decimal("10"), None, Decimal("15")),
            ),
        )
        assert surcharges.compute(s, Decimal("0"), make_ctx(quantity=Decimal("9"))) == Decimal("20")
        assert surcharges.compute(s, Decimal("0"), make_ctx(quantity=Decimal("10"))) == Decimal("15")

    def test_tiers_keyed_by_zero_without_quantity(self, make_surcharge, make_ctx):
        s = make_surcharge(tiers=(Tier(Decimal("0"), Decimal("10"), Decimal("20")),))
        assert surcharges.compute(s, Decimal("0"), make_ctx()) == Decimal("20")

    def test_unknown_method_is_a_fixed_amount(self, make_surcharge, make_ctx, captured_logs):
        s = make_surcharge(calculation_method="per_league", value=Decimal("12"))
        assert surcharges.compute(s, Decimal("750"), make_ctx()) == Decimal("12")
        assert any(r["message"] == "calculation_method_unrecognized" for r in captured_logs())


class TestFuelSurcharge:
    """threshold 1.5, factor 0.1."""

    def _fuel(self, make_surcharge, **overrides):
        fields = dict(
            name="Fuel",
            surcharge_type="fuel",
            calculation_method="fixed_amount",
            value=Decimal("0"),
            fuel_threshold=Decimal("1.5"),
            fuel_adjustment_factor=Decimal("0.1"),
        )
        fields.update(overrides)
        return make_surcharge(**fields)

    def test_at_threshold_is_zero(self, make_surcharge, make_ctx):
        s = self._fuel(make_surcharge)
        ctx = make_ctx(current_fuel_price=Decimal("1.5"))
        assert surcharges.compute(s, Decimal("750"), ctx) == Decimal("0")

    def test_above_threshold_fixed_amount(self, make_surcharge, make_ctx):
        s = self._fuel(make_surcharge)
        ctx = make_ctx(current_fuel_price=Decimal("2.0"))
        assert surcharges.compute(s, Decimal("750"), ctx) == Decimal("0.05")

    def test_above_threshold_percentage(self, make_surcharge, make_ctx):
        s = self._fuel(make_surcharge, calculation_method="percentage")
        ctx = make_ctx(current_fuel_price=Decimal("2.0"))
        # 0.05 % of 1000
        assert surcharges.compute(s, Decimal("1000"), ctx) == Decimal("0.5")

    def test_below_threshold_skips_minimum(self, make_surcharge, make_ctx):
        s = self._fuel(make_surcharge, min_amount=Decimal("10"))
        ctx = make_ctx(current_fuel_price=Decimal("1.2"))
        assert surcharges.compute(s, Decimal("750"), ctx) == Decimal("0")

    def test_base_price_used_without_index(self, make_surcharge, make_ctx):
        s = self._fuel(make_surcharge, fuel_base_price=Decimal("2.5"))
        assert surcharges.fuel_value(s, make_ctx()) == Decimal("0.10")

    def test_no_threshold_behaves_like_ordinary_surcharge(self, make_surcharge, make_ctx):
        s = self._fuel(make_surcharge, fuel_threshold=None, value=Decimal("35"))
        ctx = make_ctx(current_fuel_price=Decimal("9"))
        assert surcharges.fuel_value(s, ctx) is None
        assert surcharges.compute(s, Decimal("750"), ctx) == Decimal("35")
