"""Tests for quote tax lines."""

from decimal import Decimal

import pytest

from tariff_engines.taxes import EXPORT_TAX, VAT, calculate_taxes, total_tax
from tariff_kernel.domain.control import TaxSchedule


class TestCalculateTaxes:

    def test_domestic_vat(self, make_ctx):
        lines = calculate_taxes(Decimal("800"), make_ctx())
        assert len(lines) == 1
        assert lines[0].tax_type == VAT
        assert lines[0].rate == Decimal("20")
        assert lines[0].amount == Decimal("160")

    @pytest.mark.parametrize("country, rate", [("DE", "19"), ("IT", "22"), ("CA", "5")])
    def test_vat_by_country(self, make_ctx, country, rate):
        ctx = make_ctx(origin_country=country, destination_country=country)
        (line,) = calculate_taxes(Decimal("100"), ctx)
        assert line.amount == Decimal(rate)

    def test_zero_rate_country_is_untaxed(self, make_ctx):
        ctx = make_ctx(origin_country="US", destination_country="US")
        assert calculate_taxes(Decimal("100"), ctx) == ()

    def test_unknown_country_is_untaxed(self, make_ctx):
        ctx = make_ctx(origin_country="JP", destination_country="JP")
        assert calculate_taxes(Decimal("100"), ctx) == ()

    @pytest.mark.parametrize("mode", ["sea", "air"])
    def test_international_sea_and_air_pay_export_tax(self, make_ctx, mode):
        ctx = make_ctx(destination_country="US", transport_mode=mode)
        (line,) = calculate_taxes(Decimal("1000"), ctx)
        assert line.tax_type == EXPORT_TAX
        assert line.amount == Decimal("5")

    def test_international_road_is_untaxed(self, make_ctx):
        assert calculate_taxes(Decimal("1000"), make_ctx(destination_country="DE")) == ()

    def test_missing_route_is_untaxed(self, make_ctx):
        ctx = make_ctx(origin_country=None, destination_country=None)
        assert calculate_taxes(Decimal("1000"), ctx) == ()

    def test_custom_schedule(self, make_ctx):
        schedule = TaxSchedule(vat_rates={"FR": Decimal("5.5")})
        (line,) = calculate_taxes(Decimal("200"), make_ctx(), schedule)
        assert line.amount == Decimal("11")

    def test_total_tax(self, make_ctx):
        assert total_tax(calculate_taxes(Decimal("50"), make_ctx())) == Decimal("10")
        assert total_tax(()) == Decimal("0")


class TestTaxSchedule:

    def test_negative_rates_rejected(self):
        with pytest.raises(ValueError):
            TaxSchedule(vat_rates={"FR": Decimal("-1")})
        with pytest.raises(ValueError):
            TaxSchedule(export_tax_rate=Decimal("-0.5"))

    def test_rates_are_read_only(self):
        schedule = TaxSchedule()
        with pytest.raises(TypeError):
            schedule.vat_rates["FR"] = Decimal("0")
