"""Tests for the invoice domain records, control settings and clocks."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from tariff_kernel.domain.clock import DeterministicClock
from tariff_kernel.domain.control import ControlThresholds, TaxSchedule
from tariff_kernel.domain.invoices import (
    Anomaly,
    AnomalyType,
    InvoiceStatus,
    Severity,
    variance_percentage,
)


class TestVariance:

    @pytest.mark.parametrize(
        "actual, expected, pct",
        [
            ("1200", "1000", "20"),
            ("800", "1000", "-20"),
            ("1000", "1000", "0"),
            ("500", "0", "0"),
            ("500", "-10", "0"),
        ],
    )
    def test_variance_percentage(self, actual, expected, pct):
        assert variance_percentage(Decimal(actual), Decimal(expected)) == Decimal(pct)

    def test_invoice_variance(self, make_invoice):
        invoice = make_invoice(total_amount=Decimal("1150"), expected_amount=Decimal("1000"))
        assert invoice.variance_amount == Decimal("150")
        assert invoice.variance_percentage == Decimal("15")

    def test_anomalies_by_severity(self, make_invoice):
        def anomaly(severity):
            return Anomaly(AnomalyType.PRICE_VARIANCE, severity, "variance")

        invoice = make_invoice(
            anomalies=(anomaly(Severity.HIGH), anomaly(Severity.LOW), anomaly(Severity.HIGH))
        )
        assert invoice.has_anomalies
        assert len(invoice.anomalies_of(Severity.HIGH)) == 2
        assert invoice.anomalies_of(Severity.CRITICAL) == ()


class TestOverdue:

    def test_overdue_after_due_date(self, make_invoice):
        invoice = make_invoice(due_date=date(2024, 7, 1))
        assert not invoice.is_overdue(date(2024, 7, 1))
        assert invoice.is_overdue(date(2024, 7, 4))
        assert invoice.days_overdue(date(2024, 7, 4)) == 3

    @pytest.mark.parametrize("status", [InvoiceStatus.PAID, InvoiceStatus.REJECTED])
    def test_terminal_invoices_are_never_overdue(self, make_invoice, status):
        invoice = make_invoice(due_date=date(2024, 7, 1), status=status)
        assert not invoice.is_overdue(date(2024, 12, 31))
        assert invoice.days_overdue(date(2024, 12, 31)) == 0

    def test_no_due_date(self, make_invoice):
        assert not make_invoice(due_date=None).is_overdue(date(2030, 1, 1))


class TestBaseCurrency:

    def test_converted_with_supplied_rate(self, make_invoice):
        invoice = make_invoice(
            currency="USD",
            base_currency="EUR",
            exchange_rate=Decimal("0.9"),
            total_amount=Decimal("1000"),
            expected_amount=Decimal("900"),
        )
        figures = invoice.convert_to_base_currency()
        assert figures["total_amount"] == Decimal("900.0")
        assert figures["expected_amount"] == Decimal("810.0")
        assert figures["variance_amount"] == Decimal("90.0")

    @pytest.mark.parametrize(
        "currency, rate",
        [("EUR", Decimal("0.9")), ("USD", None)],
    )
    def test_unconverted(self, make_invoice, currency, rate):
        invoice = make_invoice(currency=currency, exchange_rate=rate)
        assert invoice.convert_to_base_currency()["total_amount"] == Decimal("1000")


class TestControlSettings:

    def test_negative_threshold_rejected(self):
        with pytest.raises(ValueError):
            ControlThresholds(line_attention_pct=Decimal("-1"))

    def test_unordered_invoice_thresholds_rejected(self):
        with pytest.raises(ValueError):
            ControlThresholds(invoice_high_variance_pct=Decimal("30"))

    def test_vat_schedule_is_read_only(self):
        schedule = TaxSchedule(vat_rates={"FR": Decimal("20")})
        with pytest.raises(TypeError):
            schedule.vat_rates["FR"] = Decimal("0")
        assert schedule.vat_rate("FR") == Decimal("20")
        assert schedule.vat_rate("JP") == Decimal("0")
        assert schedule.vat_rate(None) == Decimal("0")


class TestDeterministicClock:

    def test_fixed_until_advanced(self):
        start = datetime(2024, 6, 12, 10, 0, tzinfo=timezone.utc)
        clock = DeterministicClock(start)
        assert clock.now() == clock.now() == start
        clock.advance(90)
        assert clock.now() == datetime(2024, 6, 12, 10, 1, 30, tzinfo=timezone.utc)
        assert clock.tick() == datetime(2024, 6, 12, 10, 1, 31, tzinfo=timezone.utc)

    def test_naive_time_rejected(self):
        with pytest.raises(ValueError):
            DeterministicClock(datetime(2024, 6, 12, 10, 0))
