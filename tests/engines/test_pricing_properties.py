"""
Property-based tests for the pricing leaves.

Boundaries fuzzed here:
- Tier selection: a quantity lands in at most one of a set of
  non-overlapping tiers, and the boundary belongs to the upper tier
- Surcharge clamp: the result always lies inside [min, max]
- Fixed discounts never push the running amount below zero
- Line audit is a pure function of the line
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from hypothesis import given, settings
from hypothesis import strategies as st
from hypothesis.strategies import composite

from tariff_engines import invoice_audit, pricing_rules, surcharges
from tariff_kernel.domain.invoices import CarrierInvoiceLine
from tariff_kernel.domain.pricing_rules import FixedDiscount, PercentageDiscount
from tariff_kernel.domain.scope import Tier, find_tier
from tariff_kernel.domain.shipment import ShipmentContext
from tariff_kernel.domain.surcharges import Surcharge

CTX = ShipmentContext(
    shipment_date=datetime(2024, 6, 12, 10, 0, tzinfo=timezone.utc),
    transport_mode="road",
    origin_country="FR",
    destination_country="FR",
    weight=Decimal("500"),
    distance=Decimal("300"),
)

amounts = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("1000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


@composite
def contiguous_tiers(draw):
    """Back-to-back half-open tiers starting at zero; the last is open-ended."""
    widths = draw(st.lists(st.integers(min_value=1, max_value=500), min_size=1, max_size=6))
    tiers = []
    lower = Decimal("0")
    for i, width in enumerate(widths):
        upper = None if i == len(widths) - 1 else lower + width
        tiers.append(Tier(lower, upper, Decimal(i + 1)))
        if upper is not None:
            lower = upper
    return tuple(tiers)


@composite
def invoice_lines(draw):
    return CarrierInvoiceLine(
        id=str(uuid4()),
        invoice_id="inv",
        description="fuzzed",
        quantity=draw(st.decimals(min_value=Decimal("-5"), max_value=Decimal("1000"), places=3)),
        unit_price=draw(amounts),
        discount_rate=draw(st.sampled_from([Decimal("0"), Decimal("5"), Decimal("12.5")])),
        tax_rate=draw(st.sampled_from([Decimal("0"), Decimal("20")])),
        is_tax_inclusive=draw(st.booleans()),
        expected_unit_price=draw(st.one_of(st.none(), amounts)),
        expected_line_total=draw(st.one_of(st.none(), amounts)),
        rate_id=draw(st.one_of(st.none(), st.just("RATE-1"))),
    )


class TestTierProperties:

    @given(tiers=contiguous_tiers(), quantity=amounts)
    @settings(max_examples=200)
    def test_every_non_negative_quantity_hits_exactly_one_tier(self, tiers, quantity):
        hits = [t for t in tiers if t.contains(quantity)]
        assert len(hits) == 1
        assert find_tier(tiers, quantity) is hits[0]

    @given(tiers=contiguous_tiers())
    def test_boundary_belongs_to_upper_tier(self, tiers):
        for lower, upper in zip(tiers, tiers[1:]):
            assert find_tier(tiers, lower.max_quantity) is upper


class TestSurchargeClampProperties:

    @given(
        base=amounts,
        pct=st.decimals(min_value=Decimal("0"), max_value=Decimal("100"), places=2),
        floor=st.decimals(min_value=Decimal("0"), max_value=Decimal("500"), places=2),
        span=st.decimals(min_value=Decimal("0"), max_value=Decimal("500"), places=2),
    )
    @settings(max_examples=200)
    def test_result_lies_within_bounds(self, base, pct, floor, span):
        s = Surcharge(
            id="s",
            name="pct",
            surcharge_type="security",
            calculation_method="percentage",
            value=pct,
            min_amount=floor,
            max_amount=floor + span,
        )
        amount = surcharges.compute(s, base, CTX)
        assert floor <= amount <= floor + span


class TestRateAdjustmentProperties:

    @given(amount=amounts, value=amounts)
    def test_fixed_discount_never_goes_negative(self, amount, value):
        delta = pricing_rules.apply_rate_adjustment(amount, FixedDiscount(value))
        assert amount + delta >= 0

    @given(
        amount=amounts,
        pct=st.decimals(min_value=Decimal("0"), max_value=Decimal("100"), places=2),
    )
    def test_percentage_discount_stays_within_amount(self, amount, pct):
        delta = pricing_rules.apply_rate_adjustment(amount, PercentageDiscount(pct))
        assert -amount <= delta <= 0


class TestLineAuditProperties:

    @given(line=invoice_lines())
    @settings(max_examples=150)
    def test_audit_is_deterministic(self, line):
        assert invoice_audit.audit_line(line) == invoice_audit.audit_line(line)

    @given(line=invoice_lines())
    @settings(max_examples=150)
    def test_reaudit_of_applied_line_is_stable(self, line):
        first = invoice_audit.audit_line(line)
        applied = invoice_audit.apply_line_audit(line, first)
        again = invoice_audit.apply_line_audit(applied, invoice_audit.audit_line(applied))
        assert again == applied
