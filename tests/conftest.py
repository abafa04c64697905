"""
Pytest fixtures for the tariff engine test suite.

Provides:
- Structured logging capture
- Deterministic clock and actor id
- SQLite database sessions (one database file per test)
- Factories for shipments, rate terms, surcharges, rules and invoices

Environment Variables:
- DATABASE_URL: optional SQLAlchemy URL.  When unset every test gets its
  own SQLite file under pytest's tmp_path.
"""

import json
import logging
import os
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from tariff_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from tariff_kernel.domain.clock import DeterministicClock
from tariff_kernel.domain.invoices import CarrierInvoice, CarrierInvoiceLine, LineType
from tariff_kernel.domain.pricing_rules import (
    PricingRule,
    RuleActions,
    RuleConditions,
    RuleType,
)
from tariff_kernel.domain.rates import RateTerm
from tariff_kernel.domain.shipment import ShipmentContext
from tariff_kernel.domain.surcharges import Surcharge
from tariff_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

# Wednesday
TEST_NOW = datetime(2024, 6, 12, 10, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture tariff_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            composer.compose_cost(ctx, terms)
            logs = captured_logs()
            assert any(r["message"] == "quote_composed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("tariff_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    """Fresh database with every table created; dropped at teardown."""
    url = os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'tariff.db'}"
    eng = init_engine_from_url(url, echo=False)
    create_tables()
    yield eng
    drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """Session on the test database.  Uncommitted work is rolled back."""
    s = get_session()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


# Clock fixtures


@pytest.fixture
def deterministic_clock():
    """Clock fixed at Wednesday 2024-06-12 10:00 UTC."""
    return DeterministicClock(TEST_NOW)


# =============================================================================
# Record factories
# =============================================================================


@pytest.fixture
def make_ctx():
    """Factory fixture for shipment contexts (road FR -> FR, 500 kg, 300 km)."""

    def _make_ctx(**overrides) -> ShipmentContext:
        fields = dict(
            shipment_date=TEST_NOW,
            transport_mode="road",
            shipment_id="SHP-1",
            origin_country="FR",
            destination_country="FR",
            weight=Decimal("500"),
            volume=Decimal("2"),
            distance=Decimal("300"),
            value=Decimal("10000"),
        )
        fields.update(overrides)
        return ShipmentContext(**fields)

    return _make_ctx


@pytest.fixture
def make_term():
    """Factory fixture for rate terms (per_km 2.50 by default)."""

    def _make_term(**overrides) -> RateTerm:
        fields = dict(
            id=str(uuid4()),
            name="Road tariff",
            rate_type="per_km",
            base_value=Decimal("2.50"),
        )
        fields.update(overrides)
        return RateTerm(**fields)

    return _make_term


@pytest.fixture
def make_surcharge():
    """Factory fixture for surcharges (fixed 50.00 handling by default)."""

    def _make_surcharge(**overrides) -> Surcharge:
        fields = dict(
            id=str(uuid4()),
            name="Handling",
            surcharge_type="handling",
            calculation_method="fixed_amount",
            value=Decimal("50"),
        )
        fields.update(overrides)
        return Surcharge(**fields)

    return _make_surcharge


@pytest.fixture
def make_rule():
    """Factory fixture for pricing rules."""

    def _make_rule(
        conditions: RuleConditions | None = None,
        actions: RuleActions | None = None,
        **overrides,
    ) -> PricingRule:
        fields = dict(
            id=str(uuid4()),
            name="Rule",
            rule_type=RuleType.DISCOUNT,
            conditions=conditions or RuleConditions(),
            actions=actions or RuleActions(),
        )
        fields.update(overrides)
        return PricingRule(**fields)

    return _make_rule


@pytest.fixture
def make_invoice():
    """Factory fixture for received carrier invoices."""

    def _make_invoice(**overrides) -> CarrierInvoice:
        fields = dict(
            id=str(uuid4()),
            invoice_number=f"INV-{uuid4().hex[:8]}",
            carrier_id="CARRIER-1",
            carrier_name="Transports Dupont",
            invoice_date=date(2024, 6, 1),
            due_date=date(2024, 7, 1),
            total_amount=Decimal("1000"),
            subtotal=Decimal("1000"),
        )
        fields.update(overrides)
        return CarrierInvoice(**fields)

    return _make_invoice


@pytest.fixture
def make_line():
    """Factory fixture for invoice lines referencing a rate."""

    def _make_line(invoice_id: str, **overrides) -> CarrierInvoiceLine:
        fields = dict(
            id=str(uuid4()),
            invoice_id=invoice_id,
            description="Road transport Paris - Lyon",
            quantity=Decimal("1"),
            unit_price=Decimal("1000"),
            line_type=LineType.TRANSPORT,
            rate_id="RATE-1",
        )
        fields.update(overrides)
        return CarrierInvoiceLine(**fields)

    return _make_line
