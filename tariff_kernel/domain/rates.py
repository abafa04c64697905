"""
RateTerm -- a priced rate or contract line.

Rates from a public rate table and lines of a negotiated contract are the
same record here: both carry a rate type, a base value, optional tiers and
percentage adjustments, and an applicability scope.  ``contract_id`` tells
them apart when the caller cares.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from tariff_kernel.domain.scope import (
    ALWAYS_VALID,
    ANYWHERE,
    UNBOUNDED,
    GeographicScope,
    QuantityRange,
    Tier,
    ValidityWindow,
)


class RateType(str, Enum):
    """Pricing basis of a rate term."""

    PER_KM = "per_km"
    PER_KG = "per_kg"
    PER_M3 = "per_m3"
    PER_PALLET = "per_pallet"
    PER_CONTAINER = "per_container"
    PER_HOUR = "per_hour"
    PERCENTAGE = "percentage"
    FLAT_RATE = "flat_rate"


RATE_TYPES: frozenset[str] = frozenset(t.value for t in RateType)

MIN_PRIORITY = 1
MAX_PRIORITY = 10


@dataclass(frozen=True)
class RateTerm:
    """
    A single rate or contract line.

    ``rate_type`` is a string so that a record carrying a rate type this
    version does not know survives loading; the catalog prices it at zero.
    """

    id: str
    name: str
    rate_type: str
    base_value: Decimal
    currency: str = "EUR"
    transport_mode: str | None = None
    service_type: str | None = None
    geography: GeographicScope = ANYWHERE
    weight_range: QuantityRange = UNBOUNDED
    volume_range: QuantityRange = UNBOUNDED
    distance_range: QuantityRange = UNBOUNDED
    quantity_range: QuantityRange = UNBOUNDED
    validity: ValidityWindow = ALWAYS_VALID
    tiers: tuple[Tier, ...] = ()
    discount_percentage: Decimal | None = None
    markup_percentage: Decimal | None = None
    priority: int = 5
    is_active: bool = True
    contract_id: str | None = None
    carrier_id: str | None = None

    def __post_init__(self) -> None:
        if not MIN_PRIORITY <= self.priority <= MAX_PRIORITY:
            raise ValueError(
                f"RateTerm {self.id} priority {self.priority} outside "
                f"[{MIN_PRIORITY}, {MAX_PRIORITY}]"
            )
        if self.base_value < 0:
            raise ValueError(f"RateTerm {self.id} base_value cannot be negative")

    @property
    def is_known_rate_type(self) -> bool:
        return self.rate_type in RATE_TYPES
