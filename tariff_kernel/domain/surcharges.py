"""Surcharge -- a conditional charge layered on top of the base rate."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from tariff_kernel.domain.scope import (
    ALL_DAY,
    ALWAYS_VALID,
    ANYWHERE,
    UNBOUNDED,
    GeographicScope,
    QuantityRange,
    Tier,
    TimeWindow,
    ValidityWindow,
    WEEKDAY_NAMES,
)


class SurchargeType(str, Enum):
    FUEL = "fuel"
    TOLL = "toll"
    SECURITY = "security"
    CUSTOMS = "customs"
    HANDLING = "handling"
    STORAGE = "storage"
    INSURANCE = "insurance"
    CURRENCY = "currency"
    PEAK_SEASON = "peak_season"
    OTHER = "other"


class CalculationMethod(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    PER_KM = "per_km"
    PER_KG = "per_kg"
    PER_M3 = "per_m3"
    PER_PALLET = "per_pallet"
    PER_CONTAINER = "per_container"
    PER_HOUR = "per_hour"


SURCHARGE_TYPES: frozenset[str] = frozenset(t.value for t in SurchargeType)
CALCULATION_METHODS: frozenset[str] = frozenset(m.value for m in CalculationMethod)

# transport_mode value meaning "every mode"
ALL_MODES = "all"


@dataclass(frozen=True)
class Surcharge:
    """
    A surcharge definition.

    Tier ``rate`` values replace ``value`` as the calculation value.  The
    fuel fields are only read for ``surcharge_type == "fuel"``.
    """

    id: str
    name: str
    surcharge_type: str
    calculation_method: str
    value: Decimal
    currency: str = "EUR"
    transport_mode: str | None = None
    geography: GeographicScope = ANYWHERE
    weight_range: QuantityRange = UNBOUNDED
    volume_range: QuantityRange = UNBOUNDED
    validity: ValidityWindow = ALWAYS_VALID
    applicable_days: tuple[str, ...] = ()
    time_window: TimeWindow = ALL_DAY
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    tiers: tuple[Tier, ...] = ()
    fuel_base_price: Decimal | None = None
    fuel_threshold: Decimal | None = None
    fuel_adjustment_factor: Decimal | None = None
    is_mandatory: bool = False
    priority: int = 5
    is_active: bool = True

    def __post_init__(self) -> None:
        for day in self.applicable_days:
            if day not in WEEKDAY_NAMES:
                raise ValueError(f"Surcharge {self.id}: unknown weekday {day!r}")
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.min_amount > self.max_amount
        ):
            raise ValueError(
                f"Surcharge {self.id}: min_amount {self.min_amount} exceeds max_amount {self.max_amount}"
            )

    @property
    def is_fuel(self) -> bool:
        return self.surcharge_type == SurchargeType.FUEL.value
