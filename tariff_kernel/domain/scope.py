"""
Applicability scope value objects.

Small frozen records shared by rate terms, surcharges and pricing rules:
inclusive numeric ranges, inclusive validity windows, geographic scope,
quantity tiers and time-of-day windows.  Each one answers a single
membership question; the engines combine them.

Invariants enforced:
    - Range bounds are inclusive; an absent bound is unconstrained.
    - Tiers are half-open ``[min_quantity, max_quantity)``; a missing
      ``max_quantity`` is unbounded above.
    - A time window whose start is after its end wraps midnight.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal

WEEKDAY_NAMES: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def weekday_name(moment: date) -> str:
    """Lower-case English weekday name for a date or datetime."""
    return WEEKDAY_NAMES[moment.weekday()]


@dataclass(frozen=True)
class QuantityRange:
    """Inclusive ``[minimum, maximum]`` range; ``None`` leaves a side open."""

    minimum: Decimal | None = None
    maximum: Decimal | None = None

    def __post_init__(self) -> None:
        if (
            self.minimum is not None
            and self.maximum is not None
            and self.minimum > self.maximum
        ):
            raise ValueError(f"Range minimum {self.minimum} exceeds maximum {self.maximum}")

    @property
    def is_unbounded(self) -> bool:
        return self.minimum is None and self.maximum is None

    def contains(self, value: Decimal) -> bool:
        if self.minimum is not None and value < self.minimum:
            return False
        if self.maximum is not None and value > self.maximum:
            return False
        return True


UNBOUNDED = QuantityRange()


@dataclass(frozen=True)
class ValidityWindow:
    """Inclusive ``[effective_date, expiry_date]`` window."""

    effective_date: date | None = None
    expiry_date: date | None = None

    def __post_init__(self) -> None:
        if (
            self.effective_date is not None
            and self.expiry_date is not None
            and self.effective_date > self.expiry_date
        ):
            raise ValueError(
                f"Validity window starts {self.effective_date} after it expires {self.expiry_date}"
            )

    def contains(self, on: date | datetime) -> bool:
        day = on.date() if isinstance(on, datetime) else on
        if self.effective_date is not None and day < self.effective_date:
            return False
        if self.expiry_date is not None and day > self.expiry_date:
            return False
        return True


ALWAYS_VALID = ValidityWindow()


@dataclass(frozen=True)
class GeographicScope:
    """Optional origin/destination country and zone constraints."""

    origin_country: str | None = None
    destination_country: str | None = None
    origin_zone: str | None = None
    destination_zone: str | None = None

    @property
    def specificity(self) -> int:
        """Number of populated geography fields (more = narrower scope)."""
        return sum(
            1
            for v in (
                self.origin_country,
                self.destination_country,
                self.origin_zone,
                self.destination_zone,
            )
            if v is not None
        )

    def matches(
        self,
        origin_country: str | None,
        destination_country: str | None,
        origin_zone: str | None,
        destination_zone: str | None,
    ) -> bool:
        pairs = (
            (self.origin_country, origin_country),
            (self.destination_country, destination_country),
            (self.origin_zone, origin_zone),
            (self.destination_zone, destination_zone),
        )
        return all(wanted is None or wanted == actual for wanted, actual in pairs)


ANYWHERE = GeographicScope()


@dataclass(frozen=True)
class Tier:
    """A quantity sub-range ``[min_quantity, max_quantity)`` with its own rate."""

    min_quantity: Decimal
    max_quantity: Decimal | None
    rate: Decimal
    discount_percentage: Decimal | None = None

    def __post_init__(self) -> None:
        if self.max_quantity is not None and self.max_quantity <= self.min_quantity:
            raise ValueError(
                f"Tier max_quantity {self.max_quantity} must exceed min_quantity {self.min_quantity}"
            )

    def contains(self, quantity: Decimal) -> bool:
        if quantity < self.min_quantity:
            return False
        return self.max_quantity is None or quantity < self.max_quantity

    def overlaps(self, other: Tier) -> bool:
        self_max = self.max_quantity
        other_max = other.max_quantity
        starts_before_other_ends = other_max is None or self.min_quantity < other_max
        other_starts_before_self_ends = self_max is None or other.min_quantity < self_max
        return starts_before_other_ends and other_starts_before_self_ends

    def label(self) -> str:
        upper = "inf" if self.max_quantity is None else str(self.max_quantity)
        return f"[{self.min_quantity}, {upper})"


def find_tier(tiers: tuple[Tier, ...], quantity: Decimal) -> Tier | None:
    """First tier containing ``quantity``, or None."""
    for tier in tiers:
        if tier.contains(quantity):
            return tier
    return None


@dataclass(frozen=True)
class TimeWindow:
    """Time-of-day window, inclusive at both ends, minute resolution."""

    start: time | None = None
    end: time | None = None

    @property
    def wraps_midnight(self) -> bool:
        return self.start is not None and self.end is not None and self.start > self.end

    def contains(self, moment: datetime) -> bool:
        at = moment.time().replace(second=0, microsecond=0)
        if self.wraps_midnight:
            return at >= self.start or at <= self.end
        if self.start is not None and at < self.start:
            return False
        if self.end is not None and at > self.end:
            return False
        return True


ALL_DAY = TimeWindow()
