"""
ShipmentContext -- the shipment parameters every pricing leaf reads.

The context is assembled by the caller (already tenant scoped and
validated) and handed to the rate catalog, surcharge engine and pricing
rule engine unchanged.  All physical quantities are Decimal.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


class TransportMode(str, Enum):
    """Known transport modes."""

    ROAD = "road"
    RAIL = "rail"
    SEA = "sea"
    AIR = "air"
    MULTIMODAL = "multimodal"


_NON_NEGATIVE_FIELDS = (
    "weight",
    "volume",
    "distance",
    "pallets",
    "containers",
    "hours",
    "value",
    "monthly_volume",
    "annual_volume",
)


@dataclass(frozen=True)
class ShipmentContext:
    """Immutable shipment parameters for rating.

    ``shipment_date`` is the planned pickup moment.  ``quantity`` is an
    optional generic tier key used by surcharges with quantity tiers.
    """

    shipment_date: datetime
    transport_mode: str
    shipment_id: str | None = None
    service_type: str | None = None
    origin_country: str | None = None
    destination_country: str | None = None
    origin_zone: str | None = None
    destination_zone: str | None = None
    weight: Decimal = Decimal("0")
    volume: Decimal = Decimal("0")
    distance: Decimal = Decimal("0")
    pallets: Decimal = Decimal("0")
    containers: Decimal = Decimal("0")
    hours: Decimal = Decimal("0")
    quantity: Decimal | None = None
    value: Decimal = Decimal("0")
    customer_id: str | None = None
    customer_type: str | None = None
    carrier_id: str | None = None
    carrier_type: str | None = None
    monthly_volume: Decimal = Decimal("0")
    annual_volume: Decimal = Decimal("0")
    current_fuel_price: Decimal | None = None
    currency: str = "EUR"

    def __post_init__(self) -> None:
        if not isinstance(self.shipment_date, datetime):
            raise ValueError("shipment_date must be a datetime")
        for name in _NON_NEGATIVE_FIELDS:
            val = getattr(self, name)
            if not isinstance(val, Decimal):
                raise ValueError(f"{name} must be a Decimal, got {type(val).__name__}")
            if val < 0:
                raise ValueError(f"{name} cannot be negative: {val}")

    @property
    def is_domestic(self) -> bool:
        return (
            self.origin_country is not None
            and self.origin_country == self.destination_country
        )

    @property
    def is_international(self) -> bool:
        return (
            self.origin_country is not None
            and self.destination_country is not None
            and self.origin_country != self.destination_country
        )
