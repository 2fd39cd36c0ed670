# SPDX-License-Identifier: Apache-2.0
"""Domain value objects for Aegis.

Value Objects are immutable objects that are defined by their values rather
than their identity. Money and coordinates are compared by value and
normalized on creation so that equal amounts and positions always compare
equal regardless of how they were constructed.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

EARTH_RADIUS_KM = 6371.0

_CENTS = Decimal("0.01")

Number = Union[Decimal, int, float, str]


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid numeric value: {value!r}") from e


@dataclass(frozen=True)
class Money:
    """Monetary amount with cent precision.

    Amounts are quantized to two decimal places with ROUND_HALF_UP.
    Arithmetic is only defined between amounts of the same currency.
    """

    amount: Decimal
    currency: str = "USD"

    def __post_init__(self):
        """Validate and normalize amount and currency."""
        amount = _to_decimal(self.amount)
        if amount < 0:
            raise ValueError(f"Money amount cannot be negative: {amount}")
        if len(self.currency) != 3 or not self.currency.isalpha():
            raise ValueError(f"Currency code must be 3 letters (ISO 4217): {self.currency!r}")

        object.__setattr__(self, "amount", amount.quantize(_CENTS, rounding=ROUND_HALF_UP))
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def of(cls, value: Number, currency: str = "USD") -> Money:
        """Create money from any numeric representation."""
        return cls(_to_decimal(value), currency)

    @classmethod
    def zero(cls, currency: str = "USD") -> Money:
        """Create a zero amount."""
        return cls(Decimal("0.00"), currency)

    def _check_currency(self, other: Money) -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot operate on different currencies: {self.currency} and {other.currency}"
            )

    def __add__(self, other: Money) -> Money:
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: Money) -> Money:
        self._check_currency(other)
        result = self.amount - other.amount
        if result < 0:
            raise ValueError("Subtraction would result in negative amount")
        return Money(result, self.currency)

    def __mul__(self, factor: Number) -> Money:
        factor = _to_decimal(factor)
        if factor < 0:
            raise ValueError("Multiplication factor cannot be negative")
        return Money(self.amount * factor, self.currency)

    def percentage(self, percent: Number) -> Money:
        """Return ``percent`` percent of this amount."""
        percent = _to_decimal(percent)
        if percent < 0 or percent > 100:
            raise ValueError("Percentage must be between 0 and 100")
        return Money(self.amount * percent / Decimal(100), self.currency)

    def __lt__(self, other: Money) -> bool:
        self._check_currency(other)
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        self._check_currency(other)
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        self._check_currency(other)
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        self._check_currency(other)
        return self.amount >= other.amount

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


@dataclass(frozen=True)
class GeoLocation:
    """A point on the earth's surface in decimal degrees."""

    latitude: float
    longitude: float

    def __post_init__(self):
        """Validate ranges and round to ~1mm precision."""
        if not -90 <= self.latitude <= 90:
            raise ValueError(f"Invalid latitude {self.latitude}: must be between -90 and 90")
        if not -180 <= self.longitude <= 180:
            raise ValueError(f"Invalid longitude {self.longitude}: must be between -180 and 180")

        object.__setattr__(self, "latitude", round(float(self.latitude), 8))
        object.__setattr__(self, "longitude", round(float(self.longitude), 8))

    def distance_to(self, other: GeoLocation) -> float:
        """Great-circle distance to ``other`` in kilometres (haversine).

        The result is rounded to two decimals, i.e. 10 metre resolution.
        """
        lat1 = math.radians(self.latitude)
        lat2 = math.radians(other.latitude)
        d_lat = math.radians(other.latitude - self.latitude)
        d_lon = math.radians(other.longitude - self.longitude)

        a = (
            math.sin(d_lat / 2) ** 2
            + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
        )
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
        return round(EARTH_RADIUS_KM * c, 2)

    def __str__(self) -> str:
        return f"{self.latitude}, {self.longitude}"


@dataclass(frozen=True)
class ServiceLocation:
    """Where a guard is needed: coordinates plus the street address."""

    point: GeoLocation
    address: str

    def __post_init__(self):
        address = (self.address or "").strip()
        if len(address) < 5:
            raise ValueError("Service location address must be at least 5 characters")
        object.__setattr__(self, "address", address)

    @classmethod
    def at(cls, latitude: float, longitude: float, address: str) -> ServiceLocation:
        """Build a service location from raw coordinates."""
        return cls(GeoLocation(latitude, longitude), address)

    @property
    def latitude(self) -> float:
        return self.point.latitude

    @property
    def longitude(self) -> float:
        return self.point.longitude
