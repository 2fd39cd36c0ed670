# SPDX-License-Identifier: Apache-2.0
"""Domain services for Aegis.

Domain services contain business logic that doesn't naturally belong
to any single entity or value object. They coordinate operations
across multiple domain objects or provide stateless business operations.
"""

from __future__ import annotations

from abc import ABC
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AbstractSet, Iterable, List

from .entities import GuardProfile
from .value_objects import GeoLocation, Money


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class DomainService(ABC):
    """Base class for domain services.

    Domain services are stateless and contain business logic that
    doesn't naturally fit within entities or value objects.
    """

    pass


@dataclass(frozen=True)
class GuardCandidate:
    """A guard the locator considers able to take a booking."""

    guard_id: str
    distance_km: float
    eta_minutes: float
    hourly_rate: Money
    rating: float


class GuardRankingService(DomainService):
    """Filters guards down to eligible candidates and orders them.

    A guard is eligible when they are on duty, not committed to another
    booking, have reported a position within the staleness window and are
    within the search radius. Candidates are ordered by ascending distance,
    ties broken by ascending guard id so the ranking is deterministic.
    """

    def __init__(self, average_speed_kmh: float = 30.0):
        if average_speed_kmh <= 0:
            raise ValueError("Average speed must be positive")
        self._average_speed_kmh = average_speed_kmh

    def eta_minutes(self, distance_km: float) -> float:
        """Straight-line travel time at the configured average speed."""
        return round(distance_km / self._average_speed_kmh * 60, 1)

    def rank(
        self,
        guards: Iterable[GuardProfile],
        busy_guard_ids: AbstractSet[str],
        location: GeoLocation,
        now: datetime,
        radius_km: float,
        staleness: timedelta,
    ) -> List[GuardCandidate]:
        """Return eligible candidates, nearest first."""
        candidates = []
        for guard in guards:
            if not guard.on_duty or guard.guard_id in busy_guard_ids:
                continue
            if not guard.has_fresh_location(now, staleness):
                continue

            distance = guard.last_location.distance_to(location)
            if distance > radius_km:
                continue

            candidates.append(
                GuardCandidate(
                    guard_id=guard.guard_id,
                    distance_km=distance,
                    eta_minutes=self.eta_minutes(distance),
                    hourly_rate=guard.hourly_rate,
                    rating=guard.rating,
                )
            )

        candidates.sort(key=lambda c: (c.distance_km, c.guard_id))
        return candidates
