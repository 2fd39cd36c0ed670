# SPDX-License-Identifier: Apache-2.0
"""Guard locator backed by the guard and booking repositories."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Set

from aegis.domain.gateways import IGuardLocator
from aegis.domain.repositories import IBookingRepository, IGuardRepository
from aegis.domain.services import GuardCandidate, GuardRankingService, utc_now
from aegis.domain.value_objects import GeoLocation

logger = logging.getLogger(__name__)


class RepositoryGuardLocator(IGuardLocator):
    """Ranks on-duty guards by straight-line distance.

    Busy guards are found by asking the booking repository which guards hold
    an accepted or in-progress booking, so availability always reflects the
    committed booking state.
    """

    def __init__(
        self,
        guards: IGuardRepository,
        bookings: IBookingRepository,
        ranking: GuardRankingService,
        staleness: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = utc_now,
    ):
        self._guards = guards
        self._bookings = bookings
        self._ranking = ranking
        self._staleness = staleness
        self._clock = clock

    async def find_candidates(self, location: GeoLocation, radius_km: float) -> List[GuardCandidate]:
        on_duty = await self._guards.list_on_duty()

        busy: Set[str] = set()
        for guard in on_duty:
            if await self._bookings.find_active_for_guard(guard.guard_id):
                busy.add(guard.guard_id)

        candidates = self._ranking.rank(
            on_duty, busy, location, self._clock(), radius_km, self._staleness
        )
        logger.debug(
            "Locator found %d candidates within %.1f km of %s (%d on duty, %d busy)",
            len(candidates),
            radius_km,
            location,
            len(on_duty),
            len(busy),
        )
        return candidates
