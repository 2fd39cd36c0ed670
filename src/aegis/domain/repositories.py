# SPDX-License-Identifier: Apache-2.0
"""Repository interfaces for the Aegis domain.

Repositories provide a domain-focused interface for data access,
abstracting the underlying persistence mechanism. They are defined
in the domain layer as interfaces and implemented in infrastructure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .aggregates import Booking, BookingStatus
from .entities import GuardProfile, LocationUpdate, Payment, PaymentStatus


class IBookingRepository(ABC):
    """Repository interface for booking aggregates."""

    @abstractmethod
    async def get(self, booking_id: str) -> Optional[Booking]:
        """Load a booking by id.

        Returns:
            The booking if found, None otherwise
        """
        pass

    @abstractmethod
    async def save(self, booking: Booking) -> None:
        """Save the booking together with its uncommitted domain events.

        The booking row and its events are written as one unit. The
        booking's events are left in place; the caller marks them committed
        once it has published them.

        Raises:
            ConcurrencyError: If the booking was saved by someone else since it was loaded
        """
        pass

    @abstractmethod
    async def find_by_status(self, status: BookingStatus) -> List[Booking]:
        """Get all bookings in a status, oldest first."""
        pass

    @abstractmethod
    async def find_active_for_guard(self, guard_id: str) -> List[Booking]:
        """Get bookings the guard is currently committed to."""
        pass

    @abstractmethod
    async def count_by_status(self) -> Dict[BookingStatus, int]:
        """Count bookings grouped by status."""
        pass


class IPaymentRepository(ABC):
    """Repository interface for payments, keyed by booking id."""

    @abstractmethod
    async def get(self, booking_id: str) -> Optional[Payment]:
        pass

    @abstractmethod
    async def save(self, payment: Payment) -> None:
        """Save a payment.

        Raises:
            ConcurrencyError: If the payment was saved by someone else since it was loaded
        """
        pass

    @abstractmethod
    async def find_by_status(self, status: PaymentStatus) -> List[Payment]:
        pass


class ILocationRepository(ABC):
    """Append-only store of guard position reports."""

    @abstractmethod
    async def append(self, update: LocationUpdate) -> LocationUpdate:
        """Store an update and return it with its arrival sequence assigned."""
        pass

    @abstractmethod
    async def history(self, booking_id: str) -> List[LocationUpdate]:
        """All updates for a booking in arrival order."""
        pass

    @abstractmethod
    async def latest(self, booking_id: str) -> Optional[LocationUpdate]:
        """The most recently received update for a booking."""
        pass


class IGuardRepository(ABC):
    """Repository interface for guard profiles."""

    @abstractmethod
    async def get(self, guard_id: str) -> Optional[GuardProfile]:
        pass

    @abstractmethod
    async def save(self, guard: GuardProfile) -> None:
        pass

    @abstractmethod
    async def list_on_duty(self) -> List[GuardProfile]:
        """Get all guards that are currently on duty."""
        pass


class RepositoryError(Exception):
    """Base exception for repository operations."""

    ...


class ConcurrencyError(RepositoryError):
    """Raised when optimistic concurrency control fails."""

    ...


class NotFoundError(RepositoryError):
    """Raised when requested data is not found."""

    ...
