# SPDX-License-Identifier: Apache-2.0
"""Domain model package for Aegis.

This package contains the dispatch core's domain model:
- Aggregates: the Booking and its state machine
- Entities: payments, guard profiles and location updates
- Value Objects: money and coordinates
- Domain Events: the closed set of booking events
- Gateways: contracts for the locator, payment processor and broadcaster

The domain layer should remain independent of infrastructure concerns.
"""

from .aggregates import Booking, BookingStatus
from .entities import Entity, GuardProfile, LocationUpdate, Payment, PaymentFailureStage, PaymentStatus
from .errors import (
    ActorNotAssigned,
    BookingNotFound,
    CaptureExceedsAuthorization,
    CaptureFailed,
    Conflict,
    DependencyTimeout,
    DispatchError,
    GatewayUnavailable,
    GuardNotOffered,
    GuardUnavailable,
    InvalidTransition,
    NoGuardAvailable,
    PaymentDeclined,
    PaymentError,
    PaymentStateError,
)
from .events import BookingEvent, IEventLog, IEventPublisher
from .gateways import IGuardLocator, IPaymentGateway, IRealtimeBroadcaster
from .services import DomainService, GuardCandidate, GuardRankingService
from .value_objects import GeoLocation, Money, ServiceLocation

__all__ = [
    # Aggregates and entities
    "Booking",
    "BookingStatus",
    "Entity",
    "GuardProfile",
    "LocationUpdate",
    "Payment",
    "PaymentFailureStage",
    "PaymentStatus",
    # Value objects
    "GeoLocation",
    "Money",
    "ServiceLocation",
    # Events
    "BookingEvent",
    "IEventLog",
    "IEventPublisher",
    # Collaborator contracts
    "IGuardLocator",
    "IPaymentGateway",
    "IRealtimeBroadcaster",
    # Services
    "DomainService",
    "GuardCandidate",
    "GuardRankingService",
    # Errors
    "ActorNotAssigned",
    "BookingNotFound",
    "CaptureExceedsAuthorization",
    "CaptureFailed",
    "Conflict",
    "DependencyTimeout",
    "DispatchError",
    "GatewayUnavailable",
    "GuardNotOffered",
    "GuardUnavailable",
    "InvalidTransition",
    "NoGuardAvailable",
    "PaymentDeclined",
    "PaymentError",
    "PaymentStateError",
]
