# SPDX-License-Identifier: Apache-2.0
"""Dispatch application services module."""

from __future__ import annotations

from .broadcast import BroadcastRelay, channel_for
from .commands import (
    AcceptBookingCommand,
    CancelBookingCommand,
    CompleteJobCommand,
    RecordLocationCommand,
    RegisterGuardCommand,
    RequestBookingCommand,
    StartJobCommand,
)
from .locking import KeyedLocks
from .payments import PaymentCoordinator
from .services import BookingLifecycleService

__all__ = [
    # Services
    "BookingLifecycleService",
    "PaymentCoordinator",
    "BroadcastRelay",
    "KeyedLocks",
    "channel_for",
    # Commands
    "RequestBookingCommand",
    "AcceptBookingCommand",
    "StartJobCommand",
    "CompleteJobCommand",
    "CancelBookingCommand",
    "RecordLocationCommand",
    "RegisterGuardCommand",
]
