# SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for the dispatch core."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Booking lifecycle
BOOKING_EVENTS = Counter(
    "aegis_booking_events_total", "Domain events committed", ["event_type"]
)
BOOKINGS_CANCELLED = Counter(
    "aegis_bookings_cancelled_total", "Cancelled bookings", ["reason", "previous_status"]
)
MATCH_ATTEMPTS = Counter(
    "aegis_match_attempts_total", "Match attempts by outcome", ["outcome"]
)
ACCEPT_CONFLICTS = Counter(
    "aegis_accept_conflicts_total", "Acceptances that lost the race for a booking"
)
ACTIVE_BOOKING_LOCKS = Gauge(
    "aegis_active_booking_locks", "Per-booking locks currently held or awaited"
)

# Payments
PAYMENT_OPERATIONS = Counter(
    "aegis_payment_operations_total", "Payment gateway operations", ["operation", "outcome"]
)
CAPTURED_AMOUNT = Counter(
    "aegis_captured_amount_total", "Captured amount in major currency units", ["currency"]
)

# Location sharing
LOCATION_UPDATES = Counter(
    "aegis_location_updates_total", "Guard location updates", ["outcome"]
)
BROADCAST_FAILURES = Counter(
    "aegis_broadcast_failures_total", "Realtime publishes that failed or timed out", ["event_type"]
)

# Collaborators
DEPENDENCY_LATENCY = Histogram(
    "aegis_dependency_latency_seconds",
    "Latency of calls to external collaborators",
    ["dependency", "operation"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10],
)
DEPENDENCY_TIMEOUTS = Counter(
    "aegis_dependency_timeouts_total", "Collaborator calls that exceeded their bound", ["dependency"]
)

__all__ = [
    "BOOKING_EVENTS",
    "BOOKINGS_CANCELLED",
    "MATCH_ATTEMPTS",
    "ACCEPT_CONFLICTS",
    "ACTIVE_BOOKING_LOCKS",
    "PAYMENT_OPERATIONS",
    "CAPTURED_AMOUNT",
    "LOCATION_UPDATES",
    "BROADCAST_FAILURES",
    "DEPENDENCY_LATENCY",
    "DEPENDENCY_TIMEOUTS",
]
