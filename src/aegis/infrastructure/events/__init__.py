# SPDX-License-Identifier: Apache-2.0
"""Event infrastructure implementations."""

from .publishers import InMemoryEventPublisher

__all__ = ["InMemoryEventPublisher"]
