# SPDX-License-Identifier: Apache-2.0
"""Pydantic configuration model for the dispatch policy."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PathLike = Union[str, Path]

# Configuration versioning constants
CURRENT_CONFIG_VERSION = "1"
MIN_SUPPORTED_VERSION = "1"


class DispatchPolicy(BaseModel):
    """Tunable limits for matching, starting, paying and broadcasting.

    Loaded from YAML with snake_case or kebab-case field names; see
    ``aegis.config.loader.load_policy``.
    """

    model_config = ConfigDict(extra="forbid")

    config_version: str = Field(
        default=CURRENT_CONFIG_VERSION, description="Configuration schema version"
    )

    # Matching
    search_radius_km: float = Field(
        default=50.0, description="Only guards within this distance are matched", gt=0, le=500
    )
    max_candidates: int = Field(
        default=3, description="How many ranked guards a booking is offered to", ge=1, le=20
    )
    location_staleness_seconds: int = Field(
        default=300, description="Guards silent for longer than this are not matched", ge=1
    )
    average_speed_kmh: float = Field(
        default=30.0, description="Average travel speed used for ETA estimates", gt=0
    )
    match_wait_window_seconds: int = Field(
        default=900, description="How long a booking may wait for a guard before it is cancelled", ge=1
    )
    max_match_attempts: int = Field(
        default=5, description="Failed match attempts before the booking is cancelled", ge=1
    )
    match_retry_initial_delay_seconds: float = Field(
        default=5.0, description="First backoff delay between match attempts", ge=0
    )
    match_retry_max_delay_seconds: float = Field(
        default=60.0, description="Upper bound for the match backoff delay", ge=0
    )

    # Starting
    start_grace_minutes: int = Field(
        default=15, description="How early before scheduled start a job may begin", ge=0
    )
    start_wait_window_minutes: int = Field(
        default=30, description="How late after scheduled start an accepted job may begin", ge=1
    )

    # Payments
    platform_fee_percent: Decimal = Field(
        default=Decimal("20"), description="Platform share of every payment", ge=0, le=100
    )
    currency: str = Field(default="USD", description="ISO 4217 currency for all amounts")

    # Collaborator bounds
    payment_timeout_seconds: float = Field(default=10.0, gt=0)
    locator_timeout_seconds: float = Field(default=5.0, gt=0)
    broadcast_timeout_seconds: float = Field(default=2.0, gt=0)
    dependency_retries: int = Field(
        default=1, description="Retries after a transient collaborator failure", ge=0, le=5
    )

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Validate and normalize the currency code."""
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError(f"Currency must be a 3-letter ISO 4217 code, got {v!r}")
        return v

    @model_validator(mode="after")
    def validate_backoff(self) -> DispatchPolicy:
        """Validate that the backoff bounds are consistent."""
        if self.match_retry_max_delay_seconds < self.match_retry_initial_delay_seconds:
            raise ValueError(
                "match_retry_max_delay_seconds must not be below match_retry_initial_delay_seconds"
            )
        return self

    @property
    def location_staleness(self) -> timedelta:
        return timedelta(seconds=self.location_staleness_seconds)

    @property
    def match_wait_window(self) -> timedelta:
        return timedelta(seconds=self.match_wait_window_seconds)

    @property
    def start_grace(self) -> timedelta:
        return timedelta(minutes=self.start_grace_minutes)

    @property
    def start_wait_window(self) -> timedelta:
        return timedelta(minutes=self.start_wait_window_minutes)

    def match_retry_delay(self, attempt: int) -> float:
        """Exponential backoff delay before match attempt ``attempt + 1``."""
        delay = self.match_retry_initial_delay_seconds * (2 ** max(attempt - 1, 0))
        return min(delay, self.match_retry_max_delay_seconds)

    @classmethod
    def from_yaml(cls, path: PathLike) -> DispatchPolicy:
        """Load a policy from a YAML file via ``load_policy``."""
        # Import here to avoid circular imports
        from .loader import load_policy

        return load_policy(path)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation.

        Returns:
            Dictionary representation of the policy
        """
        return self.model_dump()

    def merge_overrides(self, **overrides: Any) -> DispatchPolicy:
        """Create a new policy with field overrides.

        Args:
            **overrides: Field values to override

        Returns:
            New DispatchPolicy instance with overrides applied
        """
        current_data = self.to_dict()

        # Apply overrides, filtering out None values
        for key, value in overrides.items():
            if value is not None:
                current_data[key] = value

        return self.__class__(**current_data)
