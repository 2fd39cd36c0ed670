# SPDX-License-Identifier: Apache-2.0
"""Configuration management for Aegis."""

from .loader import ConfigVersionError, load_policy
from .policy import CURRENT_CONFIG_VERSION, MIN_SUPPORTED_VERSION, DispatchPolicy

__all__ = [
    "DispatchPolicy",
    "CURRENT_CONFIG_VERSION",
    "MIN_SUPPORTED_VERSION",
    "load_policy",
    "ConfigVersionError",
]
