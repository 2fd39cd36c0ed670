# SPDX-License-Identifier: Apache-2.0
"""Aegis booking lifecycle and dispatch engine."""

import logging

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "application",
    "cli",
    "config",
    "domain",
    "infrastructure",
    "metrics",
    "__version__",
]
