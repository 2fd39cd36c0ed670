# SPDX-License-Identifier: Apache-2.0
"""Monitoring infrastructure for Aegis."""
