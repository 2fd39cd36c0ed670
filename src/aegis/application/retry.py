# SPDX-License-Identifier: Apache-2.0
"""Bounded calls to external collaborators."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, TypeVar

from aegis.domain.errors import DependencyTimeout, GatewayUnavailable
from aegis.metrics import DEPENDENCY_LATENCY, DEPENDENCY_TIMEOUTS

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    dependency: str,
    operation: str,
    call: Callable[[], Awaitable[T]],
    *,
    timeout: float,
    retries: int = 1,
) -> T:
    """Run ``call()`` with a timeout, retrying on transient failure.

    ``call`` is a factory so every attempt gets a fresh awaitable. Timeouts
    and ``GatewayUnavailable`` are retried up to ``retries`` times; any other
    exception propagates immediately.

    Raises:
        DependencyTimeout: If every attempt timed out or was unavailable
    """
    last_error: Exception = asyncio.TimeoutError()
    for attempt in range(retries + 1):
        started = time.perf_counter()
        try:
            return await asyncio.wait_for(call(), timeout=timeout)
        except (asyncio.TimeoutError, GatewayUnavailable) as e:
            last_error = e
            if attempt < retries:
                logger.warning(
                    "%s.%s failed (%s), retrying (attempt %d)",
                    dependency,
                    operation,
                    type(e).__name__,
                    attempt + 1,
                )
        finally:
            DEPENDENCY_LATENCY.labels(dependency=dependency, operation=operation).observe(
                time.perf_counter() - started
            )

    DEPENDENCY_TIMEOUTS.labels(dependency=dependency).inc()
    raise DependencyTimeout(f"{dependency}.{operation}", timeout) from last_error
