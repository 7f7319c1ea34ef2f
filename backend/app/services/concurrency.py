"""
Optimistic concurrency helpers.

Versioned writes raise StaleWriteError when another worker committed first.
Callers wrap their read-modify-write cycle in retry_on_conflict so the
cycle is re-run against fresh state.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from app.config.settings import get_settings
from app.infrastructure.exceptions import ConcurrencyConflictError, StaleWriteError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_on_conflict(
    operation: Callable[[], Awaitable[T]],
    operation_name: str,
    attempts: Optional[int] = None,
) -> T:
    """
    Re-run a read-modify-write cycle until its versioned write lands.

    Args:
        operation: Coroutine factory performing one full cycle
        operation_name: Used in logs and the final error
        attempts: Defaults to OPTIMISTIC_RETRY_ATTEMPTS

    Raises:
        ConcurrencyConflictError: When every attempt lost its race
    """
    attempts = attempts or get_settings().optimistic_retry_attempts
    last_error: Optional[StaleWriteError] = None

    for attempt in range(attempts):
        try:
            return await operation()
        except StaleWriteError as e:
            last_error = e
            logger.info(
                f"{operation_name} lost a write race on {e.entity} {e.entity_id}. "
                f"Attempt {attempt + 1}/{attempts}"
            )
            await asyncio.sleep(random.uniform(0, 0.005 * (attempt + 1)))

    logger.warning(f"{operation_name} gave up after {attempts} conflicting attempts")
    raise ConcurrencyConflictError(
        f"{operation_name} could not complete due to concurrent updates, please retry",
        last_error.details if last_error else None,
        original_error=last_error,
    )
