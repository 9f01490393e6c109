"""Retry with exponential backoff for idempotent writes."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from sqlalchemy.exc import OperationalError

from app.exceptions import PersistenceError

T = TypeVar("T")
logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 0.2
    multiplier: float = 2.0
    max_delay: float = 5.0
    retryable_exceptions: tuple[type[Exception], ...] = field(
        default_factory=lambda: (OperationalError,)
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
) -> T:
    """
    Run `operation` until it succeeds or attempts run out.
    Only safe for operations whose repeated application is harmless
    (e.g. a last-writer-wins upsert). Exhaustion raises PersistenceError.
    """
    if config is None:
        config = RetryConfig()

    for attempt in range(config.max_attempts):
        try:
            return await operation()
        except config.retryable_exceptions as e:
            if attempt == config.max_attempts - 1:
                logger.error("%s failed after %d attempts: %s", operation_name, config.max_attempts, e)
                raise PersistenceError(f"{operation_name} failed", {"error": str(e)}) from e

            delay = min(config.base_delay * (config.multiplier ** attempt), config.max_delay)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                operation_name, attempt + 1, config.max_attempts, delay, e,
            )
            await asyncio.sleep(delay)

    raise PersistenceError(f"{operation_name} was not attempted")
