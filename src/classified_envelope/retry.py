"""
Caller-driven retry for transient remote failures.

The service never retries on its own; callers that want retries wrap a call
in retry_transient(). Only TransientRemoteError is retried. Everything
else, including ContextMismatchError and PermissionDeniedError, surfaces on
the first attempt.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from .errors import TransientRemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    backoff_initial: float = 0.2  # seconds
    backoff_max: float = 5.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


async def retry_transient(
    fn: Callable[[], Awaitable[T]], policy: RetryPolicy = RetryPolicy()
) -> T:
    """
    Await ``fn()``, retrying TransientRemoteError with exponential backoff.

    Raises:
        TransientRemoteError: If the last attempt still fails transiently
    """
    delay = policy.backoff_initial
    attempt = 1
    while True:
        try:
            return await fn()
        except TransientRemoteError as e:
            if attempt >= policy.max_attempts:
                logger.warning("Giving up after %d attempts (%s)", attempt, e.kind)
                raise
            logger.info(
                "Transient failure on attempt %d/%d, retrying in %.2fs",
                attempt,
                policy.max_attempts,
                delay,
            )
            await asyncio.sleep(min(delay, policy.backoff_max))
            delay *= policy.backoff_multiplier
            attempt += 1
