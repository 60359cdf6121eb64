"""
Retry policy shared by the per-image and the whole-send retry loops.

Both loops are tenacity ``AsyncRetrying`` runs with a fixed attempt count
and a fixed delay; the waits are ``asyncio.sleep`` so other requests keep
being served meanwhile.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .errors import SessionLoggedOutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

FailureHook = Callable[[BaseException, int], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay_seconds: float = 2.0

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay_seconds),
            retry=retry_if_not_exception_type((SessionLoggedOutError, asyncio.CancelledError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )


async def attempt(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    on_failure: Optional[FailureHook] = None,
) -> T:
    """
    Run ``operation`` until it succeeds or the policy gives up.

    ``on_failure`` sees every failed attempt (with its 1-based number)
    before the wait. The last failure is re-raised unchanged.
    """
    async for trial in policy.retrying():
        with trial:
            try:
                return await operation()
            except Exception as e:
                if on_failure is not None:
                    await on_failure(e, trial.retry_state.attempt_number)
                raise
    raise AssertionError("unreachable: tenacity re-raises the last failure")
