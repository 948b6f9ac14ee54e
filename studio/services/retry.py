"""Retry with exponential backoff for provider calls.

Delays grow as ``initial_delay * backoff_multiplier ** attempt`` and are
capped at ``max_delay``. Jitter draws the actual delay from ``[d/2, d]`` so
many workers failing together do not retry in lockstep.
"""
import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from studio.errors import ProviderError, RequestCancelledError, StudioError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_MESSAGES = (
    "timeout",
    "timed out",
    "econnreset",
    "connection reset",
    "etimedout",
    "enotfound",
    "econnrefused",
    "name or service not known",
    "temporary",
    "rate limit",
    "network",
)


@dataclass
class RetryPolicy:
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    jitter: bool = True

    @classmethod
    def from_config(cls, config, **overrides):
        values = {
            "max_retries": config.get("RETRY_MAX_RETRIES", 3),
            "initial_delay": config.get("RETRY_INITIAL_DELAY", 1.0),
            "max_delay": config.get("RETRY_MAX_DELAY", 10.0),
        }
        values.update(overrides)
        return cls(**values)

    def delay_for(self, attempt):
        delay = min(self.initial_delay * self.backoff_multiplier ** attempt, self.max_delay)
        if self.jitter and delay > 0:
            delay = random.uniform(delay / 2, delay)
        return delay


class CancelToken:
    """Cooperative cancellation flag.

    ``probe`` is an optional callable consulted on every check, e.g. a
    lookup of the job's status row.
    """

    def __init__(self, probe=None):
        self._cancelled = False
        self._probe = probe

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self):
        if not self._cancelled and self._probe is not None and self._probe():
            self._cancelled = True
        return self._cancelled

    def raise_if_cancelled(self):
        if self.cancelled:
            raise RequestCancelledError()


def is_retryable_error(error):
    """Classify transient failures: network, 5xx/429 and known messages."""
    if isinstance(error, RequestCancelledError):
        return False
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status >= 500 or status == 429
    if isinstance(error, StudioError):
        if error.retryable:
            return True
        # Provider text may still describe a transient condition
        if not isinstance(error, ProviderError):
            return False
    message = str(error).lower()
    return any(fragment in message for fragment in RETRYABLE_MESSAGES)


async def retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    is_retryable: Optional[Callable[[BaseException], bool]] = None,
    cancel: Optional[CancelToken] = None,
    sleep=asyncio.sleep,
    **options,
) -> T:
    """Await ``operation()`` until it succeeds or retries run out.

    Args:
        operation: zero-argument coroutine function.
        policy: backoff settings; keyword ``options`` override single fields
            (``max_retries``, ``initial_delay``, ``max_delay``,
            ``backoff_multiplier``, ``jitter``).
        is_retryable: predicate deciding whether an error is worth another
            attempt. Defaults to always retrying.
        cancel: checked before every attempt; a cancelled token stops the
            loop with ``RequestCancelledError``.
        sleep: awaitable used between attempts.

    Returns:
        The operation's result.

    Raises:
        The last error once it is non-retryable or retries are exhausted.
    """
    policy = policy or RetryPolicy()
    if options:
        policy = RetryPolicy(**{**policy.__dict__, **options})
    if is_retryable is None:
        is_retryable = lambda error: True  # noqa: E731

    attempt = 0
    while True:
        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            return await operation()
        except Exception as error:
            if cancel is not None and cancel.cancelled:
                raise
            if not is_retryable(error):
                raise
            if attempt >= policy.max_retries:
                logger.error(
                    "All %d attempts failed. Last error: %s",
                    policy.max_retries + 1,
                    error,
                )
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "Attempt %d/%d failed: %s. Retrying in %.2fs",
                attempt + 1,
                policy.max_retries + 1,
                error,
                delay,
            )
            attempt += 1
            await sleep(delay)
