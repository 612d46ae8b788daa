"""
Bounded retry with exponential backoff.

The review coordinator wraps each vote wait in a RetryHandler: a timed-out
wait re-requests the missing votes and waits again, and the last timeout
becomes a missing-vote escalation.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Type

from .config import RetryConfig
from .errors import NonRetryableError, RetryableError

logger = logging.getLogger(__name__)

RetryCallback = Callable[[int, Exception], None]


@dataclass
class RetryPolicy:
    """How often to try and how long to back off in between"""
    max_attempts: int = 3
    initial_delay_ms: int = 100
    max_delay_ms: int = 5000
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple[Type[Exception], ...] = (RetryableError,)

    @classmethod
    def from_config(cls, config: RetryConfig, max_attempts: int) -> "RetryPolicy":
        return cls(
            max_attempts=max_attempts,
            initial_delay_ms=config.initial_delay_ms,
            max_delay_ms=config.max_delay_ms,
            exponential_base=config.exponential_base,
            jitter=config.jitter,
        )


class RetryHandler:
    """Runs a callable under a RetryPolicy"""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def execute(
        self,
        func: Callable[..., Any],
        *args,
        on_retry: Optional[RetryCallback] = None,
        **kwargs,
    ) -> Any:
        """
        Call ``func`` until it returns or the attempts run out.

        Only ``policy.retryable_exceptions`` are retried; a NonRetryableError
        or any other exception propagates from the first attempt.

        Args:
            func: Callable to run
            on_retry: Called with (attempt, error) after the backoff sleep,
                before the next attempt
            *args, **kwargs: Passed through to ``func``

        Raises:
            The error of the final attempt
        """
        attempts = self.policy.max_attempts
        attempt = 1
        while True:
            try:
                return func(*args, **kwargs)
            except NonRetryableError:
                raise
            except self.policy.retryable_exceptions as e:
                if attempt >= attempts:
                    raise
                delay = self._calculate_delay(attempt) / 1000.0
                name = getattr(func, "__name__", repr(func))
                logger.debug(f"{name} failed ({e}); attempt {attempt + 1}/{attempts} in {delay:.2f}s")
                self._sleep(delay)
                if on_retry:
                    on_retry(attempt, e)
                attempt += 1

    def _calculate_delay(self, attempt: int) -> int:
        """Backoff in milliseconds before retrying after ``attempt`` (1-indexed)."""
        policy = self.policy
        delay = min(
            policy.initial_delay_ms * policy.exponential_base ** (attempt - 1),
            policy.max_delay_ms,
        )
        if policy.jitter:
            # Up to 25% on top
            delay += random.uniform(0, delay * 0.25)
        return int(delay)
