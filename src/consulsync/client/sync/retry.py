"""Retry logic with exponential backoff.

This module provides:
- RetryPolicy: Decides whether and how long to wait before a retry
- retry_with_backoff: Call a function, retrying per a RetryPolicy
- RetryingLister: KVLister wrapper that retries transient listing errors
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from consulsync.client.api import ConnectionFailedError, KVError
from consulsync.core.config import (
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_RETRY_MAX_BACKOFF,
)

if TYPE_CHECKING:
    from consulsync.client.api import KVLister, KVPair
    from consulsync.core.config import RetryConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff policy.

    Attributes:
        enabled: When False, nothing is ever retried.
        attempts: Maximum number of retries, 0 for unlimited.
        backoff: Wait before the first retry, in seconds. Doubles each retry.
        max_backoff: Cap on the wait in seconds, 0 for no cap.
    """

    enabled: bool = True
    attempts: int = DEFAULT_RETRY_ATTEMPTS
    backoff: float = DEFAULT_RETRY_BACKOFF
    max_backoff: float = DEFAULT_RETRY_MAX_BACKOFF

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        """Build from a finalized RetryConfig."""
        return cls(
            enabled=bool(config.enabled),
            attempts=config.attempts if config.attempts is not None else DEFAULT_RETRY_ATTEMPTS,
            backoff=config.backoff if config.backoff is not None else DEFAULT_RETRY_BACKOFF,
            max_backoff=(
                config.max_backoff if config.max_backoff is not None else DEFAULT_RETRY_MAX_BACKOFF
            ),
        )

    @property
    def attempts_till_max_backoff(self) -> int | None:
        """Retry index after which the wait stays at max_backoff, if capped."""
        if self.max_backoff <= 0:
            return None
        return math.floor(math.log2(self.max_backoff / self.backoff))

    def decide(self, attempt: int) -> tuple[bool, float]:
        """Decide whether to retry after a failure.

        Args:
            attempt: Zero-based retry index; 0 is the retry right after
                the first failure.

        Returns:
            (retry, wait) where wait is in seconds and 0 when not retrying.
        """
        if not self.enabled:
            return False, 0.0

        if self.attempts > 0 and attempt >= self.attempts:
            return False, 0.0

        threshold = self.attempts_till_max_backoff
        if threshold is not None and attempt > threshold:
            return True, self.max_backoff

        return True, self.backoff * (2**attempt)


def retry_with_backoff(
    func: Callable[[], Any],
    policy: RetryPolicy,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    retry_if: Callable[[Exception], bool] | None = None,
    wait: Callable[[float], bool] | None = None,
) -> Any:
    """Execute a function, retrying failures as the policy allows.

    Args:
        func: Function to execute.
        policy: Decides whether and how long to wait before each retry.
        retryable_exceptions: Exception types that may be retried.
        retry_if: Optional extra filter on retryable exceptions.
        wait: Sleeps for the given seconds instead of time.sleep. A True
            return value means the wait was interrupted and retrying is
            abandoned, which is what threading.Event.wait returns once the
            event is set.

    Returns:
        Result of the function.

    Raises:
        The last exception if the policy gives up or the wait is interrupted.
    """
    attempt = 0
    while True:
        try:
            return func()
        except retryable_exceptions as e:
            if retry_if is not None and not retry_if(e):
                raise

            should_retry, delay = policy.decide(attempt)
            if not should_retry:
                if attempt > 0:
                    logger.error(f"All {attempt} retries failed: {e}")
                raise

            logger.warning(
                f"Attempt {attempt + 1} failed: {e}. Retrying in {delay:.2f}s..."
            )
            if wait is None:
                time.sleep(delay)
            elif wait(delay):
                logger.debug("Retry interrupted, giving up")
                raise
            attempt += 1


def is_transient(error: Exception) -> bool:
    """Check whether a store error is worth retrying.

    Connection failures and server-side (5xx) errors are; authentication
    and other client errors are not.
    """
    if isinstance(error, ConnectionFailedError):
        return True
    if isinstance(error, KVError) and error.status_code is not None:
        return error.status_code >= 500
    return False


class RetryingLister:
    """KVLister that retries transient errors of another KVLister.

    Waits between attempts end early when the cancel event is set, so a
    stopping Runner does not sit out a long backoff.
    """

    def __init__(
        self,
        lister: KVLister,
        policy: RetryPolicy,
        cancel: threading.Event | None = None,
    ) -> None:
        self._lister = lister
        self._policy = policy
        self._cancel = cancel if cancel is not None else threading.Event()

    def list(self, prefix: str) -> Sequence[KVPair]:
        return retry_with_backoff(  # type: ignore[no-any-return]
            lambda: self._lister.list(prefix),
            self._policy,
            retryable_exceptions=(KVError,),
            retry_if=is_transient,
            wait=self._cancel.wait,
        )

    def close(self) -> None:
        self._lister.close()
