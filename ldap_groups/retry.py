"""
Retry utilities for handling transient directory failures.

This module provides an executor that re-invokes an operation a bounded
number of times with a fixed delay, retrying only errors classified as
transient by the protocol boundary in ``ldap_groups.errors``.
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional, TypeVar

from ldap_groups.errors import OperationFailed, RetryInterrupted, TransientDirectoryError

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_DELAY_SECONDS = 1.0


def is_retryable_error(exception: Exception) -> bool:
    """
    Determine if an exception should trigger a retry.

    Args:
        exception: Exception to check

    Returns:
        True if the exception indicates a transient failure
    """
    return isinstance(exception, TransientDirectoryError)


class RetryExecutor:
    """
    Runs operations with a fixed-delay retry policy.

    Only transient directory errors are retried. Anything else propagates
    unchanged on the first failure. The wait between attempts can be
    cancelled through ``cancel_event`` (or :meth:`cancel`), which aborts the
    wait with :class:`RetryInterrupted`.

    Cancellation is permanent: the event is never cleared, so once cancelled
    the executor still makes first attempts but never retries again. Use a
    new executor (or event) for work that should retry after a cancellation.
    """

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 delay: float = DEFAULT_DELAY_SECONDS,
                 cancel_event: Optional[threading.Event] = None):
        """
        Initialize the executor.

        Args:
            max_attempts: Maximum number of attempts (including initial call)
            delay: Seconds to wait between attempts
            cancel_event: Event that interrupts the wait when set
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if delay < 0:
            raise ValueError("delay must not be negative")

        self.max_attempts = max_attempts
        self.delay = delay
        self.cancel_event = cancel_event or threading.Event()

    @classmethod
    def from_config(cls, config: Dict[str, Any],
                    cancel_event: Optional[threading.Event] = None) -> 'RetryExecutor':
        """
        Create an executor from the ``error_handling`` configuration section.

        Args:
            config: Dictionary with optional ``max_attempts`` and
                ``retry_wait_seconds`` keys
            cancel_event: Optional cancellation event
        """
        config = config or {}
        return cls(
            max_attempts=config.get('max_attempts', DEFAULT_MAX_ATTEMPTS),
            delay=config.get('retry_wait_seconds', DEFAULT_DELAY_SECONDS),
            cancel_event=cancel_event
        )

    def cancel(self) -> None:
        """Interrupt the current wait and every future wait of this executor."""
        self.cancel_event.set()

    def execute_with_retry(self, operation: Callable[[], T]) -> T:
        """
        Call ``operation`` with retry logic and return its result.

        Raises:
            OperationFailed: If every attempt failed with a transient error
            RetryInterrupted: If the wait between attempts was cancelled
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = operation()
            except Exception as e:
                if not is_retryable_error(e):
                    raise

                if attempt == self.max_attempts:
                    logger.error(f"Operation failed after {attempt} attempts: {e}")
                    raise OperationFailed(attempt, e) from e

                logger.warning(f"Attempt {attempt}/{self.max_attempts} failed with "
                               f"{type(e).__name__}: {e}; retrying in {self.delay:.1f} seconds")
                self._wait(e)
                continue

            if attempt > 1:
                logger.info(f"Operation succeeded on attempt {attempt}")
            return result

        # max_attempts >= 1 guarantees the loop returns or raises
        raise AssertionError("unreachable")

    def run_with_retry(self, operation: Callable[[], Any]) -> None:
        """Call a side-effect-only ``operation`` with retry logic."""
        self.execute_with_retry(operation)

    def _wait(self, last_exception: Exception) -> None:
        # Event.wait returns True only when the event was set, which stays set
        # so the caller still sees the cancellation
        if self.cancel_event.wait(self.delay):
            logger.warning("Retry wait interrupted by cancellation")
            raise RetryInterrupted("Retry was interrupted") from last_exception
