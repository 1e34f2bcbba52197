"""
Exponential backoff wrapper for remote bucket operations.
"""
import threading
import time
from typing import Callable, Optional, TypeVar
from loguru import logger

from ..errors import NotFound, Unauthorized, Unavailable

T = TypeVar('T')


class RetryController:
    """
    Retries Unavailable failures with capped exponential backoff.

    Unauthorized and NotFound are raised on the first occurrence: retrying
    a bad credential or a missing key cannot succeed. Once the optional
    stop event is set, a failed attempt is not followed by another.
    """

    def __init__(self, max_attempts: int = 5, backoff_base: float = 0.5,
                 backoff_cap: float = 30.0, sleep: Optional[Callable[[float], object]] = None,
                 stop_event: Optional[threading.Event] = None):
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self._sleep = sleep or time.sleep
        self.stop_event = stop_event

    def _stopping(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (0-based)."""
        return min(self.backoff_cap, self.backoff_base * (2 ** attempt))

    def call(self, operation: Callable[[], T], description: str = 'operation') -> T:
        """
        Execute an operation with exponential backoff retry logic.

        Args:
            operation: Zero-argument callable performing one remote call
            description: Human readable name used in log lines

        Returns:
            Whatever the operation returns

        Raises:
            Unauthorized, NotFound: Immediately
            Unavailable: After max_attempts failed calls, or after the first
                failure once the stop event is set
        """
        for attempt in range(self.max_attempts):
            try:
                return operation()
            except (Unauthorized, NotFound):
                raise
            except Unavailable as e:
                if attempt == self.max_attempts - 1:
                    logger.error(f"{description} failed after {self.max_attempts} attempts: {e}")
                    raise
                if self._stopping():
                    logger.warning(f"{description} failed during shutdown, not retrying: {e}")
                    raise

                wait_time = self.delay_for(attempt)
                logger.warning(f"{description} failed (attempt {attempt + 1}/{self.max_attempts}), "
                               f"retrying in {wait_time:.2f}s: {e}")
                self._sleep(wait_time)
                if self._stopping():
                    logger.warning(f"{description} not retried, shutdown requested during backoff")
                    raise
