"""
CordSearch Retry — Backoff Policy for Cluster Operations
========================================================

A RetryPolicy describes how long to wait between attempts and how many
attempts are allowed. max_attempts=None retries until the operation
succeeds, which is the default for every cluster operation except query.

The wait is interruptible: setting the policy's cancel event wakes up a
sleeping retry loop, which then raises RetryCancelledError.
"""

import dataclasses
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from .errors import RetryCancelledError


@dataclass
class RetryPolicy:
    """
    Exponential backoff with an optional attempt cap.

    Example:
        policy = RetryPolicy(initial_delay=1.0, multiplier=2.0, max_delay=30.0)
        policy.delay(0)   # 1.0
        policy.delay(3)   # 8.0
        bounded = policy.with_limit(10)
    """

    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    max_attempts: Optional[int] = None
    sleep: Optional[Callable[[float], None]] = None
    cancel: threading.Event = field(default_factory=threading.Event)

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given (zero-based) failed attempt."""
        return min(self.max_delay, self.initial_delay * self.multiplier ** attempt)

    def exhausted(self, attempt: int) -> bool:
        """True if the given (zero-based) attempt was the last one allowed."""
        return self.max_attempts is not None and attempt + 1 >= self.max_attempts

    def pause(self, attempt: int) -> None:
        """
        Wait before the next attempt.

        Args:
            attempt: Zero-based number of the attempt that just failed

        Raises:
            RetryCancelledError: If the cancel event is set
        """
        delay = self.delay(attempt)
        if self.sleep is None:
            cancelled = self.cancel.wait(delay)
        else:
            self.sleep(delay)
            cancelled = self.cancel.is_set()
        if cancelled:
            raise RetryCancelledError(f"retry cancelled after attempt {attempt + 1}")

    def with_limit(self, max_attempts: Optional[int]) -> "RetryPolicy":
        """Copy of this policy with another attempt cap; shares sleep and cancel."""
        return dataclasses.replace(self, max_attempts=max_attempts)
