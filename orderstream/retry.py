"""
Bounded retry with exponential backoff and jitter.

Three policies cover the pipeline: light for best-effort sends, default for
reads, heavy for anything whose failure loses data (writes, schema init,
connection bring-up).
"""

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from orderstream.errors import NonRetryableError, RetryCancelled
from orderstream.metrics import MetricsRegistry, NullMetrics

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_backoff: float = 0.1  # seconds
    max_backoff: float = 10.0
    backoff_factor: float = 2.0
    jitter: bool = True


def default_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, initial_backoff=0.1, max_backoff=10.0, backoff_factor=2.0)


def light_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=2, initial_backoff=0.05, max_backoff=1.0, backoff_factor=1.5)


def heavy_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=5, initial_backoff=0.2, max_backoff=30.0, backoff_factor=2.5)


def is_retryable(exc: BaseException) -> bool:
    return not isinstance(exc, NonRetryableError)


def compute_delay(
    policy: RetryPolicy,
    attempt: int,
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Delay to wait after the failed attempt number `attempt` (0-based).

    The exponential part is capped at max_backoff; jitter adds up to half of
    the capped delay on top.
    """
    delay = min(policy.max_backoff, policy.initial_backoff * (policy.backoff_factor ** attempt))
    if policy.jitter and delay > 0:
        delay += rand() * (delay / 2)
    return delay


def run(
    policy: RetryPolicy,
    fn: Callable[[], T],
    cancel: Optional[threading.Event] = None,
    retryable: Callable[[BaseException], bool] = is_retryable,
    operation: str = "operation",
    metrics: Optional[MetricsRegistry] = None,
) -> T:
    """
    Call fn until it returns, attempts run out, or cancel is set.

    Returns fn's result on the first success. Re-raises the last error once
    attempts are exhausted, and raises non-retryable errors straight away.
    Raises RetryCancelled if cancel fires before an attempt or during a wait.
    """
    metrics = metrics or NullMetrics()
    max_attempts = max(1, policy.max_attempts)

    for attempt in range(max_attempts):
        if cancel is not None and cancel.is_set():
            raise RetryCancelled(f"{operation} cancelled before attempt {attempt + 1}")

        metrics.inc("retry_attempts_total", operation=operation)
        try:
            return fn()
        except Exception as exc:
            if not retryable(exc):
                raise
            metrics.inc("retry_failures_total", operation=operation)
            if attempt == max_attempts - 1:
                metrics.inc("retry_exhausted_total", operation=operation)
                logger.warning(f"{operation} failed after {max_attempts} attempts: {exc}")
                raise

            delay = compute_delay(policy, attempt)
            logger.info(
                f"{operation} attempt {attempt + 1}/{max_attempts} failed: {exc}; "
                f"retrying in {delay:.3f}s"
            )
            if cancel is None:
                time.sleep(delay)
            elif cancel.wait(delay):
                raise RetryCancelled(f"{operation} cancelled while waiting to retry") from exc

    # unreachable: the loop either returns or raises
    raise RuntimeError(f"{operation}: retry loop exited without result")
