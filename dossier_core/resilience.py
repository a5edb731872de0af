"""
Resilience - Retries with backoff and cooperative cancellation

Retries are applied only at the collaborator boundary; the scheduler itself
never retries a stage. Cancellation is cooperative: long-running loops poll a
CancellationToken at natural boundaries (file start, stage start).
"""

import logging
import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BackoffStrategy(str, Enum):
    CONSTANT = "constant"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    EXPONENTIAL_JITTER = "exponential_jitter"


@dataclass
class RetryConfig:
    """
    Retry budget for one kind of call.

    retry_exceptions are retried unless they also match exclude_exceptions
    or carry retryable=False (see CollaboratorError).
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL_JITTER
    retry_exceptions: tuple = (Exception,)
    exclude_exceptions: tuple = ()


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Seconds to wait after failed attempt number `attempt` (1-based), capped at max_delay."""
    growth = {
        BackoffStrategy.CONSTANT: 1,
        BackoffStrategy.LINEAR: attempt,
    }.get(config.strategy, 2 ** (attempt - 1))
    delay = config.base_delay * growth
    if config.strategy == BackoffStrategy.EXPONENTIAL_JITTER:
        delay *= 0.5 + random.random()
    return min(delay, config.max_delay)


def should_retry(exception: Exception, config: RetryConfig) -> bool:
    if isinstance(exception, config.exclude_exceptions) or getattr(exception, "retryable", True) is False:
        return False
    return isinstance(exception, config.retry_exceptions)


def call_with_retry(
    func: Callable[[], T],
    config: RetryConfig,
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call func until it succeeds or the budget runs out; the last exception
    is re-raised unchanged.
    """
    attempt = 1
    while True:
        try:
            return func()
        except Exception as e:
            if not should_retry(e, config) or attempt >= config.max_attempts:
                logger.warning(f"[retry] {description} gave up after {attempt} attempt(s): {e}")
                raise
            delay = calculate_delay(attempt, config)
            logger.info(f"[retry] {description} attempt {attempt}/{config.max_attempts} failed, next in {delay:.2f}s: {e}")
            sleep(delay)
            attempt += 1


class CancellationToken:
    """
    Cooperative cancellation flag shared by the extraction pool and the
    scheduler. Once cancelled it stays cancelled; the first reason wins.
    """

    def __init__(self):
        self._event = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        logger.info(f"[cancel] {reason}")

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason
