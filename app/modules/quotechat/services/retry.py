"""Exponential backoff with jitter for utility LLM and embedding calls."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.1
    timeout: float = 30.0


DEFAULT_RETRY = RetryConfig()
AUGMENTATION_RETRY = RetryConfig(max_retries=2, initial_delay=0.5)
SUGGESTIONS_RETRY = RetryConfig(max_retries=1, initial_delay=0.5, timeout=15.0)
EMBEDDING_RETRY = RetryConfig(max_retries=2, initial_delay=0.5, timeout=10.0)


class RetryExhaustedError(Exception):
    def __init__(self, message: str, last_error: BaseException, attempts: int):
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


def is_retryable_error(exc: BaseException) -> bool:
    """Rate limits, 5xx, timeouts and connection failures are transient."""
    if isinstance(exc, (asyncio.TimeoutError, APITimeoutError, APIConnectionError)):
        return True
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(exc, APIStatusError):
        return exc.status_code == 429 or 500 <= exc.status_code < 600
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status == 429 or 500 <= status < 600
    return False


def compute_delay(attempt: int, config: RetryConfig, rand: Callable[[], float] = random.random) -> float:
    """Delay before retry number ``attempt`` (0-based), jittered by +/- ``config.jitter``."""
    delay = min(config.initial_delay * (config.backoff_multiplier ** attempt), config.max_delay)
    spread = delay * config.jitter
    return max(0.0, delay + spread * (2 * rand() - 1))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig = DEFAULT_RETRY,
    name: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` with a per-attempt timeout, retrying transient failures.

    Non-retryable errors propagate unchanged on the first occurrence. When
    every attempt fails with a transient error, RetryExhaustedError is raised
    with the last cause attached.
    """
    last_error: Optional[BaseException] = None
    attempts = config.max_retries + 1

    for attempt in range(attempts):
        try:
            return await asyncio.wait_for(operation(), timeout=config.timeout)
        except Exception as exc:
            if not is_retryable_error(exc):
                raise
            last_error = exc
            if attempt == attempts - 1:
                break
            delay = compute_delay(attempt, config)
            logger.warning(f"{name} attempt {attempt + 1}/{attempts} failed: {exc!r}. Retrying in {delay:.2f}s")
            await sleep(delay)

    logger.error(f"{name} failed after {attempts} attempts: {last_error!r}")
    raise RetryExhaustedError(f"{name} failed after {attempts} attempts", last_error, attempts) from last_error
