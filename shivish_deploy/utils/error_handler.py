"""
Retry with exponential backoff for the flaky parts of a deployment.

Image pulls during ``docker-compose up``, IP lookup services and freshly
started containers all fail transiently. ``classify_error`` decides whether
a failure is worth another attempt; ``retry_with_backoff`` wraps a callable
with that policy.
"""

import functools
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Tuple, Type

import requests
import structlog

from shivish_deploy.errors import CommandError

logger = structlog.get_logger(__name__)


class ErrorCategory(Enum):
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"
    RATE_LIMITED = "rate_limited"


@dataclass
class RetryConfig:
    """Backoff policy: ``initial_delay * exponential_base ** attempt``, capped at ``max_delay``."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.2


@dataclass
class RetryMetrics:
    """Counters for one wrapped operation."""

    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    retry_count: int = 0
    total_delay_seconds: float = 0.0
    last_error: Optional[str] = None
    last_error_timestamp: Optional[datetime] = None

    def record_error(self, error: Exception) -> None:
        self.last_error = str(error)
        self.last_error_timestamp = datetime.now(timezone.utc)


TRANSIENT_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
)

PERMANENT_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    ValueError,
    TypeError,
    KeyError,
    AttributeError,
    FileNotFoundError,
    PermissionError,
)

# 126: not executable, 127: not found
MISSING_COMMAND_EXIT_CODES = frozenset({126, 127})

# docker output that no amount of retrying fixes
PERMANENT_DOCKER_ERRORS = (
    "pull access denied",
    "manifest unknown",
    "no such image",
    "is not a valid",
    "yaml:",
)

TRANSIENT_MESSAGES = (
    "connection",
    "timeout",
    "timed out",
    "unavailable",
    "temporar",
    "transient",
    "tls handshake",
    "i/o timeout",
)


def _classify_status(status_code: int) -> Optional[ErrorCategory]:
    if status_code == 429:
        return ErrorCategory.RATE_LIMITED
    if status_code in (408, 500, 502, 503, 504):
        return ErrorCategory.RETRYABLE
    if 400 <= status_code < 500:
        return ErrorCategory.NON_RETRYABLE
    return None


def _classify_command(error: CommandError) -> ErrorCategory:
    if error.returncode in MISSING_COMMAND_EXIT_CODES:
        return ErrorCategory.NON_RETRYABLE
    output = f"{error.stderr}\n{error.stdout}".lower()
    if any(marker in output for marker in PERMANENT_DOCKER_ERRORS):
        return ErrorCategory.NON_RETRYABLE
    return ErrorCategory.RETRYABLE


def classify_error(exception: Exception) -> ErrorCategory:
    """
    Decide whether ``exception`` is worth retrying.

    HTTP status codes win when the exception carries a response. A failed
    command is retried unless the executable is missing or docker reports
    an error that is permanent (unknown image, invalid compose file).
    Anything else falls back to the exception type, then to its message.
    """
    status_code = getattr(getattr(exception, "response", None), "status_code", None)
    if status_code is not None:
        category = _classify_status(status_code)
        if category is not None:
            return category

    if isinstance(exception, CommandError):
        return _classify_command(exception)
    if isinstance(exception, PERMANENT_EXCEPTIONS):
        return ErrorCategory.NON_RETRYABLE
    if isinstance(exception, TRANSIENT_EXCEPTIONS):
        return ErrorCategory.RETRYABLE

    message = str(exception).lower()
    if any(marker in message for marker in TRANSIENT_MESSAGES):
        return ErrorCategory.RETRYABLE
    return ErrorCategory.NON_RETRYABLE


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Seconds to wait after the 0-indexed ``attempt`` failed."""
    delay = min(config.initial_delay * config.exponential_base ** attempt, config.max_delay)
    if config.jitter:
        delay *= 1 + random.uniform(-config.jitter_range, config.jitter_range)
    return max(0.0, delay)


def retry_with_backoff(
    config: Optional[RetryConfig] = None,
    retryable_exceptions: Optional[Tuple[Type[Exception], ...]] = None,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    metrics: Optional[RetryMetrics] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator retrying the wrapped callable with exponential backoff.

    Args:
        config: Backoff policy (defaults to ``RetryConfig()``)
        retryable_exceptions: Types always retried, whatever
            ``classify_error`` says about them
        on_retry: Called with ``(attempt, error, delay)`` before each wait
        metrics: Counters updated on every attempt
        sleep: Waits between attempts

    Example:
        @retry_with_backoff(RetryConfig(max_attempts=3, initial_delay=5.0))
        def compose_up():
            return runner.run(["docker-compose", "up", "-d"])
    """
    config = config or RetryConfig()
    metrics = metrics if metrics is not None else RetryMetrics()

    def categorize(error: Exception) -> ErrorCategory:
        if retryable_exceptions and isinstance(error, retryable_exceptions):
            return ErrorCategory.RETRYABLE
        return classify_error(error)

    def decorator(func):
        name = getattr(func, "__name__", repr(func))

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                metrics.total_attempts += 1
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    metrics.record_error(e)
                    category = categorize(e)
                    final = attempt + 1 >= config.max_attempts
                    if category == ErrorCategory.NON_RETRYABLE or final:
                        metrics.failed_attempts += 1
                        logger.error(
                            "retry_gave_up" if final else "non_retryable_error",
                            function=name,
                            attempts=attempt + 1,
                            error_type=type(e).__name__,
                            error=str(e),
                        )
                        raise

                    delay = calculate_delay(attempt, config)
                    metrics.retry_count += 1
                    metrics.total_delay_seconds += delay
                    logger.warning(
                        "retrying_operation",
                        function=name,
                        attempt=attempt + 1,
                        max_attempts=config.max_attempts,
                        delay_seconds=round(delay, 2),
                        error_category=category.value,
                        error=str(e),
                    )
                    if on_retry:
                        on_retry(attempt, e, delay)
                    sleep(delay)
                    attempt += 1
                else:
                    metrics.successful_attempts += 1
                    return result

        return wrapper

    return decorator
