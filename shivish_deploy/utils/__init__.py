"""Process execution and retry helpers."""

from .error_handler import (
    ErrorCategory,
    RetryConfig,
    RetryMetrics,
    classify_error,
    retry_with_backoff,
)
from .shell import CommandResult, CommandRunner

__all__ = [
    "CommandResult",
    "CommandRunner",
    "ErrorCategory",
    "RetryConfig",
    "RetryMetrics",
    "classify_error",
    "retry_with_backoff",
]
