"""Utility modules for tokenwise."""

from tokenwise.utils.logging import setup_logging, get_logger, log_context
from tokenwise.utils.retry import with_retry, retry_async, RetryConfig

__all__ = [
    "setup_logging",
    "get_logger",
    "log_context",
    "with_retry",
    "retry_async",
    "RetryConfig",
]
