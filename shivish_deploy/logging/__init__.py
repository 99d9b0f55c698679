"""Structured logging module using structlog."""

from .structured_logger import SecretRedactor, bind_context, clear_context, configure_logging, get_logger

__all__ = ["SecretRedactor", "bind_context", "clear_context", "configure_logging", "get_logger"]
