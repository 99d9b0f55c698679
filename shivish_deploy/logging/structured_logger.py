"""Structured logging for shivish-deploy.

Events go to stderr through the stdlib ``logging`` handler so stdout stays
free for the operator-facing status lines. Commands are logged verbatim,
and they carry credentials (``redis-cli -a ...``, ``.env`` values), so
every string field passes through ``SecretRedactor`` before rendering.
"""

import logging
import sys
from typing import Any, Iterable, List, Optional

import structlog
from structlog.types import EventDict, Processor

APP_NAME = "shivish-deploy"
REDACTED = "***"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("urllib3", "docker", "testcontainers")


class SecretRedactor:
    """Processor replacing known secret values in every string field."""

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        # longest first so a secret containing another is masked whole
        self.secrets: List[str] = sorted({s for s in secrets if s}, key=len, reverse=True)

    def __call__(self, logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
        if not self.secrets:
            return event_dict
        for key, value in event_dict.items():
            if isinstance(value, str):
                event_dict[key] = self.redact(value)
        return event_dict

    def redact(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, REDACTED)
        return text


class AppContext:
    """Processor stamping the application name and environment."""

    def __init__(self, environment: str) -> None:
        self.environment = environment

    def __call__(self, logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("app", APP_NAME)
        event_dict.setdefault("environment", self.environment)
        return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    service_name: Optional[str] = None,
    environment: str = "production",
    secrets: Iterable[str] = (),
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_logs: Render one JSON object per line instead of key=value text
        service_name: Bound as ``component`` on every entry
        environment: Deployment environment reported with every entry
        secrets: Values masked wherever they appear in a log entry
    """
    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        AppContext(environment),
        SecretRedactor(secrets),
    ]
    renderer: Processor = (
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # the CLI reconfigures per invocation
        cache_logger_on_first_use=False,
    )

    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if service_name:
        structlog.contextvars.bind_contextvars(component=service_name)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Attach fields to every entry logged from the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
