"""structlog configuration.

setup_logging() runs once in the gateway lifespan before anything logs.
Standard-library loggers (uvicorn, slack_sdk, sqlalchemy) keep their own
handlers but share the configured level.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import structlog

# Bot, user, app and config tokens: xoxb-, xoxp-, xapp-, xoxe.xoxp- ...
_SLACK_TOKEN_RE = re.compile(r"\b(xox[abpsre]|xapp)[-.][A-Za-z0-9.-]+")

# Third-party loggers that are chatty at DEBUG
_NOISY_LOGGERS = ("slack_sdk", "sqlalchemy.engine", "httpx", "openai")


def redact_slack_tokens(
    _logger: Any, _method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Mask Slack tokens in string values, e.g. inside error messages."""
    for key, value in event_dict.items():
        if isinstance(value, str) and ("xox" in value or "xapp" in value):
            event_dict[key] = _SLACK_TOKEN_RE.sub(r"\1-***", value)
    return event_dict


def setup_logging(*, json_output: bool = True, log_level: str = "INFO") -> None:
    level = logging.getLevelName(log_level.upper())

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        redact_slack_tokens,
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(levelname)s %(name)s: %(message)s", level=level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))
