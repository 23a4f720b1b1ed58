"""
Structured logging for bizagent (structlog).

DEBUG=true renders colored console lines, otherwise one JSON object per line.
Chat requests bind business_id/session_id into the context so every event
logged while handling a message carries them.
"""

import logging
import sys
from typing import Any, Optional

import structlog

from bizagent.config import config

# Provider errors and LLM output can be long; events keep the head only.
LOG_VALUE_MAX_CHARS = 300

QUIET_LOGGERS = ("httpx", "httpcore", "openai", "celery", "kombu", "urllib3")


def truncate_long_values(logger, method_name, event_dict):
    for key, value in event_dict.items():
        if key != "event" and isinstance(value, str) and len(value) > LOG_VALUE_MAX_CHARS:
            event_dict[key] = value[:LOG_VALUE_MAX_CHARS] + "…"
    return event_dict


def chat_log_context(business_id: Optional[str], session_id: Optional[str] = None):
    """Context manager binding the chat identifiers for the duration of a request."""
    return structlog.contextvars.bound_contextvars(business_id=business_id, session_id=session_id)


def configure_logging(debug: Optional[bool] = None, level: Optional[str] = None) -> None:
    debug = config.DEBUG if debug is None else debug
    level = (level or config.LOG_LEVEL).upper()

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, level, logging.INFO))
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    renderer = structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer(ensure_ascii=False)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            truncate_long_values,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None) -> Any:
    """
    Usage:
        logger = get_logger(__name__)
        logger.info("appointment_created", business_id="b1", appointment_id="a1")
    """
    return structlog.get_logger(name)


configure_logging()

logger = get_logger("bizagent")
