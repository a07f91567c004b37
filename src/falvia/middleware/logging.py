"""Structured logging for the rewards engine.

Service modules log through stdlib loggers under the ``falvia`` hierarchy
(``falvia.rewards``, ``falvia.trials``, ``falvia.referrals``, ...); the
feed, socket and middleware code logs structlog events. Both end up in the
same renderer, tagged with the service name and environment.
"""

import logging

import structlog
from structlog.types import EventDict, WrappedLogger

from falvia.config import Settings

SERVICE_NAME = "falvia-rewards"

# Loggers of the rewards engine, each tunable on its own.
ENGINE_LOGGERS = (
    "falvia.accounts",
    "falvia.badges",
    "falvia.ledger",
    "falvia.referrals",
    "falvia.rewards",
    "falvia.trials",
    "falvia.workers",
)


def _service_tagger(environment: str) -> structlog.types.Processor:
    def add_service(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("environment", environment)
        return event_dict

    return add_service


def setup_logging(settings: Settings) -> None:
    """Configure structlog for JSON or console output and set engine log levels."""
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            _service_tagger(settings.environment),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level)
    logging.getLogger("falvia").setLevel(level)
    for name in ENGINE_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if settings.debug else level)
    logging.getLogger("arq").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.DEBUG if settings.debug else logging.WARNING)
