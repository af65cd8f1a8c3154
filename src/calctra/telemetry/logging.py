"""Structured logging for the market core.

All operational logging goes through structlog on top of the stdlib
logging tree. Modules bind a named logger once:

    logger = structlog.get_logger("calctra.matching")
    logger.info("match_committed", request_id=3, resource_id=7)

The event log (``calctra.persistence.event_log``) remains the audit
record; these logs are for operators.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

import structlog

from calctra.policy.resolver import LoggingConfig


def setup_logging(config: Optional[LoggingConfig] = None, deployment: str = "") -> None:
    """Configure structlog and the root handler.

    ``deployment`` is bound into every entry when given, so logs from
    several market instances sharing a sink can be told apart.
    """
    config = config or LoggingConfig()

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: Any
    if config.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    structlog.contextvars.clear_contextvars()
    if deployment:
        structlog.contextvars.bind_contextvars(deployment=deployment)
