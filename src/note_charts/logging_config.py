"""
Centralized logging configuration.

Configure once at the host entry point, not per query.
"""

import logging
import sys

import structlog


def configure_logging(level: int | str = logging.INFO) -> None:
    """
    Configure stdlib logging and route structlog through it.

    Idempotent: if the root logger already has handlers, nothing is changed.
    """
    root_logger = logging.getLogger()

    if root_logger.handlers:
        return

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.KeyValueRenderer(key_order=["event"]),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.getLogger("note_charts.core.query_engine").setLevel(level)
    logging.getLogger("note_charts.analysis").setLevel(level)
