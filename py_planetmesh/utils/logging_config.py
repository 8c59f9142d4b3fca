"""
Logging setup for mesh generation.

All modules log through ``structlog.get_logger()``; this module wires
structlog onto the standard library logger so levels and handlers are
controlled in one place.
"""

import logging
import sys
from typing import Optional

import structlog

from ..config import MeshSettings, get_settings


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None,
                      settings: Optional[MeshSettings] = None) -> None:
    """
    Configure structlog for the process.

    Args:
        log_level: Standard logging level name; settings.log_level when omitted
        log_format: "json" for machine-readable output, "console" for humans;
            settings.log_format when omitted
        settings: Source of the defaults; the process-wide settings when omitted
    """
    settings = settings or get_settings()
    log_level = log_level or settings.log_level
    log_format = log_format or settings.log_format

    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger().setLevel(level)

    if log_format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
