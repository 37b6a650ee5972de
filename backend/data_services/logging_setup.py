"""
Data Services — Logging Configuration
=======================================

What:  Root logging setup plus named component loggers.
How:   setup_logging() configures the root logger once at process start;
       get_logger() hands out loggers under the `data_services` namespace.
Who:   setup_logging() is called by the entry point. get_logger() is passed to
       every discovered component as `context["log"]`, so a service can do
       `self._log = context["log"]("INSERT-SERVICE")`.
"""

import logging
import sys
from typing import Optional

from data_services.config import settings

ROOT_LOGGER_NAME = "data_services"


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    """
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    level_name = level or settings.log_level

    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(component: Optional[str] = None) -> logging.Logger:
    """
    Return the application logger, or a child logger for one component.

    Example:
        get_logger()                  → "data_services"
        get_logger("INSERT-SERVICE")  → "data_services.INSERT-SERVICE"
    """
    if not component:
        return logging.getLogger(ROOT_LOGGER_NAME)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")
