"""
NYC Spatial Joins - Logging Configuration

One stdout handler (JSON in production) plus an optional daily file under
LOG_DIR. Module loggers created with get_logger(__name__) inherit the
handlers through the root logger.
"""

import logging
import os
import sys
from datetime import datetime
from typing import List, Optional

from pythonjsonlogger import jsonlogger

from config.settings import get_settings

settings = get_settings()

JSON_FIELDS = "%(asctime)s %(name)s %(levelname)s %(module)s %(funcName)s %(message)s"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# SQLAlchemy logs every statement at INFO once echo is on
SQL_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool")


def _formatter() -> logging.Formatter:
    if settings.ENVIRONMENT == "production":
        return jsonlogger.JsonFormatter(fmt=JSON_FIELDS, datefmt="%Y-%m-%dT%H:%M:%S")
    return logging.Formatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def log_file_path(name: str, day: Optional[datetime] = None) -> Optional[str]:
    """Daily log file for a logger name, or None when file logging is off."""
    if not settings.LOG_DIR:
        return None
    day = day or datetime.now()
    filename = f"{name.replace('.', '_')}_{day.strftime('%Y%m%d')}.log"
    return os.path.join(settings.LOG_DIR, filename)


def _handlers(name: str) -> List[logging.Handler]:
    formatter = _formatter()

    stream = logging.StreamHandler(sys.stdout)
    stream.set_name(f"{name}.stdout")
    stream.setFormatter(formatter)
    handlers: List[logging.Handler] = [stream]

    path = log_file_path(name)
    if path:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.set_name(f"{name}.file")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    return handlers


def setup_logging(name: str = "spatial_joins") -> logging.Logger:
    """
    Configure logging for an entry point (the CLI or the API).

    Calling it again replaces the handlers instead of stacking them.

    Args:
        name: Logger name, also used for the log file name

    Returns:
        Configured logger instance
    """
    level = getattr(logging, settings.LOG_LEVEL.upper())
    handlers = _handlers(name)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers = list(handlers)
    logger.propagate = False

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = list(handlers)

    sql_level = logging.INFO if settings.DEBUG else logging.WARNING
    for sql_logger in SQL_LOGGERS:
        logging.getLogger(sql_logger).setLevel(sql_level)

    return logger


def get_logger(module_name: str) -> logging.Logger:
    """Logger for a module; pass __name__."""
    return logging.getLogger(module_name)
