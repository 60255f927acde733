"""
Logging setup shared by the API, the worker and the pipeline services.

Every logger writes INFO and above to stdout, ERROR and above to
error_<date>.log, and everything to the dated file of its log type
(app_<date>.log, worker_<date>.log or pipeline_<date>.log).
"""
import logging
import os
import sys
from datetime import datetime

LOGS_DIR = os.getenv(
    "TENDER_LOGS_DIR",
    os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "logs"),
)
CONSOLE_LEVEL = os.getenv("TENDER_LOG_LEVEL", "INFO").upper()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_TYPES = ("app", "worker", "pipeline")
DEFAULT_LOG_TYPE = "app"

_formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)
_handlers: dict[str, logging.Handler] = {}


def log_file_path(prefix: str) -> str:
    return os.path.join(LOGS_DIR, f"{prefix}_{datetime.now().strftime('%Y%m%d')}.log")


def _file_handler(prefix: str, level: int) -> logging.Handler:
    os.makedirs(LOGS_DIR, exist_ok=True)
    # The file is only created on the first record
    handler = logging.FileHandler(log_file_path(prefix), encoding="utf-8", delay=True)
    handler.setLevel(level)
    handler.setFormatter(_formatter)
    return handler


def _shared_handler(name: str) -> logging.Handler:
    """One handler per destination, reused by every logger that writes there."""
    handler = _handlers.get(name)
    if handler is not None:
        return handler

    if name == "console":
        handler = logging.StreamHandler(sys.stdout)
        level = logging.getLevelName(CONSOLE_LEVEL)
        handler.setLevel(level if isinstance(level, int) else logging.INFO)
        handler.setFormatter(_formatter)
    elif name == "error":
        handler = _file_handler("error", logging.ERROR)
    else:
        handler = _file_handler(name, logging.DEBUG)
    _handlers[name] = handler
    return handler


def setup_logger(name: str, log_type: str = DEFAULT_LOG_TYPE) -> logging.Logger:
    """
    Logger `name` wired to the console, the error file and its type's file.

    Args:
        name: Logger name (usually __name__ of the calling module)
        log_type: "app", "worker" or "pipeline"; anything else logs as "app"
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    if log_type not in LOG_TYPES:
        log_type = DEFAULT_LOG_TYPE

    logger.setLevel(logging.DEBUG)
    for destination in ("console", "error", log_type):
        logger.addHandler(_shared_handler(destination))
    return logger


def get_logger(name: str, log_type: str = DEFAULT_LOG_TYPE) -> logging.Logger:
    """Get or create a logger - convenience wrapper"""
    return setup_logger(name, log_type)
