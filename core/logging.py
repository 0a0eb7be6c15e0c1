"""
Collector Logging

One stdlib logging tree, rooted at "coin_collector", configured once when this
module is first imported. Every other module asks for a child logger with
get_logger(__name__); the CLI's human-readable output is the only place that
prints directly.

Output:
    - stdout, always
    - a size-rotated file as well when LOG_FILE is set (e.g., logs/collector.log)

Levels as the collector uses them:
    DEBUG    - request/response traces, every stored observation
    INFO     - scheduler start/stop, batch summaries, startup configuration
    WARNING  - failed attempts that will be retried, duplicate start() calls
    ERROR    - failed collections and failed log writes (the process keeps running)
    CRITICAL - the database is unreachable at startup

Usage:
    from core.logging import logger, get_logger

    log = get_logger(__name__)      # "coin_collector.services.collector"
    log.info("BTC collection scheduled")
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from core.config import settings

ROOT_LOGGER_NAME = "coin_collector"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure the root handlers and return the application logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL (unknown names mean INFO)
        log_file: Also write to this file, rotated at max_bytes
        max_bytes: Rotation size for log_file
        backup_count: Rotated files to keep

    Returns:
        The "coin_collector" logger
    """
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        )

    # force=True replaces handlers installed by an earlier call (or by uvicorn)
    logging.basicConfig(
        level=_level(log_level),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=handlers,
        force=True
    )

    app_logger = logging.getLogger(ROOT_LOGGER_NAME)
    app_logger.setLevel(_level(log_level))
    return app_logger


def get_logger(name: str) -> logging.Logger:
    """Child logger of the application namespace, e.g. get_logger(__name__)."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def set_log_level(level: str) -> None:
    """Change the application and root log level at runtime (CLI --log-level)."""
    logger.setLevel(_level(level))
    logging.getLogger().setLevel(_level(level))


# ============================================
# API Trace Helpers
# ============================================

def log_api_request(exchange: str, endpoint: str, params: dict = None) -> None:
    """
    Trace an outgoing request at DEBUG.

    Example:
        >>> log_api_request("bithumb", "/public/orderbook/BTC_KRW", {"count": 5})
        [DEBUG] API Request: bithumb /public/orderbook/BTC_KRW | Params: {'count': 5}
    """
    suffix = f" | Params: {params}" if params else ""
    logger.debug(f"API Request: {exchange} {endpoint}{suffix}")


def log_api_response(exchange: str, endpoint: str, status: int, response_time: float = None) -> None:
    """
    Trace a response (HTTP status and elapsed seconds) at DEBUG.

    Example:
        >>> log_api_response("bithumb", "/public/ticker/BTC_KRW", 200, 0.342)
        [DEBUG] API Response: bithumb /public/ticker/BTC_KRW | Status: 200 | Time: 0.342s
    """
    suffix = f" | Time: {response_time:.3f}s" if response_time is not None else ""
    logger.debug(f"API Response: {exchange} {endpoint} | Status: {status}{suffix}")


# ============================================
# Application Logger
# ============================================

logger = setup_logging(
    log_level=settings.log_level,
    log_file=settings.log_file or None,
    max_bytes=settings.log_max_bytes,
    backup_count=settings.log_backup_count
)
