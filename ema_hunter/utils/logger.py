"""
Logging setup for EMA Hunter

Console sink for the operator, rotating file sink for the audit trail.
Trade actions go through the custom TRADE level registered by the log stream.
"""

import sys
from typing import Optional

from loguru import logger

from .config import get_config

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logger(level: Optional[str] = None, console: bool = True, log_name: str = "ema_hunter"):
    """
    Replace loguru's default handler with the console and file sinks.

    Args:
        level: Minimum level (default: LOG_LEVEL / logging.level)
        console: Also log to stderr
        log_name: File name stem under logs/

    Returns:
        The configured loguru logger
    """
    config = get_config()
    level = (level or config.log_level).upper()
    log_file = config.logs_dir / f"{log_name}.log"

    handlers = [dict(
        sink=log_file,
        format=FILE_FORMAT,
        level=level,
        rotation="10 MB",
        retention="30 days",
        compression="zip",
        enqueue=True,
    )]
    if console:
        handlers.insert(0, dict(sink=sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True))

    logger.configure(handlers=handlers)
    logger.debug(f"Logging at {level} to {log_file}")
    return logger
