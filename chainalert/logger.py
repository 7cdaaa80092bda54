"""
Logging configuration for chainalert

Provides:
- Console and file logging
- Log rotation
- Configurable log levels
- Routing of standard library loggers (uvicorn, web3) into loguru
"""

import logging
import sys
from typing import Any, Dict

from loguru import logger

LOG_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"

# Replace the default handler with a basic console handler
logger.remove()
logger.add(sys.stderr, format=LOG_FORMAT, level="INFO", enqueue=True)


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def intercept_std_logging(level: str = "INFO") -> None:
    """Route the root logger and the uvicorn loggers through loguru"""
    logging.basicConfig(handlers=[InterceptHandler()], level=level, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "web3"):
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False


def setup_logger(config: Dict[str, Any] = None) -> None:
    """
    Configure logging

    Args:
        config: Logging configuration dictionary containing:
            - level: Log level
            - file: Log file path
            - rotation: Log rotation setting
            - retention: Log retention period
    """
    if not config:
        intercept_std_logging()
        return  # keep the default console output

    level = config.get("level", "INFO")

    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level, enqueue=True)

    if log_file := config.get("file"):
        logger.add(
            log_file,
            format=LOG_FORMAT,
            level=level,
            rotation=config.get("rotation", "500 MB"),
            retention=config.get("retention", "7 days"),
            compression="zip",
            enqueue=True,
        )

    intercept_std_logging(level)
