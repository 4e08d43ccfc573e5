"""Logging configuration using loguru."""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path

from loguru import logger


CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<magenta>{extra[correlation_id]}</magenta> | <cyan>{message}</cyan>"
)

# stdlib loggers from the server stack that should end up in loguru
INTERCEPTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")


class InterceptHandler(logging.Handler):
    """Forward standard logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where the logged message originated
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(
    level: str = "INFO",
    log_dir: str | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> Path | None:
    """Configure loguru sinks for the service.

    Args:
        level: Minimum level for every sink.
        log_dir: Directory for a JSON log file. No file sink when ``None``.
        rotation: Log file rotation size.
        retention: Log file retention period.

    Returns:
        Path of the log file, or ``None`` if file logging is disabled.
    """
    logger.remove()
    logger.configure(extra={"correlation_id": "-"})
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)

    log_file_path: Path | None = None
    if log_dir:
        log_path = Path(log_dir).expanduser()
        log_path.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        log_file_path = log_path / f"pdfa_service_{timestamp}.log"
        logger.add(
            log_file_path,
            level=level,
            rotation=rotation,
            retention=retention,
            serialize=True,
        )

    intercept_handler = InterceptHandler()
    for logger_name in INTERCEPTED_LOGGERS:
        stdlib_logger = logging.getLogger(logger_name)
        stdlib_logger.handlers.clear()
        stdlib_logger.addHandler(intercept_handler)
        stdlib_logger.propagate = False

    return log_file_path
