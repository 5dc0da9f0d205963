"""Loguru configuration for moveplan.

Every component logs through ``from loguru import logger`` with a bracketed
tag (``[RECURRENCE]``, ``[PLANNER]``, ...). Only entry points call
``setup_logger``; library code never configures sinks.
"""

import logging
import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool")


def setup_logger(
    level: str = "INFO",
    log_file: str | None = None,
    json_logs: bool = False,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """Replace all loguru sinks with a stderr sink and an optional rotating file.

    Args:
        level: Minimum level for both sinks
        log_file: Optional log file path; parent directories are created
        json_logs: Emit one JSON object per line on stderr instead of coloured text
        rotation: File rotation trigger (e.g. "10 MB", "1 day")
        retention: How long rotated files are kept
    """
    logger.remove()

    if json_logs:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            level=level,
            format=FILE_FORMAT,
            rotation=rotation,
            retention=retention,
            compression="zip",
            backtrace=True,
            diagnose=False,
        )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug(f"[LOGGER] level={level} file={log_file or '-'} json={json_logs}")
