"""
ForgeSR - Logging Setup
========================
Configures loguru sinks for the server and the admin tool.
"""

import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(level: str = "INFO", logs_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Replace loguru's default handler with a console sink and an optional file sink.

    Args:
        level: Console log level
        logs_dir: Directory for rotating log files (None = console only)

    Returns:
        Path of the log file, if one was configured
    """
    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level)

    if logs_dir is None:
        return None

    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = logs_dir / f"forgesr_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    logger.add(
        log_file,
        format=FILE_FORMAT,
        level="DEBUG",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        encoding="utf-8",
    )
    logger.info(f"[Logging] Writing logs to {log_file}")
    return log_file
