"""Loguru sinks for the duplicate engine."""

import os
import sys
from pathlib import Path

from loguru import logger

from crm.config import settings

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> <level>{level: <7}</level> "
    "<cyan>{name}</cyan> {message}"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} {level: <7} {name}:{line} {message}"


def setup_logging(
    level: str | None = None,
    log_file: Path | None = None,
    serialize: bool | None = None,
) -> None:
    """
    Replace loguru's default sink with the engine's console sink, plus an
    optional rotating file sink.

    Args:
        level: Minimum level; defaults to LOG_LEVEL
        log_file: File path; defaults to LOG_FILE (no file sink when unset)
        serialize: Write the file sink as JSON lines; defaults to LOG_SERIALIZE
    """
    level = (level or settings.logging.level).upper()
    log_file = log_file or settings.logging.file
    serialize = settings.logging.serialize if serialize is None else serialize

    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, colorize=True)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=level,
            format=FILE_FORMAT,
            rotation=settings.logging.rotation,
            retention=settings.logging.retention,
            serialize=serialize,
            enqueue=True,
        )


if os.environ.get("DISABLE_LOGGING") != "1":
    setup_logging()
