"""
Logging setup.

Console output goes through rich; the operational log file is rotated
by size so a long-lived cron job never fills the disk.
"""

import logging
from logging.handlers import RotatingFileHandler

from rich.console import Console
from rich.logging import RichHandler

from nas_sync.config import Config

FILE_FORMAT = "[%(asctime)s] [%(levelname)s] [PID:%(process)d] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Attribute marking handlers installed here, so repeated setup replaces them.
_MARKER = "_nas_sync_handler"


def setup_logging(config: Config) -> logging.Logger:
    """
    Configure the nas_sync logger for a run.

    Args:
        config: Supplies the log file, rotation limits and debug flag.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger("nas_sync")
    logger.setLevel(logging.DEBUG if config.debug else logging.INFO)

    for handler in list(logger.handlers):
        if getattr(handler, _MARKER, False):
            logger.removeHandler(handler)
            handler.close()

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_path=config.debug,
        rich_tracebacks=True,
    )
    setattr(console_handler, _MARKER, True)
    logger.addHandler(console_handler)

    try:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.log_file,
            maxBytes=config.max_log_size_mb * 1024 * 1024,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        logger.warning("Cannot write log file %s: %s (console only)", config.log_file, e)
    else:
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
        setattr(file_handler, _MARKER, True)
        logger.addHandler(file_handler)

    return logger
