"""
Logging for the dump agent: coloured console output via rich plus a
daily rotated log file.

Log messages routinely carry text the agent does not control (mysqldump
output, table names, Telegram response bodies), so the console handler
renders messages literally. Rich markup is off; "[klinik_apps]" stays
"[klinik_apps]".
"""

import logging
import logging.handlers
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from .config import Settings

FILE_FORMAT = "%(asctime)s - %(levelname)s - %(filename)s:%(lineno)d in %(funcName)s() - %(message)s"

# Third-party loggers that would otherwise print request URLs with the bot token
QUIET_LOGGERS = ("httpx", "httpcore")


def build_console_handler(settings: Settings, console: Optional[Console] = None) -> RichHandler:
    handler = RichHandler(
        console=console or Console(width=120),
        show_path=settings.log_level.upper() == "DEBUG",
        markup=False,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
    )
    handler.setLevel(settings.log_level)
    return handler


def build_file_handler(settings: Settings) -> logging.Handler:
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=settings.log_file_path,
        when="midnight",
        backupCount=settings.log_retention_days,
        encoding="utf-8",
    )
    handler.setLevel(settings.log_level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def setup_logging(settings: Settings, console: Optional[Console] = None) -> None:
    """Install the console and file handlers on the root logger, replacing any present."""
    settings.log_directory.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        # A previous setup_logging call leaves an open log file behind
        if isinstance(handler, logging.FileHandler):
            handler.close()

    root_logger.addHandler(build_console_handler(settings, console))
    root_logger.addHandler(build_file_handler(settings))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(
        f"Logging initialized - file: {settings.log_file_path}, "
        f"level: {settings.log_level}, retention: {settings.log_retention_days} days"
    )
