"""
Logging configuration: coloured console plus an optional rotating file
"""

import logging
import os
from logging.handlers import RotatingFileHandler

from .config import LoggingConfig

INFO_FORMAT = "%(asctime)-15s %(message)s"
DETAIL_FORMAT = "%(asctime)-15s {start}%(levelname)-8s %(name)s:%(lineno)-5s{end}: %(message)s"

LEVEL_COLORS = {
    logging.DEBUG: 36,
    logging.WARNING: 33,
    logging.ERROR: 31,
    logging.CRITICAL: 31,
}

# Libraries that log every request at INFO
NOISY_LOGGERS = ("asyncua", "influxdb_client")


class LevelFormatter(logging.Formatter):
    """INFO lines carry only the message; other levels add level and origin."""

    def __init__(self, color: bool):
        super().__init__(INFO_FORMAT)
        self.color = color
        self._formats = {}
        for level, code in LEVEL_COLORS.items():
            start, end = (f"\033[{code}m", "\033[0m") if color else ("", "")
            self._formats[level] = DETAIL_FORMAT.format(start=start, end=end)

    def format(self, record):
        if record.levelno == logging.INFO:
            self._style._fmt = INFO_FORMAT
        else:
            self._style._fmt = self._formats.get(
                record.levelno, DETAIL_FORMAT.format(start="", end="")
            )
        return super().format(record)


def _file_handler(config: LoggingConfig) -> RotatingFileHandler:
    log_dir = os.path.dirname(config.file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    handler = RotatingFileHandler(
        config.file,
        maxBytes=config.max_bytes,
        backupCount=config.backup_count,
    )
    handler.setFormatter(LevelFormatter(color=False))
    return handler


def setup_logging(config: LoggingConfig) -> logging.Logger:
    """
    Configure the root logger from the logging section

    A log file that cannot be opened is reported and skipped; console
    logging always stays on.
    """
    log = logging.getLogger()
    log.handlers.clear()
    log.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    console = logging.StreamHandler()
    console.setFormatter(LevelFormatter(color=True))
    log.addHandler(console)

    if config.file:
        try:
            log.addHandler(_file_handler(config))
        except OSError as e:
            log.warning(f"Could not enable file logging: {e}")
        else:
            log.info(f"File logging enabled: {config.file}")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log
