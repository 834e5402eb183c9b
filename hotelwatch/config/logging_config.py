# hotelwatch/config/logging_config.py

"""Logging setup for hotelwatch runs.

Every CLI invocation writes a DEBUG log to ``logs/hotelwatch_<stamp>.log``.
Observation and alert code never raises to its callers, so that file is
where dropped prices, storage errors and failed deliveries show up.
The console only gets ``Settings.CONSOLE_LOG_LEVEL`` and above, unless
``verbose`` is set.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from hotelwatch.config.settings import Settings

_FILE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | "
    "%(message)s"
)
_CONSOLE_FORMAT = "%(levelname)-8s %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _console_level(verbose: bool) -> int:
    if verbose:
        return logging.INFO
    level = logging.getLevelName(Settings.CONSOLE_LOG_LEVEL.upper())
    return level if isinstance(level, int) else logging.WARNING


def _active_log_file(logger: logging.Logger) -> Path | None:
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler):
            return Path(handler.baseFilename)
    return None


def setup_logging(verbose: bool = False) -> Path:
    """Attach the run file and console handlers to the ``hotelwatch`` logger.

    Safe to call more than once: later calls keep the existing handlers
    and return the file already in use.
    """
    project_logger = logging.getLogger("hotelwatch")
    project_logger.setLevel(logging.DEBUG)

    existing = _active_log_file(project_logger)
    if existing is not None:
        return existing

    Settings.LOGS_DIR.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = Settings.LOGS_DIR / f"hotelwatch_{stamp}.log"

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, _DATE_FORMAT))
    project_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(_console_level(verbose))
    console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    project_logger.addHandler(console_handler)

    project_logger.debug("Run log opened at %s", log_file)
    return log_file
