from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

LOGGER_NAME = "compass"
LOG_FILE = "compass.log"

_active_session: Optional[int] = None


class SessionFilter(logging.Filter):
    """Stamps each record with the active sensing session ('-' between sessions)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session = "-" if _active_session is None else str(_active_session)
        return True


def set_log_session(session: Optional[int]) -> None:
    """Tag subsequent log lines with this session number; None clears the tag."""
    global _active_session
    _active_session = session


def log_path(log_dir: str | None = None) -> str:
    return os.path.join(log_dir or os.environ.get("LOG_DIR", "logs"), LOG_FILE)


def init_logging(log_dir: str | None = None, level: str | int = "INFO") -> logging.Logger:
    """Set up the 'compass' logger once per process.

    Lines go to <log_dir>/compass.log (rotated at 5 MB, five backups) and to
    the console, each tagged with the session that produced it:

        2026-10-18 09:12:03 | INFO | compass | s=2 | session_start | ...

    log_dir defaults to $LOG_DIR, then ./logs.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    path = log_path(log_dir)
    os.makedirs(os.path.dirname(path), exist_ok=True)

    fmt = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | s=%(session)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    session_filter = SessionFilter()
    handlers = [
        RotatingFileHandler(path, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"),
        logging.StreamHandler(),
    ]
    for handler in handlers:
        handler.setFormatter(fmt)
        handler.setLevel(level)
        # on the handler so records from compass.* children get stamped too
        handler.addFilter(session_filter)
        logger.addHandler(handler)
    logger.setLevel(level)

    logger.debug("Logging initialized at level %s; file=%s", level, path)
    return logger


def get_logger(component: str) -> logging.Logger:
    """Child logger under the app logger, e.g. 'compass.stabilizer'."""
    return logging.getLogger(f"{LOGGER_NAME}.{component}")
