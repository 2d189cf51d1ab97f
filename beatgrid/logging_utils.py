from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from pathlib import Path

_LOGGER = logging.getLogger("beatgrid.logging")
_LOG_DIR_ENV = "BEATGRID_LOG_DIR"
_DEBUG_ENV = "BEATGRID_DEBUG"
_LOG_FILE = "beatgrid.log"
_logging_configured = False
_CONSOLE_FORMAT = "%(level_prefix)s %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_LEVEL_PREFIXES = {
    logging.DEBUG: "🐛",
    logging.INFO: "🎛️",
    logging.WARNING: "⚠️",
    logging.ERROR: "❌",
    logging.CRITICAL: "💥",
}


class _ConsoleEmojiFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.level_prefix = _LEVEL_PREFIXES.get(record.levelno, "")
        return super().format(record)


def get_log_dir() -> Path:
    configured = os.environ.get(_LOG_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".cache" / "beatgrid" / "logs"


def get_log_path() -> Path:
    return get_log_dir() / _LOG_FILE


def debug_enabled() -> bool:
    return bool(os.environ.get(_DEBUG_ENV))


def configure_logging(*, force: bool = False, log_to_file: bool | None = None) -> None:
    """Attach console and file handlers to the ``beatgrid`` logger.

    File logging is on by default only when ``BEATGRID_LOG_DIR`` is set.
    """
    global _logging_configured
    if _logging_configured and not force:
        return

    logger = logging.getLogger("beatgrid")
    logger.setLevel(logging.DEBUG)

    if force:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

    if force or not logging.getLogger().handlers:
        console_handler = logging.StreamHandler(stream=sys.__stderr__)
        console_handler.setLevel(logging.DEBUG if debug_enabled() else logging.INFO)
        console_handler.setFormatter(_ConsoleEmojiFormatter(_CONSOLE_FORMAT))
        logger.addHandler(console_handler)

    if log_to_file is None:
        log_to_file = bool(os.environ.get(_LOG_DIR_ENV))
    if log_to_file:
        try:
            log_dir = get_log_dir()
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(get_log_path(), encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATE_FORMAT))
            logger.addHandler(file_handler)
        except Exception as exc:
            _LOGGER.warning("Failed to configure file logging: %s", exc, exc_info=True)

    # Test harness handlers (caplog) still see records.
    logger.propagate = True
    _logging_configured = True


def _file_log_target() -> Path | None:
    for handler in logging.getLogger("beatgrid").handlers:
        if isinstance(handler, logging.FileHandler):
            return Path(handler.baseFilename)
    if os.environ.get(_LOG_DIR_ENV):
        return get_log_path()
    return None


def log_exception(context: str, exc: BaseException) -> Path | None:
    """Append ``exc`` with its traceback to the log file.

    Does nothing (returns ``None``) unless file logging is configured or
    ``BEATGRID_LOG_DIR`` is set.
    """
    path = _file_log_target()
    if path is None:
        return None
    stamp = datetime.now().strftime(_FILE_DATE_FORMAT)
    details = logging.Formatter().formatException((type(exc), exc, exc.__traceback__))
    entry = f"{stamp} [{context}] {type(exc).__name__}: {exc}\n{details}\n\n"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(entry)
    except OSError as log_exc:
        _LOGGER.warning("Failed to write log file %s: %s", path, log_exc, exc_info=True)
        return None
    return path
