"""
Logging configuration for ibtools.

Library modules only call get_logger(); handlers are installed once by the
CLI through configure_logging(). Retry loops use should_rate_limit_log() so
a dead gateway does not flood the console with identical lines.
"""

import logging
import logging.handlers
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional, Union

_DEBUG_MODE = False

# Levels applied by get_logger() when the logger name contains the key
_COMPONENT_LOG_LEVELS = {
    "ib.transport": logging.INFO,
    "ib.heartbeat": logging.INFO,
    "ib.supervisor": logging.INFO,
    "ib.error_classifier": logging.WARNING,
}

# Last emission time per rate-limit key
_RATE_LIMIT_STATE: Dict[str, float] = {}

_FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"
_CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_RESET = "\033[0m"
_LEVEL_COLORS = {
    logging.DEBUG: "\033[94m",
    logging.INFO: "\033[92m",
    logging.WARNING: "\033[93m",
    logging.ERROR: "\033[91m",
    logging.CRITICAL: "\033[1;91m",
}


class ColorFormatter(logging.Formatter):
    """Console formatter that colours the level name."""

    def format(self, record):
        color = _LEVEL_COLORS.get(record.levelno)
        if color is None:
            return super().format(record)
        # Format a copy, file handlers share the same record
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{_RESET}"
        return super().format(colored)


def get_logger(name: str) -> logging.Logger:
    """Return the logger for name with its component level applied."""
    logger = logging.getLogger(name)
    level = next(
        (lvl for component, lvl in _COMPONENT_LOG_LEVELS.items() if component in name),
        None,
    )
    if level is not None:
        logger.setLevel(level)
    return logger


def set_debug_mode(enabled: bool) -> None:
    """Switch the ibtools logger between DEBUG and INFO."""
    global _DEBUG_MODE
    if enabled == _DEBUG_MODE:
        return
    _DEBUG_MODE = enabled
    package_logger = logging.getLogger("ibtools")
    package_logger.setLevel(logging.DEBUG if enabled else logging.INFO)
    package_logger.info(f"Debug mode {'enabled' if enabled else 'disabled'}")


def is_debug_mode() -> bool:
    return _DEBUG_MODE


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    max_file_size_mb: int = 10,
    backup_count: int = 5,
    config: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Install the console handler and, when log_dir is given, a rotating file.

    Args:
        log_dir: Directory for ibtools.log; console only when omitted
        console_level: Level of the stderr handler
        file_level: Level of the file handler
        max_file_size_mb: Size at which the log file rotates
        backup_count: Rotated files to keep
        config: Optional overrides: console_format, file_format, debug_mode
    """
    config = config or {}

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    # Reconfiguring replaces handlers instead of stacking them
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(
        ColorFormatter(config.get("console_format", _CONSOLE_FORMAT))
    )
    root_logger.addHandler(console_handler)

    destination = "console only"
    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_path / "ibtools.log",
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(
            logging.Formatter(config.get("file_format", _FILE_FORMAT))
        )
        root_logger.addHandler(file_handler)
        destination = f"files in {log_path}"

    logging.getLogger("ibtools").setLevel(
        logging.DEBUG if is_debug_mode() else logging.INFO
    )
    set_debug_mode(config.get("debug_mode", is_debug_mode()))
    logging.getLogger("ibtools").debug(
        f"Logging configured (console {logging.getLevelName(console_level)}, {destination})"
    )


def should_rate_limit_log(key: str, limit_seconds: float = 60) -> bool:
    """
    Return True when a message for key may be logged now.

    The first call for a key always passes; later calls pass once
    limit_seconds have elapsed since the last one that passed.
    """
    now = time.time()
    last = _RATE_LIMIT_STATE.get(key)
    if last is not None and now - last < limit_seconds:
        return False
    _RATE_LIMIT_STATE[key] = now
    return True


def reset_rate_limit_state() -> None:
    """Forget all rate-limit keys (used by tests)."""
    _RATE_LIMIT_STATE.clear()
