"""
Logging configuration for the Smart Farm Advisory API.

Console output follows ``LOG_LEVEL``. Two rotating files under ``LOG_DIR``
keep INFO and above (``agriadvisor.log``) and errors only
(``agriadvisor_errors.log``).
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from agriadvisor.config import settings

MAX_LOG_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_BACKUPS = 5

# Libraries that log every request at INFO
NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def build_formatter(debug: bool) -> logging.Formatter:
    if debug:
        return logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
    # Pipe-separated format for log shippers
    return logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    level: Optional[str] = None,
    log_dir: Optional[Union[str, Path]] = None,
    debug: Optional[bool] = None,
) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        level: Root and console level name; defaults to ``settings.LOG_LEVEL``
        log_dir: Directory for the rotating files; defaults to ``settings.LOG_DIR``
        debug: Use the detailed format; defaults to ``settings.DEBUG``

    Returns:
        The configured root logger
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level_name}")

    directory = Path(log_dir or settings.LOG_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    formatter = build_formatter(settings.DEBUG if debug is None else debug)

    root = logging.getLogger()
    root.setLevel(numeric_level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(numeric_level)
    console.setFormatter(formatter)
    root.addHandler(console)

    root.addHandler(_rotating_handler(directory / "agriadvisor.log", max(numeric_level, logging.INFO), formatter))
    root.addHandler(_rotating_handler(directory / "agriadvisor_errors.log", logging.ERROR, formatter))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info(f"Logging initialized: level={level_name} dir={directory}")
    return root


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)
