"""Logging setup for LoopChannel with console and rotating file output"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

from loopchannel.config import LoggingConfig


def setup_logging(
    log_level: str = "INFO",
    log_file: str | None = None,
    log_to_console: bool = True,
    log_to_file: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    log_format: str | None = None,
) -> logging.Logger:
    """
    Set up logging for the control process.

    This configures logging to write to:
    - Console (stdout)
    - File with rotation

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (absolute or relative)
        log_to_console: Whether to log to console
        log_to_file: Whether to log to file
        max_bytes: Maximum size of log file before rotation
        backup_count: Number of rotated files to keep
        log_format: Custom log format string for the file handler

    Returns:
        Configured root logger
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear any existing handlers to avoid duplicates
    root_logger.handlers.clear()

    detailed_formatter = logging.Formatter(
        log_format or "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S"
    )

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

    log_file_path: Optional[Path] = None
    if log_to_file and log_file:
        log_file_path = Path(log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(detailed_formatter)
        root_logger.addHandler(file_handler)

    root_logger.debug(
        f"Logging initialized - level={log_level}, "
        f"file={log_file_path if log_file_path else 'disabled'}"
    )

    return root_logger


def setup_from_config(logging_config: LoggingConfig, log_to_file: bool = True) -> logging.Logger:
    """Configure logging from the ``logging`` config section."""
    return setup_logging(
        log_level=logging_config.level,
        log_file=logging_config.file,
        log_to_file=log_to_file and logging_config.to_file,
        max_bytes=logging_config.max_bytes,
        backup_count=logging_config.backup_count,
        log_format=logging_config.format,
    )
