"""
Helper Functions and Utilities

This module provides common utility functions used throughout the
sangerconsensus package: logging configuration, output directory handling
and formatting helpers.

Example Usage:
    >>> from sangerconsensus.utils import setup_logging, format_elapsed_time
    >>> setup_logging(log_level="DEBUG", log_file="results/run.log")
    >>> format_elapsed_time(95)
    '1.6m'
"""

from typing import Optional, Union
from pathlib import Path
import logging
import re
import sys

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# Logging Configuration
# ============================================================================

def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Configure logging for sangerconsensus.

    Sets up the package logger with console and optional file output.

    Parameters
    ----------
    log_level : str, optional
        Logging level: DEBUG, INFO, WARNING, ERROR, or CRITICAL (default: INFO)
    log_file : str, optional
        Path to log file. If None, logs only to console (default: None)
    format_string : str, optional
        Custom format string for log messages. If None, uses default format

    Returns
    -------
    logging.Logger
        Configured package logger

    Notes
    -----
    The default format includes timestamp, level, and message:
    [2025-11-03 10:30:45] INFO: Building consensus sequences...
    """
    package_logger = logging.getLogger("sangerconsensus")
    package_logger.setLevel(getattr(logging, log_level.upper()))

    # Remove existing handlers to avoid duplicates
    package_logger.handlers.clear()

    if format_string is None:
        format_string = "[%(asctime)s] %(levelname)s: %(message)s"

    formatter = logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, log_level.upper()))
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

        package_logger.info(f"Logging to file: {log_file}")

    return package_logger


# ============================================================================
# File and Formatting Helpers
# ============================================================================

def create_output_directory(output_dir: Union[str, Path]) -> Path:
    """
    Create output directory if it doesn't exist.

    Raises
    ------
    OSError
        If directory cannot be created
    """
    path = Path(output_dir)

    try:
        path.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Created/verified output directory: {path}")
        return path
    except OSError as e:
        logger.error(f"Failed to create directory {path}: {e}")
        raise


def sanitize_filename(filename: str) -> str:
    """
    Replace characters that are unsafe in file names with underscores.

    Examples
    --------
    >>> sanitize_filename("plate 3/run#2")
    'plate_3_run_2'
    """
    sanitized = re.sub(r'[^\w.-]+', '_', filename.strip())
    return sanitized.strip('_') or "output"


def format_elapsed_time(seconds: float) -> str:
    """
    Format elapsed time in human-readable format.

    Examples
    --------
    >>> format_elapsed_time(45)
    '45s'
    >>> format_elapsed_time(3661)
    '1h 1m'
    """
    if seconds < 60:
        return f"{seconds:.0f}s"

    minutes = seconds / 60
    if minutes < 60:
        return f"{minutes:.1f}m"

    hours = minutes / 60
    return f"{int(hours)}h {int(minutes % 60)}m"
