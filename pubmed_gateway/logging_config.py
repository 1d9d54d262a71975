"""
Logging configuration for pubmed_gateway.

Console output goes to stderr so that stdout stays free for JSON results.
"""

import logging
import sys
from pathlib import Path
from typing import Optional


def setup_logging(
    verbose: bool = False,
    log_file: Optional[Path] = None,
    file_level: int = logging.DEBUG,
    format_string: Optional[str] = None
) -> logging.Logger:
    """
    Setup logging for the gateway.

    Args:
        verbose: Log DEBUG to the console instead of INFO
        log_file: Path to log file (if None, only console logging)
        file_level: Logging level for file output
        format_string: Custom format string (if None, uses default)

    Returns:
        Configured package logger
    """
    logger = logging.getLogger('pubmed_gateway')
    logger.setLevel(logging.DEBUG)  # Capture everything, handlers filter

    # Remove existing handlers
    logger.handlers.clear()

    if format_string is None:
        format_string = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    formatter = logging.Formatter(format_string, datefmt='%Y-%m-%d %H:%M:%S')

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(file_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        logger.info(f"Logging to file: {log_file}")

    return logger
