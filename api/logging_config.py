"""
Logging configuration for the Job Multi-Poster.
Provides structured logging with proper formatting.

Handlers are installed on the root logger so every module logger
(logging.getLogger(__name__)) ends up in the console and the log files.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Log directory
LOG_DIR = Path(os.getenv("LOG_DIR", Path(__file__).parent.parent / "logs"))

# Log level from environment
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

APP_LOGGER_NAME = "multiposter"


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        # Work on a copy so file handlers don't get escape codes
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(level: Optional[str] = None, log_dir: Optional[Path] = None, log_files: bool = True) -> logging.Logger:
    """
    Install console and rotating file handlers on the root logger.

    Args:
        level: Log level name (default: LOG_LEVEL env, INFO)
        log_dir: Directory for multiposter.log / multiposter_errors.log
        log_files: Disable to log to the console only

    Returns:
        The application logger
    """
    root = logging.getLogger()
    app_logger = logging.getLogger(APP_LOGGER_NAME)

    # Avoid duplicate handlers
    if getattr(root, "_multiposter_configured", False):
        return app_logger

    level_name = (level or LOG_LEVEL).upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    # Console handler with colors
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(ColoredFormatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root.addHandler(console_handler)

    if log_files:
        directory = Path(log_dir or LOG_DIR)
        directory.mkdir(parents=True, exist_ok=True)
        file_format = logging.Formatter(
            '%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        # File handler with rotation
        file_handler = RotatingFileHandler(
            directory / f"{APP_LOGGER_NAME}.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(file_format)
        root.addHandler(file_handler)

        # Error file handler (errors and above)
        error_handler = RotatingFileHandler(
            directory / f"{APP_LOGGER_NAME}_errors.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_format)
        root.addHandler(error_handler)

    # Third-party chatter
    for noisy in ("aiosqlite", "asyncio", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    root._multiposter_configured = True
    return app_logger


logger = logging.getLogger(APP_LOGGER_NAME)


def log_request(method: str, path: str, status_code: int = None, duration_ms: float = None):
    """Log an HTTP request."""
    logger.info(f"HTTP {method} {path} -> {status_code} ({duration_ms:.2f}ms)" if duration_ms else f"HTTP {method} {path}")


def log_posting(job_id: str, board: str, status: str, error: str = None, external_url: str = None):
    """Log a posting status change."""
    if error and status == "failed":
        logger.error(f"Posting job {job_id} -> {board} failed: {error}")
    elif external_url:
        logger.info(f"Posting job {job_id} -> {board}: {status} ({external_url})")
    else:
        logger.info(f"Posting job {job_id} -> {board}: {status}")


def log_ai_request(service: str, operation: str, tokens: int = None, cost: float = None, error: str = None):
    """Log an AI service request."""
    if error:
        logger.error(f"AI {service}.{operation} failed: {error}")
    else:
        logger.info(f"AI {service}.{operation} completed (tokens: {tokens}, cost: ${cost:.4f})" if cost else f"AI {service}.{operation} completed")
