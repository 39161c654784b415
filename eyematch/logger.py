"""
EyeMatch Logging System
Provides structured logging to separate files with automatic rotation.

Log Files:
- capture.log: Capture sessions (start, per-sample quality, merge, cancel)
- biometric.log: Biometric operations (enroll, verify, identify results)
- error.log: Application errors and exceptions

Templates and raw scan payloads are never written to the logs; only ids,
scores and qualities.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Dict, Any

from eyematch.config import LOG_DIR, LOG_MAX_BYTES, LOG_BACKUP_COUNT, VERBOSE


# Ensure log directory exists
LOG_DIR.mkdir(parents=True, exist_ok=True)


# Log file paths
CAPTURE_LOG = LOG_DIR / "capture.log"
BIOMETRIC_LOG = LOG_DIR / "biometric.log"
ERROR_LOG = LOG_DIR / "error.log"


# Log format
DETAILED_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def _create_rotating_handler(
    log_file: Path,
    max_bytes: int = LOG_MAX_BYTES,
    backup_count: int = LOG_BACKUP_COUNT,
    formatter_string: Optional[str] = None
) -> RotatingFileHandler:
    """
    Create a rotating file handler.

    Args:
        log_file: Path to the log file
        max_bytes: Max file size before rotation (default 10MB)
        backup_count: Number of backup files to keep (default 5)
        formatter_string: Log format string (default DETAILED_FORMAT)

    Returns:
        Configured RotatingFileHandler
    """
    handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )

    formatter = logging.Formatter(formatter_string or DETAILED_FORMAT)
    handler.setFormatter(formatter)

    return handler


def _get_logger(name: str, log_file: Path, level: int = logging.INFO) -> logging.Logger:
    """
    Get or create a logger with rotating file handler.

    Args:
        name: Logger name
        log_file: Path to log file
        level: Logging level (default INFO)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    logger.setLevel(level)
    logger.propagate = False

    logger.addHandler(_create_rotating_handler(log_file))

    if VERBOSE:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(DETAILED_FORMAT))
        logger.addHandler(console)

    return logger


# Create specialized loggers
capture_logger = _get_logger("eyematch.capture", CAPTURE_LOG)
biometric_logger = _get_logger("eyematch.biometric", BIOMETRIC_LOG)
error_logger = _get_logger("eyematch.error", ERROR_LOG, level=logging.ERROR)


def _format_details(details: Optional[Dict[str, Any]]) -> str:
    if not details:
        return ""
    detail_parts = [f"{k}={v}" for k, v in details.items()]
    return f" - {', '.join(detail_parts)}"


# Convenience functions

def log_capture(
    event: str,
    details: Optional[Dict[str, Any]] = None
):
    """
    Log capture session event.

    Args:
        event: Event type (START, SAMPLE, MERGED, CANCELLED, FAILED)
        details: Additional details dict (sample index, quality, etc.)
    """
    capture_logger.info(f"CAPTURE {event}{_format_details(details)}")


def log_biometric(
    operation: str,
    user_id: Optional[str],
    result: str,
    details: Optional[Dict[str, Any]] = None,
    performed_by: Optional[str] = None
):
    """
    Log biometric operation.

    Args:
        operation: Operation type (ENROLL, VERIFY, IDENTIFY, REMOVE)
        user_id: Target user ID (for enroll/verify) or None (for identify)
        result: Operation result (SUCCESS, MATCH, NO_MATCH, etc.)
        details: Additional details dict (confidence, quality, candidates, etc.)
        performed_by: Who performed the operation
    """
    user_info = f"user_id={user_id}" if user_id else "user_id=None"
    by_info = f" by={performed_by}" if performed_by else ""

    biometric_logger.info(
        f"{operation} {result} - {user_info}{by_info}{_format_details(details)}"
    )


def log_error(
    error: Exception,
    context: Optional[str] = None,
    user: Optional[str] = None
):
    """
    Log application error.

    Args:
        error: Exception object
        context: Context where error occurred (command, function name, etc.)
        user: Target user ID (optional)
    """
    context_info = f" in {context}" if context else ""
    user_info = f" user={user}" if user else ""

    error_logger.error(
        f"{type(error).__name__}: {str(error)}{context_info}{user_info}",
        exc_info=error
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger (writes warnings and above to error.log).

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    return _get_logger(f"eyematch.{name}", ERROR_LOG, level=logging.WARNING)
