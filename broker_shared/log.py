#!/usr/bin/env python3
"""
Broker Logging Configuration

Centralized logging setup shared by the client adapter, the broker server
and the CLI. Console output is coloured when the terminal allows it; a file
handler is added only when a log file is configured.

Usage:
    from broker_shared.log import get_logger

    logger = get_logger(__name__)
    logger.info("Connecting...")
    logger.warning("Dropped frame", extra={"topic": "stock_price", "drop_reason": "not_connected"})
"""

from __future__ import annotations
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional

from broker_shared.frame import Frame


# ========================================
#           LOGGING FORMATTERS
# ========================================

class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output"""

    # ANSI Color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class GenericFormatter(logging.Formatter):
    """Prefixes broker context (topic, connection, drop reason) taken from ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        context = []

        if getattr(record, 'client_id', None):
            context.append(f"client={record.client_id}")
        if getattr(record, 'connection_id', None):
            context.append(f"conn={record.connection_id}")
        if getattr(record, 'topic', None):
            context.append(f"topic={record.topic}")
        if getattr(record, 'drop_reason', None):
            reason = record.drop_reason
            context.append(f"drop={getattr(reason, 'value', reason)}")

        formatted = super().format(record)
        if context:
            return f"[{' '.join(context)}] {formatted}"
        return formatted


# ========================================
#           LOGGING CONFIGURATION
# ========================================

_loggers_configured = set()
_log_file: Optional[Path] = None


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger for the given module.

    Args:
        name: Usually __name__ from the calling module
        level: Override log level ("DEBUG", "INFO", "WARNING", "ERROR")

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Only configure each logger once
    if name not in _loggers_configured:
        _configure_logger(logger, level)
        _loggers_configured.add(name)

    return logger


def _configure_logger(logger: logging.Logger, level: Optional[str] = None) -> None:
    """Configure a logger with appropriate handlers and formatters"""
    logger.setLevel(_get_log_level(level))

    # Module loggers defer to the root logger once it has been configured
    root_logger = logging.getLogger()
    if logger is not root_logger and root_logger.handlers:
        logger.propagate = True
        return

    logger.handlers.clear()
    _add_console_handler(logger, colored=_is_development())
    if _log_file is not None:
        _add_file_handler(logger, _log_file)

    # Prevent duplicate messages from parent loggers
    logger.propagate = False


def _get_log_level(level: Optional[str] = None) -> int:
    """Determine appropriate log level"""
    level = level or os.getenv('BROKER_LOG_LEVEL')
    if level:
        return getattr(logging, level.upper(), logging.INFO)

    return logging.DEBUG if _is_development() else logging.INFO


def _is_development() -> bool:
    """Detect if we're in development mode"""
    return os.getenv('BROKER_ENV', '').lower() in ['dev', 'development']


def _add_console_handler(logger: logging.Logger, colored: bool = True) -> None:
    """Add console handler with appropriate formatter"""

    fmt = '[%(levelname)-8s][%(asctime)s][%(name)-5s]: %(message)s'
    # stdout is left to the CLI's own output
    handler = logging.StreamHandler(sys.stderr)

    if colored and _supports_color():
        formatter: logging.Formatter = ColoredFormatter(fmt=fmt, datefmt='%H:%M:%S')
    else:
        formatter = GenericFormatter(fmt=fmt, datefmt='%Y-%m-%d %H:%M:%S')

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _add_file_handler(logger: logging.Logger, log_file: Path) -> None:
    """Add file handler writing to ``log_file``"""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file)

    formatter = GenericFormatter(
        fmt='%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _supports_color() -> bool:
    """Check if terminal supports color output"""

    if not (hasattr(sys.stderr, "isatty") and sys.stderr.isatty()):
        return False

    if os.getenv("TERM", "") == "dumb":
        return False

    if sys.platform == "win32":
        return (
            os.getenv("ANSICON") is not None
            or os.getenv("WT_SESSION") is not None
            or os.getenv("TERM_PROGRAM") == "vscode"
        )

    return True


# ========================================
#           CONVENIENCE FUNCTIONS
# ========================================

def configure_root_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure root logging for the entire application.
    Call this once at process startup (CLI, server entry point).

    Args:
        level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
        log_file: Optional path of a log file to write alongside the console
    """
    global _log_file
    _log_file = Path(log_file).expanduser() if log_file else None

    root_logger = logging.getLogger()
    _configure_logger(root_logger, level)

    # Loggers created before this call hand their records to the root
    for name in _loggers_configured:
        named = logging.getLogger(name)
        named.handlers.clear()
        named.setLevel(_get_log_level(level))
        named.propagate = True


def log_frame(logger: logging.Logger, level: str, message: str,
              frame: Optional[Frame] = None,
              **context: Any) -> None:
    """
    Log a broker frame with structured context.

    Args:
        logger: Logger instance
        level: Log level ("debug", "info", "warning", "error")
        message: Log message
        frame: Decoded frame for automatic topic extraction
        **context: Additional context fields (connection_id, drop_reason, ...)

    Example:
        log_frame(logger, "warning", "Dropping frame", frame=frame,
                  drop_reason=DropReason.INCOMPLETE_MESSAGE)
    """
    extra_context = {}

    if frame is not None:
        extra_context['topic'] = frame.topic

    extra_context.update(context)

    log_func = getattr(logger, level.lower())
    log_func(message, extra=extra_context)
