#!/usr/bin/env python3
"""Structured logging system for LayerStore.

This module provides a structured logging system with:
- Log levels mirroring the stdlib (DEBUG, INFO, WARNING, ERROR, CRITICAL)
- Structured context (key-value pairs appended to each message)
- Thread-local context management
- Console and rotating file handlers

Module loggers are children of the ``layerstore`` logger, so a single call to
configure_logging() decides where every component's output goes.

Example:
    >>> logger = get_logger("layerstore.archive")
    >>> logger.info("archive packed", container="layers/00000001.zip", entries=3)
    >>> with logger.add_context(layer_id=4):
    ...     logger.debug("walking staging directory")
"""

import logging
import logging.handlers
import threading
from contextlib import contextmanager
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

ROOT_LOGGER_NAME = "layerstore"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class LogLevel(IntEnum):
    """Log levels matching Python's logging module."""

    DEBUG = logging.DEBUG  # 10
    INFO = logging.INFO  # 20
    WARNING = logging.WARNING  # 30
    ERROR = logging.ERROR  # 40
    CRITICAL = logging.CRITICAL  # 50


def _coerce_level(level: Union[LogLevel, str, int]) -> LogLevel:
    if isinstance(level, str):
        return LogLevel[level.upper()]
    return LogLevel(level)


class Logger:
    """Structured logger with context support.

    Wraps a stdlib logger and renders keyword context as ``key=value`` pairs
    after the message. Context pushed with add_context() is thread-local and
    applies to every logger instance.
    """

    # Thread-local storage for context
    _context_stack = threading.local()

    def __init__(
        self,
        name: str = ROOT_LOGGER_NAME,
        level: Optional[Union[LogLevel, str]] = None,
        handlers: Optional[List[logging.Handler]] = None,
    ):
        """Initialize logger.

        Args:
            name: Logger name for identification
            level: Minimum log level; inherited from the parent when None
            handlers: Handlers replacing any existing ones. When given the
                logger stops propagating to its parent.
        """
        self.name = name
        self.logger = logging.getLogger(name)

        if level is not None:
            self.set_level(level)

        if handlers is not None:
            self.logger.handlers.clear()
            for handler in handlers:
                self.logger.addHandler(handler)
            self.logger.propagate = False

    @staticmethod
    def create_console_handler() -> logging.StreamHandler:
        """Create console handler with the default format."""
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT, datefmt=DATE_FORMAT))
        return handler

    @staticmethod
    def create_file_handler(
        filename: Union[str, Path],
        max_bytes: int = 10 * 1024 * 1024,  # 10MB
        backup_count: int = 5,
    ) -> logging.handlers.RotatingFileHandler:
        """Create rotating file handler.

        Args:
            filename: Path to log file
            max_bytes: Maximum size before rotation
            backup_count: Number of backup files to keep

        Returns:
            Configured rotating file handler
        """
        handler = logging.handlers.RotatingFileHandler(
            filename, maxBytes=max_bytes, backupCount=backup_count
        )
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT, datefmt=DATE_FORMAT))
        return handler

    def set_level(self, level: Union[LogLevel, str]) -> None:
        """Set the minimum log level.

        Args:
            level: New log level (LogLevel or string)
        """
        self.logger.setLevel(_coerce_level(level))

    def get_level(self) -> LogLevel:
        """Get the effective log level."""
        return LogLevel(self.logger.getEffectiveLevel())

    def _get_context(self) -> Dict[str, Any]:
        """Get current thread-local context merged across all levels."""
        if not hasattr(self._context_stack, "stack"):
            self._context_stack.stack = [{}]

        context: Dict[str, Any] = {}
        for ctx in self._context_stack.stack:
            context.update(ctx)
        return context

    def _format_message(self, msg: str, context: Dict[str, Any]) -> str:
        if context:
            ctx_str = " ".join(f"{k}={v}" for k, v in context.items())
            return f"{msg} | {ctx_str}"
        return msg

    @contextmanager
    def add_context(self, **kwargs):
        """Context manager to add temporary context.

        Args:
            **kwargs: Key-value pairs to add to context

        Example:
            >>> with logger.add_context(layer_id=3):
            ...     logger.info("sealing")
        """
        if not hasattr(self._context_stack, "stack"):
            self._context_stack.stack = [{}]

        self._context_stack.stack.append(kwargs)
        try:
            yield
        finally:
            self._context_stack.stack.pop()

    def _log(self, level: int, msg: str, context: Dict[str, Any], **kwargs) -> None:
        if not self.logger.isEnabledFor(level):
            return
        combined_context = self._get_context()
        combined_context.update(context)
        self.logger.log(
            level,
            self._format_message(msg, combined_context),
            extra={"context": combined_context},
            **kwargs,
        )

    def debug(self, msg: str, **context) -> None:
        """Log debug message with context key-value pairs."""
        self._log(logging.DEBUG, msg, context)

    def info(self, msg: str, **context) -> None:
        """Log info message with context key-value pairs."""
        self._log(logging.INFO, msg, context)

    def warning(self, msg: str, **context) -> None:
        """Log warning message with context key-value pairs."""
        self._log(logging.WARNING, msg, context)

    def error(self, msg: str, **context) -> None:
        """Log error message with context key-value pairs."""
        self._log(logging.ERROR, msg, context)

    def exception(self, msg: str, exc: BaseException, **context) -> None:
        """Log exception with traceback.

        Args:
            msg: Log message
            exc: Exception to log
            **context: Additional context key-value pairs
        """
        context["exception_type"] = type(exc).__name__
        context["exception_message"] = str(exc)
        self._log(logging.ERROR, msg, context, exc_info=exc)

    def is_enabled_for(self, level: Union[LogLevel, str]) -> bool:
        """Check if logger is enabled for given level."""
        return self.logger.isEnabledFor(_coerce_level(level))


_loggers: Dict[str, Logger] = {}
_loggers_lock = threading.Lock()


def get_logger(name: str = ROOT_LOGGER_NAME) -> Logger:
    """Get or create the logger instance for a name.

    Args:
        name: Logger name, usually a dotted module path below "layerstore"

    Returns:
        Logger instance
    """
    with _loggers_lock:
        logger = _loggers.get(name)
        if logger is None:
            logger = Logger(name=name)
            _loggers[name] = logger
        return logger


def set_global_logger(logger: Logger) -> None:
    """Register a logger instance under its name."""
    with _loggers_lock:
        _loggers[logger.name] = logger


def configure_logging(
    level: Union[LogLevel, str] = LogLevel.INFO,
    log_file: Optional[Union[str, Path]] = None,
) -> Logger:
    """Configure output for every LayerStore logger.

    Args:
        level: Minimum level for the ``layerstore`` logger tree
        log_file: Rotating log file; console output when None

    Returns:
        The root ``layerstore`` logger
    """
    if log_file:
        handler: logging.Handler = Logger.create_file_handler(log_file)
    else:
        handler = Logger.create_console_handler()

    root = Logger(ROOT_LOGGER_NAME, level=level, handlers=[handler])
    set_global_logger(root)
    return root
