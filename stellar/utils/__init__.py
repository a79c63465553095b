"""Utilities module for Stellar."""

from .logging_config import setup_logging, get_logger, LoggingConfig
from .exceptions import (
    ErrorCode,
    StellarError,
    ConfigurationError,
    InvalidTargetError,
    ProtectedPathError,
    LockBusyError,
    JournalError,
    DeduplicationError,
)
from .formatting import format_size, format_duration

__all__ = [
    "setup_logging",
    "get_logger",
    "LoggingConfig",
    "ErrorCode",
    "StellarError",
    "ConfigurationError",
    "InvalidTargetError",
    "ProtectedPathError",
    "LockBusyError",
    "JournalError",
    "DeduplicationError",
    "format_size",
    "format_duration",
]
