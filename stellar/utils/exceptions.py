"""
Custom Exceptions
=================

Defines custom exception classes for Stellar.
All exceptions include error codes for programmatic handling.

Fatal errors abort a run before anything on disk is changed. Per-file
problems are never raised: they are captured as skip reasons on the
move operations instead.
"""

from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    """Error codes for programmatic error handling."""

    # General errors (1000-1099)
    UNKNOWN_ERROR = 1000
    CONFIGURATION_ERROR = 1001

    # Target validation errors (1100-1199)
    TARGET_NOT_FOUND = 1100
    TARGET_NOT_DIRECTORY = 1101
    TARGET_PROTECTED = 1102

    # Locking errors (1200-1299)
    LOCK_BUSY = 1200
    LOCK_FAILED = 1201

    # Journal errors (1300-1399)
    JOURNAL_CORRUPTED = 1300
    JOURNAL_WRITE_FAILED = 1301

    # Deduplication errors (1500-1599)
    DEDUPLICATION_FAILED = 1500
    HASH_COMPUTATION_FAILED = 1501


class StellarError(Exception):
    """Base exception for all Stellar errors.

    Attributes:
        message: Human-readable error message.
        error_code: Programmatic error code.
        details: Additional error context.
        cause: Original exception that caused this error.
    """

    exit_code = 1

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[dict] = None,
        cause: Optional[Exception] = None
    ):
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Programmatic error code.
            details: Additional context as key-value pairs.
            cause: Original exception if wrapping another error.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        """Return a formatted error string."""
        result = f"[{self.error_code.name}] {self.message}"
        if self.details:
            result += f" | Details: {self.details}"
        if self.cause:
            result += f" | Caused by: {type(self.cause).__name__}: {self.cause}"
        return result

    def to_dict(self) -> dict:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "error_code": self.error_code.value,
            "error_name": self.error_code.name,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(StellarError):
    """Raised when there's a configuration problem.

    Examples:
        - Unknown organization or rename mode
        - Category table in the wrong shape
        - Journal retention below the minimum
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type
        super().__init__(
            message,
            error_code=ErrorCode.CONFIGURATION_ERROR,
            details=details,
            **kwargs
        )


class InvalidTargetError(StellarError):
    """Raised when the target directory is missing or is not a directory."""

    def __init__(
        self,
        message: str,
        target: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.TARGET_NOT_FOUND,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if target:
            details["target"] = target
        super().__init__(
            message,
            error_code=error_code,
            details=details,
            **kwargs
        )


class ProtectedPathError(StellarError):
    """Raised when the target directory is rejected by the path guard.

    The ``rule`` names the protection rule that was violated so the
    caller can explain the refusal to the user.
    """

    def __init__(
        self,
        message: str,
        target: Optional[str] = None,
        rule: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if target:
            details["target"] = target
        if rule:
            details["rule"] = rule
        super().__init__(
            message,
            error_code=ErrorCode.TARGET_PROTECTED,
            details=details,
            **kwargs
        )
        self.rule = rule


class LockBusyError(StellarError):
    """Raised when another live process holds the lock on a target.

    Attributes:
        holder: Lock information of the current holder, if readable.
    """

    def __init__(
        self,
        message: str,
        target: Optional[str] = None,
        holder=None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if target:
            details["target"] = target
        if holder is not None:
            details["holder_pid"] = holder.pid
            details["acquired_at"] = holder.acquired_at
        super().__init__(
            message,
            error_code=ErrorCode.LOCK_BUSY,
            details=details,
            **kwargs
        )
        self.holder = holder


class JournalError(StellarError):
    """Raised when the session journal cannot be read or written."""

    def __init__(
        self,
        message: str,
        journal_path: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.JOURNAL_WRITE_FAILED,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if journal_path:
            details["journal_path"] = journal_path
        super().__init__(
            message,
            error_code=error_code,
            details=details,
            **kwargs
        )


class DeduplicationError(StellarError):
    """Raised when deduplication operations fail.

    Examples:
        - Hash computation failure
        - File comparison error
    """

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        hash_type: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.DEDUPLICATION_FAILED,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if file_path:
            details["file_path"] = file_path
        if hash_type:
            details["hash_type"] = hash_type
        super().__init__(
            message,
            error_code=error_code,
            details=details,
            **kwargs
        )
