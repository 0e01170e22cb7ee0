"""
Error taxonomy for the i3x3 daemon.

Every failure a redistribution pass can produce derives from
DistributionError and is absorbed by the distributor loop until the
consecutive-failure threshold is reached.
"""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(Enum):
    """
    Error codes for the i3x3 daemon.

    Custom codes (1000-1999):
    - 1100-1199: Configuration errors
    - 1400-1499: i3 IPC errors
    - 1500-1599: Distribution errors
    """

    # Configuration errors (1100-1199)
    CONFIG_LOAD_FAILED = 1100
    CONFIG_INVALID = 1101

    # i3 IPC errors (1400-1499)
    I3_NOT_RUNNING = 1400
    QUERY_FAILED = 1401
    COMMAND_FAILED = 1402
    IPC_TIMEOUT = 1403

    # Distribution errors (1500-1599)
    NO_ACTIVE_OUTPUTS = 1500
    THRESHOLD_EXCEEDED = 1501


class I3x3Error(Exception):
    """Base exception for all i3x3 daemon errors."""

    default_code = ErrorCode.QUERY_FAILED

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize error.

        Args:
            message: Human-readable error message
            code: Error code from ErrorCode enum (defaults to the class code)
            context: Additional context for debugging
        """
        self.message = message
        self.code = code or self.default_code
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a JSON-compatible dictionary."""
        result = {
            "code": self.code.value,
            "error": self.code.name.lower(),
            "message": self.message,
        }
        if self.context:
            result["context"] = self.context
        return result


class ConfigError(I3x3Error):
    """Configuration file could not be loaded or failed validation."""

    default_code = ErrorCode.CONFIG_INVALID


class DistributionError(I3x3Error):
    """A single redistribution pass failed; retried on the next wake."""


class QueryError(DistributionError):
    """Fetching outputs or workspaces from i3 failed."""

    default_code = ErrorCode.QUERY_FAILED


class CommandError(DistributionError):
    """An i3 move or switch command failed."""

    default_code = ErrorCode.COMMAND_FAILED


class NoActiveOutputsError(DistributionError):
    """i3 reported no active outputs, so no assignment can be computed."""

    default_code = ErrorCode.NO_ACTIVE_OUTPUTS


class FatalDistributionError(I3x3Error):
    """The consecutive-failure threshold was reached; the loop has stopped."""

    default_code = ErrorCode.THRESHOLD_EXCEEDED

    def __init__(self, attempts: int, threshold: int, cause: Optional[Exception] = None):
        self.attempts = attempts
        self.threshold = threshold
        message = f"Redistribution failed {attempts} consecutive times (threshold {threshold})"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(
            message,
            context={"attempts": attempts, "threshold": threshold},
        )
