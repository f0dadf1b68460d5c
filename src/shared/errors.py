"""
Error taxonomy for the sync pipeline.

These exceptions are carried as values inside :class:`shared.result.Err`
rather than raised across component boundaries.  ``str(error)`` is the
message shown to the caller, so constructors build it once and keep it
stable.
"""

from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for every pipeline failure."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(SyncError):
    """Raised when a request fails a validation-chain stage.

    Args:
        message: Caller-facing reason.
        stage: 1-based position of the failing stage in the chain.
    """

    def __init__(self, message: str, stage: int = 0) -> None:
        self.stage = stage
        super().__init__(message)


class SafetyLimitError(ValidationError):
    """Estimated roster size exceeds the hard cap; rejected pre-flight."""

    def __init__(self, message: str, limit: int, estimated: int) -> None:
        self.limit = limit
        self.estimated = estimated
        super().__init__(message, stage=8)


class AuthError(SyncError):
    """Credential-format or token-issuance failure."""


class UpstreamError(SyncError):
    """Roster API failure (permission, not-found, rate limit, protocol).

    Args:
        message: Upstream message (or protocol description).
        status: HTTP status, or ``None`` for protocol errors on a 2xx body.
    """

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        self.status = status
        self.upstream_message = message
        if status is not None:
            message = f"Discord API error ({status}): {message}"
        super().__init__(message)


class StorageError(SyncError):
    """Spreadsheet read/append/delete failure."""
