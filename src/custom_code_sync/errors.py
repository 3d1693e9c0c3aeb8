"""Exception types raised by custom_code_sync.

Most component boundaries absorb failures and return ``None`` or an empty
result so the event pipeline keeps running.  The exceptions below are the
few conditions that callers are expected to handle explicitly.
"""

from __future__ import annotations


class CustomCodeSyncError(Exception):
    """Base class for all custom_code_sync errors."""


class SnapshotReadError(CustomCodeSyncError):
    """The persisted snapshot could not be read after all retry attempts.

    Attributes:
        path: The snapshot file that failed to load.
        attempts: Number of read attempts made.
    """

    def __init__(self, path: str, attempts: int, cause: Exception) -> None:
        super().__init__(
            f"Failed to read snapshot {path} after {attempts} attempts: {cause}"
        )
        self.path = path
        self.attempts = attempts
        self.cause = cause


class DeclarationParseError(CustomCodeSyncError):
    """Source text could not be split into top-level declarations."""


class RemoteError(CustomCodeSyncError):
    """A request to the remote project server failed.

    Attributes:
        status_code: HTTP status code, or ``None`` for transport failures.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SyncInProgressError(CustomCodeSyncError):
    """A push or pull was requested while another one is still running."""
