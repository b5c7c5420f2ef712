"""Custom exceptions for the time machine package."""

from typing import Optional


class TimeMachineError(Exception):
    """Base exception for all time machine errors."""
    pass


class BlobStoreError(TimeMachineError):
    """Error related to the blob store."""
    pass


class BlobNotFoundError(BlobStoreError):
    """No object is stored for the requested hash."""
    pass


class CorruptBlobError(BlobStoreError):
    """Stored or fetched object cannot be decompressed or fails verification."""
    pass


class PathTraversalError(TimeMachineError):
    """Target path resolves outside the project root."""
    pass


class JournalError(TimeMachineError):
    """Journal database could not be read or written."""
    pass


class RemoteAPIError(TimeMachineError):
    """Error talking to the remote service."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteAuthError(RemoteAPIError):
    """Remote service rejected the credentials (401/403)."""
    pass


class RemoteNotFoundError(RemoteAPIError):
    """Remote resource does not exist (404)."""
    pass


class CommandError(TimeMachineError):
    """A remote command could not be executed."""
    pass


class UnknownCommandError(CommandError):
    """Remote command type has no local handler."""
    pass


class ProcessAlreadyRunningError(TimeMachineError):
    """Daemon is already running."""
    pass


class ProcessNotRunningError(TimeMachineError):
    """Daemon has not been initialized or started."""
    pass
