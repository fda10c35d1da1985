"""
Error taxonomy for the upload pipeline.

Collaborator failures are raised as RemoteStoreError / RecordStoreError /
AuthRequired and converted at the task boundary into one UploadError kind.
"""
from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Distinguishes task failures without parsing messages."""
    AUTH_REQUIRED = "auth_required"
    FOLDER_RESOLUTION_FAILED = "folder_resolution_failed"
    REMOTE_TRANSFER_FAILED = "remote_transfer_failed"
    RECORD_PERSISTENCE_FAILED = "record_persistence_failed"
    ORPHANED_REMOTE_ARTIFACT = "orphaned_remote_artifact"
    CANCELLED = "cancelled"


class UploadError(Exception):
    """Base class for failures surfaced on an upload task."""
    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def retryable(self) -> bool:
        return True


class AuthRequired(UploadError):
    """Sign-in with the storage provider is required before uploading."""
    kind = ErrorKind.AUTH_REQUIRED

    def __init__(self, message: str = "Sign in to the storage provider first"):
        super().__init__(message)


class FolderResolutionFailed(UploadError):
    """Destination folder could not be resolved or created."""
    kind = ErrorKind.FOLDER_RESOLUTION_FAILED


class RemoteTransferFailed(UploadError):
    """Transfer failed; no remote artifact exists."""
    kind = ErrorKind.REMOTE_TRANSFER_FAILED


class RecordPersistenceFailed(UploadError):
    """Record write failed and the transferred object was rolled back."""
    kind = ErrorKind.RECORD_PERSISTENCE_FAILED

    def __init__(self, message: str, remote_id: Optional[str] = None):
        super().__init__(message)
        self.remote_id = remote_id


class OrphanedRemoteArtifact(UploadError):
    """Record write failed and the compensating delete failed too."""
    kind = ErrorKind.ORPHANED_REMOTE_ARTIFACT

    def __init__(self, message: str, remote_id: str):
        super().__init__(message)
        self.remote_id = remote_id

    @property
    def retryable(self) -> bool:
        # Needs an operator; retry only after the stale object is handled
        return False


class Cancelled(UploadError):
    """User cancelled the transfer. Not a failure."""
    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Upload cancelled"):
        super().__init__(message)


class RemoteStoreError(RuntimeError):
    """Raised by remote store adapters."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RecordStoreError(RuntimeError):
    """Raised by record store adapters."""


class InvalidTransition(RuntimeError):
    """Raised when a task is moved between states the machine does not allow."""


class InvalidTaskState(RuntimeError):
    """Raised when a queue operation targets a task in the wrong state."""


def describe_exception(exc: BaseException) -> str:
    message = str(exc).strip()
    if message:
        return message
    return f"{type(exc).__name__}: {repr(exc)}"
