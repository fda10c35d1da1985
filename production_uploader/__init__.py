"""
Production Uploader - resilient batch upload of production files.

Moves local files into a remote object store under a per-project folder
layout, names them deterministically, and records each one in a system
of record. A transferred file never stays behind without a record: a
failed record write is compensated by deleting the remote object, and
when that fails too the task is reported as orphaned.

Usage:
    from production_uploader import (
        FileCategory, GoogleDriveRemoteStore, HTTPAPIClient, HTTPRecordStore,
        Project, TokenAuthenticator, UploadQueue,
    )

    auth = TokenAuthenticator(token)
    async with HTTPAPIClient(api_url) as api, GoogleDriveRemoteStore(auth) as drive:
        queue = UploadQueue(Project("p-1", "ABC-1000"), auth, drive, HTTPRecordStore(api))
        queue.enqueue(["take1.mov", "take2.mov"], FileCategory.PRIMARY_FOOTAGE)
        summary = await queue.start_all()

        if summary.failed_count:
            summary = await queue.retry_failed()
"""
from .orchestrator import CancellationController, UploadQueue, UploadTask
from .errors import (
    AuthRequired,
    Cancelled,
    ErrorKind,
    FolderResolutionFailed,
    OrphanedRemoteArtifact,
    RecordPersistenceFailed,
    RemoteTransferFailed,
    UploadError,
)
from .models import (
    BatchSummary,
    FileCategory,
    FolderGroup,
    OrphanWarning,
    Project,
    QueueCounts,
    SourceFile,
    TaskProgress,
    TaskStatus,
    UploadConfig,
)
from .services import (
    FolderResolver,
    GoogleDriveRemoteStore,
    HTTPAPIClient,
    HTTPRecordStore,
    NamingService,
    TokenAuthenticator,
)

__version__ = "0.1.0"
__all__ = [
    # Main
    "UploadQueue",
    "UploadTask",
    "CancellationController",
    # Errors
    "UploadError",
    "ErrorKind",
    "AuthRequired",
    "Cancelled",
    "FolderResolutionFailed",
    "RemoteTransferFailed",
    "RecordPersistenceFailed",
    "OrphanedRemoteArtifact",
    # Models
    "BatchSummary",
    "FileCategory",
    "FolderGroup",
    "OrphanWarning",
    "Project",
    "QueueCounts",
    "SourceFile",
    "TaskProgress",
    "TaskStatus",
    "UploadConfig",
    # Services
    "FolderResolver",
    "GoogleDriveRemoteStore",
    "HTTPAPIClient",
    "HTTPRecordStore",
    "NamingService",
    "TokenAuthenticator",
]
