"""Services for production uploader module."""
from .api_client import HTTPAPIClient
from .auth import TokenAuthenticator
from .compensation import CompensationCoordinator
from .drive_store import GoogleDriveRemoteStore
from .folders import FolderResolver
from .naming import BatchSequencer, NamingService
from .record_store import HTTPRecordStore

__all__ = [
    "HTTPAPIClient",
    "TokenAuthenticator",
    "CompensationCoordinator",
    "GoogleDriveRemoteStore",
    "FolderResolver",
    "BatchSequencer",
    "NamingService",
    "HTTPRecordStore",
]
