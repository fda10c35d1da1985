"""
Protocols (Interfaces) for the collaborators the pipeline depends on.

Small, focused interfaces: the pipeline only needs these calls from the
storage provider, the system of record and the sign-in flow.
"""
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from .models import FileRecordRequest, PersistedFileRecord, RemoteResult, SourceFile

ProgressCallback = Callable[[int, int], None]


@runtime_checkable
class IAuthenticator(Protocol):
    """Interface for the storage provider sign-in state."""

    async def is_signed_in(self) -> bool:
        ...

    async def sign_in(self) -> None:
        """Sign in; raises AuthRequired when it cannot."""
        ...


@runtime_checkable
class IRemoteStore(Protocol):
    """Interface for cloud storage operations."""

    async def get_or_create_folder(self, path_segments: Sequence[str]) -> str:
        """Return the folder id for the path, creating missing folders."""
        ...

    async def upload(
        self,
        source: SourceFile,
        folder_id: str,
        on_progress: Optional[ProgressCallback] = None,
        display_name: Optional[str] = None,
        task_id: Optional[str] = None,
    ) -> RemoteResult:
        """Transfer the file into the folder."""
        ...

    async def abort(self, task_id: str) -> None:
        """Abort the in-flight transfer registered under task_id."""
        ...

    async def delete(self, remote_id: str) -> None:
        """Delete a remote object. Deleting a missing object is not an error."""
        ...

    async def exists(self, remote_id: str) -> bool:
        ...


@runtime_checkable
class IRecordStore(Protocol):
    """Interface for the system of record (Repository Pattern)."""

    async def create_file_record(self, request: FileRecordRequest) -> PersistedFileRecord:
        ...

    async def soft_delete_file_record(self, record_id: str) -> None:
        ...

    async def list_file_records(self, project_id: str) -> List[PersistedFileRecord]:
        ...


@runtime_checkable
class IAPIClient(Protocol):
    """Interface for API operations."""

    async def post(self, endpoint: str, json: Dict) -> Any:
        ...

    async def get(self, endpoint: str, params: Optional[Dict] = None) -> Any:
        ...

    async def patch(self, endpoint: str, json: Dict) -> Any:
        ...
