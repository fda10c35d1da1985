"""In-memory collaborators shared by the test suite."""
import asyncio
from dataclasses import replace
from typing import Dict, List, Optional

import pytest

from production_uploader.models import (
    FileRecordRequest,
    PersistedFileRecord,
    Project,
    RemoteResult,
)


class FakeAuthenticator:
    def __init__(self, signed_in: bool = True):
        self.signed_in = signed_in
        self.sign_in_calls = 0

    async def is_signed_in(self) -> bool:
        return self.signed_in

    async def sign_in(self) -> None:
        self.sign_in_calls += 1
        self.signed_in = True


class FakeRemoteStore:
    """
    Remote store kept in dictionaries.

    Set `gate` to an asyncio.Event to hold uploads until it is set;
    `waiting` lists the task ids currently held.
    """

    def __init__(self):
        self.folders: Dict[tuple, str] = {}
        self.folder_calls = 0
        self.folder_delay = 0.0
        self.folder_error: Optional[Exception] = None
        self.folder_id_override: Optional[str] = None

        self.objects: Dict[str, dict] = {}
        self.log: List[tuple] = []
        self.upload_failures: Dict[str, Exception] = {}
        self.delete_error: Optional[Exception] = None
        self.abort_error: Optional[Exception] = None
        self.aborted: List[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.waiting: List[str] = []
        self.active = 0
        self.max_active = 0
        self._counter = 0
        self.before_return = None  # called with the task id once the bytes are stored

    async def get_or_create_folder(self, path_segments) -> str:
        self.folder_calls += 1
        if self.folder_delay:
            await asyncio.sleep(self.folder_delay)
        if self.folder_error is not None:
            raise self.folder_error
        if self.folder_id_override is not None:
            return self.folder_id_override
        key = tuple(path_segments)
        if key not in self.folders:
            self.folders[key] = f"folder-{len(self.folders) + 1}"
        return self.folders[key]

    async def upload(self, source, folder_id, on_progress=None, display_name=None, task_id=None):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if on_progress:
                on_progress(0, source.size)
            if self.gate is not None:
                self.waiting.append(task_id)
                try:
                    await self.gate.wait()
                finally:
                    self.waiting.remove(task_id)
            else:
                await asyncio.sleep(0)

            error = self.upload_failures.get(source.name)
            if error is not None:
                raise error

            self._counter += 1
            remote_id = f"remote-{self._counter}"
            name = display_name or source.name
            self.objects[remote_id] = {"name": name, "folder_id": folder_id, "size": source.size}
            self.log.append(("upload", name, remote_id))
            if on_progress:
                on_progress(source.size, source.size)
            if self.before_return is not None:
                self.before_return(task_id)
            return RemoteResult(remote_id, f"https://drive.example/{remote_id}", source.size)
        finally:
            self.active -= 1

    async def abort(self, task_id: str) -> None:
        if self.abort_error is not None:
            raise self.abort_error
        self.aborted.append(task_id)

    async def delete(self, remote_id: str) -> None:
        if self.delete_error is not None:
            raise self.delete_error
        self.objects.pop(remote_id, None)
        self.log.append(("delete", remote_id))

    async def exists(self, remote_id: str) -> bool:
        return remote_id in self.objects

    def uploaded_names(self) -> List[str]:
        return [entry[1] for entry in self.log if entry[0] == "upload"]


class FakeRecordStore:
    def __init__(self, records=None):
        self.records: List[PersistedFileRecord] = list(records or [])
        self.create_error: Optional[Exception] = None
        self.list_error: Optional[Exception] = None
        self.requests: List[FileRecordRequest] = []

    async def create_file_record(self, request: FileRecordRequest) -> PersistedFileRecord:
        if self.create_error is not None:
            raise self.create_error
        self.requests.append(request)
        record = PersistedFileRecord(
            id=f"rec-{len(self.records) + 1}",
            project_id=request.project_id,
            category=request.category,
            display_name=request.display_name,
            remote_link=request.remote_link,
            remote_id=request.remote_id,
            size_bytes=request.size_bytes,
            mime_type=request.mime_type,
        )
        self.records.append(record)
        return record

    async def soft_delete_file_record(self, record_id: str) -> None:
        self.records = [
            replace(r, is_deleted=True) if r.id == record_id else r for r in self.records
        ]

    async def list_file_records(self, project_id: str) -> List[PersistedFileRecord]:
        if self.list_error is not None:
            raise self.list_error
        return [r for r in self.records if r.project_id == project_id]

    def active_names(self) -> List[str]:
        return [r.display_name for r in self.records if not r.is_deleted]


async def _until(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() holds."""
    async def poll():
        while not predicate():
            await asyncio.sleep(0)
    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def auth():
    return FakeAuthenticator()


@pytest.fixture
def remote_store():
    return FakeRemoteStore()


@pytest.fixture
def record_store():
    return FakeRecordStore()


@pytest.fixture
def project():
    return Project("proj-1", "ABC-1000")


@pytest.fixture
def make_file(tmp_path):
    def factory(name: str, size: int = 1024):
        path = tmp_path / name
        path.write_bytes(b"x" * size)
        return path
    return factory


@pytest.fixture
def until():
    return _until
