"""
Drive Storage - Single Responsibility: move bytes into Google Drive.

Uses the Drive v3 REST API over httpx:
- folders are looked up by name/parent before being created
- files go through a resumable session in fixed-size chunks
- every chunk is retried with exponential back-off
- an in-flight upload can be aborted by its task id
"""
import asyncio
import logging
import uuid
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional, Sequence

import httpx

from ..errors import AuthRequired, RemoteStoreError
from ..models import RemoteResult, SourceFile, UploadConfig
from ..protocols import ProgressCallback

logger = logging.getLogger(__name__)

DRIVE_API = "https://www.googleapis.com/drive/v3"
UPLOAD_API = "https://www.googleapis.com/upload/drive/v3"
FOLDER_MIME = "application/vnd.google-apps.folder"
FILE_FIELDS = "id,name,webViewLink,size"


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _read_chunk(path: Path, offset: int, length: int) -> bytes:
    with open(path, "rb") as f:
        f.seek(offset)
        return f.read(length)


class GoogleDriveRemoteStore:
    """
    Implements IRemoteStore on Google Drive.

    Usage:
        async with GoogleDriveRemoteStore(authenticator) as store:
            folder_id = await store.get_or_create_folder(["Production Files", "ABC-1000", "Raw Footage"])
            result = await store.upload(source, folder_id, on_progress)
    """

    def __init__(
        self,
        authenticator,
        config: Optional[UploadConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize Drive storage.

        Args:
            authenticator: Source of the bearer token (`access_token` attribute)
            config: Upload configuration (chunk size, retries, timeout)
            client: Pre-built httpx client; created on `async with` when omitted
            sleep: Back-off sleep, replaceable in tests
        """
        self._auth = authenticator
        self._config = config or UploadConfig()
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep
        self._folder_cache: Dict[str, str] = {}  # path -> folder id
        self._sessions: Dict[str, str] = {}  # task id -> resumable session uri

    async def __aenter__(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.request_timeout)
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    async def aclose(self) -> None:
        for task_id in list(self._sessions):
            await self.abort(task_id)
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # Folders
    async def get_or_create_folder(self, path_segments: Sequence[str]) -> str:
        """Walk the path from My Drive root, creating missing folders. Uses cache."""
        parent: Optional[str] = None
        walked = []
        for name in path_segments:
            walked.append(name)
            path = "/".join(walked)
            cached = self._folder_cache.get(path)
            if cached:
                parent = cached
                continue

            folder_id = await self._find_folder(name, parent)
            if folder_id:
                logger.debug(f"Folder exists in Drive: /{path} ({folder_id})")
            else:
                folder_id = await self._create_folder(name, parent)
                logger.info(f"Created Drive folder: /{path} ({folder_id})")
            self._folder_cache[path] = folder_id
            parent = folder_id

        if parent is None:
            raise RemoteStoreError("Empty folder path")
        return parent

    async def _find_folder(self, name: str, parent: Optional[str]) -> Optional[str]:
        query = (
            f"name='{_escape(name)}' and mimeType='{FOLDER_MIME}' and trashed=false "
            f"and '{parent or 'root'}' in parents"
        )
        response = await self._with_retries(
            "find folder",
            lambda: self._http().get(
                f"{DRIVE_API}/files",
                params={"q": query, "fields": "files(id,name)", "spaces": "drive"},
                headers=self._headers(),
            ),
        )
        files = response.json().get("files", [])
        return files[0]["id"] if files else None

    async def _create_folder(self, name: str, parent: Optional[str]) -> str:
        body = {"name": name, "mimeType": FOLDER_MIME}
        if parent:
            body["parents"] = [parent]
        response = await self._with_retries(
            "create folder",
            lambda: self._http().post(
                f"{DRIVE_API}/files",
                params={"fields": "id"},
                json=body,
                headers=self._headers(),
            ),
        )
        return response.json()["id"]

    # Files
    async def upload(
        self,
        source: SourceFile,
        folder_id: str,
        on_progress: Optional[ProgressCallback] = None,
        display_name: Optional[str] = None,
        task_id: Optional[str] = None,
    ) -> RemoteResult:
        """
        Upload a file through a resumable session.

        Returns:
            RemoteResult with Drive file id, view link and size
        """
        key = task_id or uuid.uuid4().hex
        name = display_name or source.name
        session_uri = await self._start_session(source, folder_id, name)
        self._sessions[key] = session_uri
        logger.info(f"Uploading {name} ({source.size / (1024 * 1024):.1f} MB) to folder {folder_id}")

        try:
            return await self._send_chunks(source, session_uri, on_progress)
        except asyncio.CancelledError:
            if self._sessions.pop(key, None):
                await asyncio.shield(self._cancel_session(session_uri))
            raise
        finally:
            self._sessions.pop(key, None)

    async def abort(self, task_id: str) -> None:
        """Drop the resumable session of an in-flight upload, if any."""
        session_uri = self._sessions.pop(task_id, None)
        if session_uri is None:
            return
        logger.info(f"Aborting upload session for task {task_id}")
        await self._cancel_session(session_uri)

    async def delete(self, remote_id: str) -> None:
        """Delete a file. A file that is already gone counts as deleted."""
        response = await self._with_retries(
            f"delete {remote_id}",
            lambda: self._http().delete(f"{DRIVE_API}/files/{remote_id}", headers=self._headers()),
            accept=(200, 204, 404),
        )
        if response.status_code == 404:
            logger.debug(f"Drive file {remote_id} already gone")
            return
        logger.info(f"Deleted Drive file {remote_id}")

    async def exists(self, remote_id: str) -> bool:
        response = await self._with_retries(
            f"get {remote_id}",
            lambda: self._http().get(
                f"{DRIVE_API}/files/{remote_id}",
                params={"fields": "id,trashed"},
                headers=self._headers(),
            ),
            accept=(200, 404),
        )
        if response.status_code == 404:
            return False
        return not response.json().get("trashed", False)

    # Internal methods
    async def _start_session(self, source: SourceFile, folder_id: str, name: str) -> str:
        headers = self._headers()
        headers.update({
            "X-Upload-Content-Type": source.mime_type or "application/octet-stream",
            "X-Upload-Content-Length": str(source.size),
        })
        response = await self._with_retries(
            "start upload session",
            lambda: self._http().post(
                f"{UPLOAD_API}/files",
                params={"uploadType": "resumable", "fields": FILE_FIELDS},
                json={"name": name, "mimeType": source.mime_type, "parents": [folder_id]},
                headers=headers,
            ),
        )
        session_uri = response.headers.get("Location")
        if not session_uri:
            raise RemoteStoreError("No resumable session URI returned from Google Drive")
        return session_uri

    async def _send_chunks(
        self,
        source: SourceFile,
        session_uri: str,
        on_progress: Optional[ProgressCallback],
    ) -> RemoteResult:
        total = source.size
        chunk_size = self._config.chunk_size
        offset = 0
        if on_progress:
            on_progress(0, total)

        while True:
            end = min(offset + chunk_size, total)
            chunk = await asyncio.to_thread(_read_chunk, source.path, offset, end - offset)
            content_range = f"bytes {offset}-{end - 1}/{total}" if total else "bytes */0"
            response = await self._with_retries(
                "upload chunk",
                lambda: self._http().put(
                    session_uri,
                    content=chunk,
                    headers={"Content-Range": content_range},
                ),
                accept=(200, 201, 308),
            )

            if response.status_code in (200, 201):
                if on_progress:
                    on_progress(total, total)
                data = response.json()
                file_id = data["id"]
                return RemoteResult(
                    remote_id=file_id,
                    remote_link=data.get("webViewLink") or f"https://drive.google.com/file/d/{file_id}/view",
                    size_bytes=int(data.get("size") or total),
                )

            offset = self._next_offset(response)
            if on_progress:
                on_progress(offset, total)

    @staticmethod
    def _next_offset(response: httpx.Response) -> int:
        # 308 carries "Range: bytes=0-N" for what the server has
        received = response.headers.get("Range")
        if not received:
            return 0
        return int(received.rsplit("-", 1)[1]) + 1

    async def _cancel_session(self, session_uri: str) -> None:
        try:
            await self._http().delete(session_uri)
        except Exception as e:
            logger.warning(f"Could not cancel upload session: {e}")

    async def _with_retries(
        self,
        action: str,
        send: Callable[[], Awaitable[httpx.Response]],
        accept: Sequence[int] = (),
    ) -> httpx.Response:
        max_retries = self._config.max_retries
        for attempt in range(max_retries + 1):
            retry_reason = None
            try:
                response = await send()
            except httpx.TransportError as exc:
                retry_reason = f"{type(exc).__name__}: {exc}"
                if attempt >= max_retries:
                    raise RemoteStoreError(f"{action} failed: {retry_reason}") from exc
            else:
                if response.status_code in accept:
                    return response
                if response.status_code == 429 or response.status_code >= 500:
                    retry_reason = f"HTTP {response.status_code}"
                    if attempt >= max_retries:
                        self._check(response, action)
                else:
                    self._check(response, action)
                    return response

            delay = 2 ** attempt
            logger.warning(f"Retry {attempt + 1}/{max_retries} of {action} after {delay}s: {retry_reason}")
            await self._sleep(delay)

        raise RemoteStoreError(f"{action} failed after {max_retries} retries")

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("GoogleDriveRemoteStore not initialized. Use 'async with' context.")
        return self._client

    def _headers(self) -> Dict[str, str]:
        token = getattr(self._auth, "access_token", None)
        if not token:
            raise AuthRequired()
        return {"Authorization": f"Bearer {token}"}

    @staticmethod
    def _check(response: httpx.Response, action: str) -> None:
        if response.status_code == 401:
            raise AuthRequired(f"Google Drive rejected the access token during {action}")
        if response.status_code >= 400:
            raise RemoteStoreError(
                f"{action} failed: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )
