"""
Record Store - Single Responsibility: persist file records to the datastore API.

Implements Repository Pattern for data access.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from ..errors import RecordStoreError, describe_exception
from ..models import FileRecordRequest, PersistedFileRecord
from ..protocols import IAPIClient

logger = logging.getLogger(__name__)


class HTTPRecordStore:
    """
    Repository for production file records behind the datastore API.

    Implements IRecordStore. Every failure surfaces as RecordStoreError.
    """

    ENDPOINT = "/production_files"

    def __init__(self, api_client: IAPIClient):
        """
        Initialize repository.

        Args:
            api_client: HTTP client for API calls
        """
        self._api = api_client

    async def create_file_record(self, request: FileRecordRequest) -> PersistedFileRecord:
        """
        Create the record for an uploaded file.

        When the write fails without a usable answer the row may still have
        been committed. The store is asked for a record of the same remote
        object before giving up, so callers never delete an object that a
        record points at.
        """
        try:
            response = await self._api.post(self.ENDPOINT, json=request.to_payload())
            return PersistedFileRecord.from_payload(self._unwrap(response.json()))
        except Exception as exc:
            existing = await self._find_committed(request)
            if existing is not None:
                logger.warning(
                    f"Record write for {request.display_name} failed ({describe_exception(exc)}) "
                    f"but record {existing.id} exists; using it"
                )
                return existing
            raise RecordStoreError(
                f"Could not create record for {request.display_name}: {describe_exception(exc)}"
            ) from exc

    async def soft_delete_file_record(self, record_id: str) -> None:
        try:
            await self._api.patch(f"{self.ENDPOINT}/{record_id}", json={
                "is_deleted": True,
                "deleted_at": datetime.now(timezone.utc).isoformat(),
            })
        except Exception as exc:
            raise RecordStoreError(
                f"Could not delete record {record_id}: {describe_exception(exc)}"
            ) from exc

    async def list_file_records(self, project_id: str) -> List[PersistedFileRecord]:
        try:
            response = await self._api.get(self.ENDPOINT, params={"project_id": project_id})
            data = response.json()
        except Exception as exc:
            raise RecordStoreError(
                f"Could not list records for project {project_id}: {describe_exception(exc)}"
            ) from exc

        items = data.get("items", []) if isinstance(data, dict) else data
        return [PersistedFileRecord.from_payload(item) for item in items]

    async def _find_committed(self, request: FileRecordRequest) -> Optional[PersistedFileRecord]:
        try:
            response = await self._api.get(self.ENDPOINT, params={
                "project_id": request.project_id,
                "file_id": request.remote_id,
            })
            data = response.json()
            items = data.get("items", []) if isinstance(data, dict) else data
            records = [PersistedFileRecord.from_payload(item) for item in items or []]
        except Exception as e:
            logger.warning(f"Could not check for a committed record of {request.remote_id}: {e}")
            return None

        for record in records:
            if record.remote_id == request.remote_id and not record.is_deleted:
                return record
        return None

    @staticmethod
    def _unwrap(data):
        # API answers either the row itself or {"data": row}
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            return data["data"]
        return data
