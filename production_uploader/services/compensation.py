"""
Compensation Coordinator - keeps the remote store and the record store agreeing.

The two stores share no transaction. A record is only written after the
transfer succeeded; when the record write fails, the transferred object is
deleted again. When that delete fails too, the task is flagged as an orphan
so an operator can reconcile it.
"""
import logging
from typing import Optional

from ..errors import OrphanedRemoteArtifact, RecordPersistenceFailed, describe_exception
from ..models import FileRecordRequest, PersistedFileRecord, Project, RemoteResult
from ..protocols import IRecordStore, IRemoteStore

logger = logging.getLogger(__name__)


class CompensationCoordinator:
    """Pairs every successful transfer with a record, or undoes it."""

    def __init__(self, remote_store: IRemoteStore, record_store: IRecordStore):
        """
        Initialize coordinator.

        Args:
            remote_store: Store holding the transferred bytes
            record_store: System of record for file metadata
        """
        self._remote = remote_store
        self._records = record_store

    @staticmethod
    def build_request(project: Project, task, remote_result: RemoteResult) -> FileRecordRequest:
        return FileRecordRequest(
            project_id=project.id,
            category=task.category,
            display_name=task.display_name or task.source.name,
            remote_link=remote_result.remote_link,
            remote_id=remote_result.remote_id,
            size_bytes=remote_result.size_bytes or task.source.size,
            mime_type=task.source.mime_type,
        )

    async def after_remote_success(
        self,
        task,
        remote_result: RemoteResult,
        project: Project,
    ) -> PersistedFileRecord:
        """
        Write the record for a finished transfer and complete the task,
        compensating on failure.

        Returns:
            The persisted record

        Raises:
            RecordPersistenceFailed: record write failed, remote object deleted
            OrphanedRemoteArtifact: record write failed and the delete failed too
        """
        request = self.build_request(project, task, remote_result)
        try:
            record = await self._records.create_file_record(request)
        except Exception as exc:
            record_error = describe_exception(exc)
            logger.error(
                f"Record write failed for {request.display_name} (remote {remote_result.remote_id}): {record_error}",
                exc_info=True,
            )
        else:
            task.mark_complete(record)
            logger.info(f"Recorded {request.display_name} (record {record.id}, remote {remote_result.remote_id})")
            return record

        try:
            await self._remote.delete(remote_result.remote_id)
        except Exception as exc:
            delete_error = describe_exception(exc)
            logger.error(
                f"ORPHAN: remote object {remote_result.remote_id} ({request.display_name}) "
                f"could not be deleted after record failure: {delete_error}"
            )
            raise OrphanedRemoteArtifact(
                f"Record write failed ({record_error}) and remote object {remote_result.remote_id} "
                f"could not be deleted ({delete_error}). It is orphaned and needs manual reconciliation.",
                remote_id=remote_result.remote_id,
            ) from exc

        task.clear_remote_result()
        logger.warning(f"Rolled back remote object {remote_result.remote_id} for {request.display_name}")
        raise RecordPersistenceFailed(
            f"Record write failed ({record_error}); the uploaded file was removed and can be retried.",
            remote_id=remote_result.remote_id,
        )

    async def cleanup_before_retry(self, task) -> bool:
        """
        Best-effort delete of the object a previous attempt left behind.

        Never blocks the retry: on failure the id is kept in
        `task.stale_remote_ids` for the batch summary.

        Returns:
            True if nothing is left behind
        """
        remote_result: Optional[RemoteResult] = task.remote_result
        if remote_result is None:
            return True

        logger.info(f"Cleaning up remote object {remote_result.remote_id} from previous attempt of {task.source.name}")
        try:
            await self._remote.delete(remote_result.remote_id)
        except Exception as exc:
            logger.warning(
                f"Failed to delete remote object {remote_result.remote_id} before retry, continuing anyway: "
                f"{describe_exception(exc)}"
            )
            task.retire_remote_result()
            return False

        task.clear_remote_result()
        return True

    async def discard_cancelled(self, task, remote_result: RemoteResult) -> bool:
        """Delete an object whose transfer finished after the task was cancelled."""
        try:
            await self._remote.delete(remote_result.remote_id)
        except Exception as exc:
            logger.error(
                f"ORPHAN: cancelled upload {remote_result.remote_id} ({task.source.name}) "
                f"could not be deleted: {describe_exception(exc)}"
            )
            task.retire_remote_result()
            return False
        task.clear_remote_result()
        return True

    async def retract(self, task) -> bool:
        """
        Undo a completed upload: soft-delete the record, then delete the object.

        The record goes first so the system never points at a missing file.

        Returns:
            True if the remote object was deleted as well
        """
        record: Optional[PersistedFileRecord] = task.record
        if record is not None:
            await self._records.soft_delete_file_record(record.id)
            logger.info(f"Soft-deleted record {record.id} ({record.display_name})")

        remote_result: Optional[RemoteResult] = task.remote_result
        if remote_result is None:
            return True
        try:
            await self._remote.delete(remote_result.remote_id)
        except Exception as exc:
            logger.error(
                f"ORPHAN: remote object {remote_result.remote_id} kept after record {getattr(record, 'id', '?')} "
                f"was deleted: {describe_exception(exc)}"
            )
            task.retire_remote_result()
            return False
        task.clear_remote_result()
        return True
