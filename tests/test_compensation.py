"""Tests for keeping remote objects and records consistent."""
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from production_uploader.errors import OrphanedRemoteArtifact, RecordPersistenceFailed
from production_uploader.models import FileCategory, Project, RemoteResult, SourceFile, TaskStatus
from production_uploader.orchestrator.task import UploadTask
from production_uploader.services.compensation import CompensationCoordinator

PROJECT = Project("proj-1", "ABC-1000")


async def _transferred(remote_store, name="a.mov"):
    task = UploadTask("t1", SourceFile(Path(name), name, 10, "video/quicktime"), FileCategory.PRIMARY_FOOTAGE)
    task.begin_attempt(Mock())
    task.display_name = "ABC-1000_raw_01.mov"
    result = await remote_store.upload(task.source, "folder-1", display_name=task.display_name, task_id=task.id)
    task.mark_transferred(result)
    return task, result


class TestAfterRemoteSuccess:
    @pytest.mark.asyncio
    async def test_record_written_and_task_completed(self, remote_store, record_store):
        coordinator = CompensationCoordinator(remote_store, record_store)
        task, result = await _transferred(remote_store)

        record = await coordinator.after_remote_success(task, result, PROJECT)

        assert task.status is TaskStatus.COMPLETE
        assert task.record is record
        assert record.display_name == "ABC-1000_raw_01.mov"
        assert record.remote_id == result.remote_id
        assert record.mime_type == "video/quicktime"

    @pytest.mark.asyncio
    async def test_record_failure_deletes_remote_object(self, remote_store, record_store):
        record_store.create_error = RuntimeError("constraint violation")
        coordinator = CompensationCoordinator(remote_store, record_store)
        task, result = await _transferred(remote_store)

        with pytest.raises(RecordPersistenceFailed, match="constraint violation") as excinfo:
            await coordinator.after_remote_success(task, result, PROJECT)

        assert excinfo.value.remote_id == result.remote_id
        assert task.remote_result is None
        assert await remote_store.exists(result.remote_id) is False

    @pytest.mark.asyncio
    async def test_failed_delete_raises_orphan(self, remote_store, record_store):
        record_store.create_error = RuntimeError("constraint violation")
        remote_store.delete_error = RuntimeError("503 from drive")
        coordinator = CompensationCoordinator(remote_store, record_store)
        task, result = await _transferred(remote_store)

        with pytest.raises(OrphanedRemoteArtifact) as excinfo:
            await coordinator.after_remote_success(task, result, PROJECT)

        assert excinfo.value.remote_id == result.remote_id
        assert excinfo.value.retryable is False
        assert "503 from drive" in excinfo.value.message
        assert task.remote_result is result
        assert await remote_store.exists(result.remote_id) is True

    def test_build_request_falls_back_to_source_size(self):
        task = UploadTask("t1", SourceFile(Path("a.mov"), "a.mov", 42), FileCategory.HOOK)
        request = CompensationCoordinator.build_request(PROJECT, task, RemoteResult("r", "link"))

        assert request.size_bytes == 42
        assert request.display_name == "a.mov"
        assert request.category is FileCategory.HOOK


class TestCleanup:
    @pytest.mark.asyncio
    async def test_cleanup_without_leftover(self, remote_store, record_store):
        coordinator = CompensationCoordinator(remote_store, record_store)
        task = UploadTask("t1", SourceFile(Path("a.mov"), "a.mov", 10), FileCategory.HOOK)

        assert await coordinator.cleanup_before_retry(task) is True
        assert remote_store.log == []

    @pytest.mark.asyncio
    async def test_cleanup_failure_is_kept_for_reporting(self, remote_store, record_store):
        coordinator = CompensationCoordinator(remote_store, record_store)
        task, result = await _transferred(remote_store)
        remote_store.delete_error = RuntimeError("still down")

        assert await coordinator.cleanup_before_retry(task) is False
        assert task.remote_result is None
        assert task.stale_remote_ids == [result.remote_id]

    @pytest.mark.asyncio
    async def test_retract_soft_deletes_record_before_object(self, remote_store):
        calls = []
        record_store = Mock()
        record_store.soft_delete_file_record = AsyncMock(side_effect=lambda rid: calls.append(("record", rid)))
        remote_store_mock = Mock()
        remote_store_mock.delete = AsyncMock(side_effect=lambda rid: calls.append(("remote", rid)))
        coordinator = CompensationCoordinator(remote_store_mock, record_store)
        task, result = await _transferred(remote_store)
        task.record = Mock(id="rec-9", display_name="x")

        assert await coordinator.retract(task) is True
        assert calls == [("record", "rec-9"), ("remote", result.remote_id)]
        assert task.remote_result is None
