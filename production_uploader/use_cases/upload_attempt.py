"""Use case: one upload attempt for one task."""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from ..errors import AuthRequired, Cancelled, RemoteTransferFailed, UploadError, describe_exception
from ..models import Project, TaskProgress, TaskStatus
from ..orchestrator.cancellation import CancellationController
from ..orchestrator.task import UploadTask
from ..protocols import IAuthenticator, IRemoteStore
from ..services.compensation import CompensationCoordinator
from ..services.folders import FolderResolver
from ..services.naming import BatchSequencer, NamingService

logger = logging.getLogger(__name__)

ProgressListener = Callable[[UploadTask, TaskProgress], None]
StatusListener = Callable[[UploadTask], None]


class AttemptOutcome(Enum):
    """How an attempt ended."""
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PAUSED = "paused"  # sign-in required


class UploadAttemptUseCase:
    """
    Drive a task through resolve folder -> name -> transfer -> record.

    Every collaborator failure is converted into an UploadError kind on the
    task; nothing raised by a store escapes this use case.
    """

    def __init__(
        self,
        project: Project,
        authenticator: IAuthenticator,
        remote_store: IRemoteStore,
        folder_resolver: FolderResolver,
        naming: NamingService,
        compensation: CompensationCoordinator,
    ):
        self._project = project
        self._auth = authenticator
        self._remote = remote_store
        self._folders = folder_resolver
        self._naming = naming
        self._compensation = compensation

    async def execute(
        self,
        task: UploadTask,
        sequencer: BatchSequencer,
        on_status: Optional[StatusListener] = None,
        on_progress: Optional[ProgressListener] = None,
    ) -> AttemptOutcome:
        if not await self._auth.is_signed_in():
            task.interruption = AuthRequired()
            logger.info(f"Sign-in required, leaving {task.source.name} as {task.status.value}")
            return AttemptOutcome.PAUSED

        if task.status is TaskStatus.ERROR:
            await self._compensation.cleanup_before_retry(task)

        controller = CancellationController(task.id, self._remote)
        task.begin_attempt(controller)
        self._notify(on_status, task)

        try:
            await self._run(task, controller, sequencer, on_progress)
        except asyncio.CancelledError:
            # The surrounding run was torn down; leave the task restartable
            sequencer.release(task.id)
            if task.status is TaskStatus.UPLOADING:
                task.reset_to_pending(Cancelled())
                self._notify(on_status, task)
            raise
        except Cancelled as exc:
            sequencer.release(task.id)
            task.reset_to_pending(exc)
            logger.info(f"Cancelled: {task.source.name}")
            outcome = AttemptOutcome.CANCELLED
        except AuthRequired as exc:
            sequencer.release(task.id)
            task.reset_to_pending(exc)
            logger.warning(f"Sign-in expired while uploading {task.source.name}")
            outcome = AttemptOutcome.PAUSED
        except UploadError as exc:
            sequencer.release(task.id)
            task.mark_failed(exc)
            logger.error(f"Upload failed for {task.source.name} [{exc.kind.value}]: {exc.message}")
            outcome = AttemptOutcome.FAILED
        else:
            outcome = AttemptOutcome.COMPLETE

        self._notify(on_status, task)
        return outcome

    async def _run(
        self,
        task: UploadTask,
        controller: CancellationController,
        sequencer: BatchSequencer,
        on_progress: Optional[ProgressListener],
    ) -> None:
        folder_id = await controller.guard(
            self._folders.resolve(self._project.folder_key, task.category.group)
        )

        identifier = self._project.content_id
        if self._naming.applies(identifier, task.category):
            task.sequence = await sequencer.reserve(task.id)
        task.display_name = self._naming.display_name(
            identifier, task.category, task.sequence or 0, task.source
        )

        def progress_callback(bytes_sent: int, bytes_total: int) -> None:
            snapshot = task.record_progress(bytes_sent, bytes_total)
            if snapshot is not None and on_progress is not None:
                on_progress(task, snapshot)

        logger.info(f"Uploading {task.source.name} as {task.display_name} (attempt {task.attempts})")
        try:
            remote_result = await controller.guard(
                self._remote.upload(
                    task.source,
                    folder_id,
                    progress_callback,
                    display_name=task.display_name,
                    task_id=task.id,
                )
            )
        except UploadError:
            raise
        except Exception as exc:
            raise RemoteTransferFailed(
                f"Transfer of {task.source.name} failed: {describe_exception(exc)}"
            ) from exc

        task.mark_transferred(remote_result)

        if not controller.begin_commit():
            # Transfer finished right as cancel arrived: undo it, write no record
            await self._compensation.discard_cancelled(task, remote_result)
            raise Cancelled()

        await self._compensation.after_remote_success(task, remote_result, self._project)

    @staticmethod
    def _notify(listener: Optional[StatusListener], task: UploadTask) -> None:
        if listener is not None:
            listener(task)
