import asyncio
import logging
import uuid
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from ..errors import InvalidTaskState
from ..models import (
    BatchSummary,
    FileCategory,
    OrphanWarning,
    PersistedFileRecord,
    Project,
    QueueCounts,
    SourceFile,
    TaskProgress,
    TaskStatus,
    UploadConfig,
)
from ..protocols import IAuthenticator, IRecordStore, IRemoteStore
from ..services.compensation import CompensationCoordinator
from ..services.folders import FolderResolver
from ..services.naming import BatchSequencer, NamingService
from ..use_cases.upload_attempt import AttemptOutcome, UploadAttemptUseCase
from ..utils.events import EventEmitter
from .task import UploadTask

logger = logging.getLogger(__name__)

FileInput = Union[str, Path, SourceFile]


class UploadQueue:
    """
    Ordered batch of upload tasks for one project.

    Counts are always derived from task statuses; listeners are told about
    every status change, throttled byte progress, and the end of each run.

    Usage:
        async with UploadQueue(project, auth, remote_store, record_store) as queue:
            queue.on_task_progress(lambda task, progress: print(task.id, progress.percent))
            queue.enqueue([Path("take1.mov"), Path("take2.mov")], FileCategory.PRIMARY_FOOTAGE)
            summary = await queue.start_all()
    """

    def __init__(
        self,
        project: Project,
        authenticator: IAuthenticator,
        remote_store: IRemoteStore,
        record_store: IRecordStore,
        config: Optional[UploadConfig] = None,
        folder_resolver: Optional[FolderResolver] = None,
        naming: Optional[NamingService] = None,
        existing_records: Optional[Iterable[PersistedFileRecord]] = None,
    ):
        """
        Initialize queue.

        Args:
            project: Project every file in the batch belongs to
            authenticator: Storage provider sign-in state
            remote_store: Storage provider
            record_store: System of record
            config: Upload configuration
            folder_resolver: Shared resolver (pass one to share its cache between queues)
            naming: Naming service
            existing_records: Records known before the first run; refreshed from
                the record store at the start of every run when possible
        """
        self._project = project
        self._config = config or UploadConfig()
        self._records = record_store
        self._folders = folder_resolver or FolderResolver(remote_store, self._config.root_folder)
        self._naming = naming or NamingService(self._config.default_extension)
        self._compensation = CompensationCoordinator(remote_store, record_store)
        self._attempt = UploadAttemptUseCase(
            project, authenticator, remote_store, self._folders, self._naming, self._compensation
        )
        self._known_records: List[PersistedFileRecord] = list(existing_records or [])
        self._tasks: List[UploadTask] = []
        self._events = EventEmitter()
        self._run_lock = asyncio.Lock()
        self._stop_requested = False
        self._retired_warnings: List[OrphanWarning] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    # Event subscription methods
    def on_task_status(self, callback: Callable[[UploadTask], None]):
        """Called on every task state change. Receives the task."""
        self._events.on("task_status", callback)

    def on_task_progress(self, callback: Callable[[UploadTask, TaskProgress], None]):
        """Called when byte progress updates. Receives (task, TaskProgress)."""
        self._events.on("task_progress", callback)

    def on_counts(self, callback: Callable[[QueueCounts], None]):
        """Called with fresh aggregate counts after every change."""
        self._events.on("counts", callback)

    def on_finish(self, callback: Callable[[BatchSummary], None]):
        """Called when a run ends. Receives BatchSummary."""
        self._events.on("finish", callback)

    # State properties
    @property
    def project(self) -> Project:
        return self._project

    @property
    def tasks(self) -> List[UploadTask]:
        return list(self._tasks)

    @property
    def counts(self) -> QueueCounts:
        by_status: Dict[TaskStatus, int] = {status: 0 for status in TaskStatus}
        for task in self._tasks:
            by_status[task.status] += 1
        return QueueCounts(
            pending=by_status[TaskStatus.PENDING],
            uploading=by_status[TaskStatus.UPLOADING],
            complete=by_status[TaskStatus.COMPLETE],
            error=by_status[TaskStatus.ERROR],
        )

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @property
    def known_records(self) -> List[PersistedFileRecord]:
        return list(self._known_records)

    def __len__(self) -> int:
        return len(self._tasks)

    def get(self, task_id: str) -> UploadTask:
        for task in self._tasks:
            if task.id == task_id:
                return task
        raise KeyError(task_id)

    # Batch editing
    def enqueue(self, files: Iterable[FileInput], default_category: FileCategory) -> List[UploadTask]:
        """Add files as pending tasks, in order."""
        added = []
        for item in files:
            source = item if isinstance(item, SourceFile) else SourceFile.from_path(item)
            task = UploadTask(
                uuid.uuid4().hex[:12],
                source,
                default_category,
                progress_interval=self._config.progress_interval,
            )
            self._tasks.append(task)
            added.append(task)
        logger.debug(f"Enqueued {len(added)} file(s) for project {self._project.folder_key}")
        self._notify_counts()
        return added

    def set_category(self, task_id: str, category: FileCategory) -> None:
        self.get(task_id).category = category

    def remove(self, task_id: str) -> UploadTask:
        task = self.get(task_id)
        if task.status is not TaskStatus.PENDING:
            raise InvalidTaskState(f"Only pending tasks can be removed, {task_id} is {task.status.value}")
        self._tasks.remove(task)
        self._notify_counts()
        return task

    def clear_finished(self) -> List[UploadTask]:
        """Drop complete and errored tasks. Orphan warnings they carry are kept."""
        finished = [t for t in self._tasks if t.status in (TaskStatus.COMPLETE, TaskStatus.ERROR)]
        for task in finished:
            warnings = self._warnings_for(task)
            if warnings:
                logger.warning(f"Clearing {task.source.name} with {len(warnings)} unreconciled remote object(s)")
                self._retired_warnings.extend(warnings)
            self._tasks.remove(task)
        self._notify_counts()
        return finished

    async def discard(self, task_id: str) -> bool:
        """
        Remove a completed upload from both stores and from the queue.

        Returns:
            True if the remote object was deleted as well as the record
        """
        task = self.get(task_id)
        if task.status is not TaskStatus.COMPLETE:
            raise InvalidTaskState(f"Only complete tasks can be discarded, {task_id} is {task.status.value}")
        clean = await self._compensation.retract(task)
        self._retired_warnings.extend(self._warnings_for(task))
        self._tasks.remove(task)
        if task.record is not None:
            self._known_records = [r for r in self._known_records if r.id != task.record.id]
        self._notify_counts()
        return clean

    # Control methods
    async def start_all(self) -> BatchSummary:
        """Attempt every pending task once, in queue order."""
        return await self._run(TaskStatus.PENDING)

    async def retry_failed(self) -> BatchSummary:
        """Attempt every errored task once, cleaning up leftovers first."""
        return await self._run(TaskStatus.ERROR)

    async def cancel(self, task_id: str) -> bool:
        task = self.get(task_id)
        if task.status is not TaskStatus.UPLOADING or task.cancellation is None:
            return False
        return await task.cancellation.cancel()

    async def cancel_all(self) -> int:
        """Abort every uploading task and stop the current run from starting more."""
        if self.is_running:
            self._stop_requested = True
        cancelled = 0
        for task in list(self._tasks):
            if await self.cancel(task.id):
                cancelled += 1
        if cancelled:
            logger.info(f"Cancelled {cancelled} upload(s)")
        return cancelled

    async def aclose(self) -> None:
        """Teardown: abort in-flight transfers and wait for the run to settle."""
        await self.cancel_all()
        if self._run_lock.locked():
            async with self._run_lock:
                pass
        await self._events.drain()

    def summary(self) -> BatchSummary:
        return self._summarize({})

    # Internal methods
    async def _run(self, eligible: TaskStatus) -> BatchSummary:
        async with self._run_lock:
            self._stop_requested = False
            targets = [t for t in self._tasks if t.status is eligible]
            logger.info(
                f"Starting run for project {self._project.folder_key}: {len(targets)} task(s), "
                f"max parallel {self._config.max_parallel}"
            )
            sequencer = await self._prepare_sequencer()
            outcomes: Dict[str, AttemptOutcome] = {}

            if self._config.max_parallel <= 1:
                for task in targets:
                    outcome = await self._attempt_one(task, eligible, sequencer)
                    if outcome is not None:
                        outcomes[task.id] = outcome
            else:
                semaphore = asyncio.Semaphore(self._config.max_parallel)

                async def bounded(task: UploadTask):
                    async with semaphore:
                        return await self._attempt_one(task, eligible, sequencer)

                results = await asyncio.gather(*(bounded(t) for t in targets))
                for task, outcome in zip(targets, results):
                    if outcome is not None:
                        outcomes[task.id] = outcome

            self._stop_requested = False
            await self._events.drain()
            summary = self._summarize(outcomes)
            logger.info(
                f"Run finished: complete={summary.completed_count} failed={summary.failed_count} "
                f"orphans={len(summary.orphan_warnings)} paused={summary.paused_count}"
            )
            await self._events.emit("finish", summary)
            return summary

    async def _attempt_one(
        self,
        task: UploadTask,
        eligible: TaskStatus,
        sequencer: BatchSequencer,
    ) -> Optional[AttemptOutcome]:
        # The task may have been removed or changed while earlier ones ran
        if self._stop_requested or task not in self._tasks or task.status is not eligible:
            return None
        outcome = await self._attempt.execute(
            task,
            sequencer,
            on_status=self._task_changed,
            on_progress=self._task_progressed,
        )
        if outcome is AttemptOutcome.COMPLETE and task.record is not None:
            self._known_records.append(task.record)
        return outcome

    async def _prepare_sequencer(self) -> BatchSequencer:
        try:
            self._known_records = list(await self._records.list_file_records(self._project.id))
        except Exception as e:
            logger.warning(
                f"Could not refresh records for project {self._project.id}, "
                f"numbering from {len(self._known_records)} known record(s): {e}"
            )
        return self._naming.sequencer(self._known_records)

    def _summarize(self, outcomes: Dict[str, AttemptOutcome]) -> BatchSummary:
        counts = self.counts
        warnings = list(self._retired_warnings)
        for task in self._tasks:
            warnings.extend(self._warnings_for(task))
        paused = sum(1 for o in outcomes.values() if o is AttemptOutcome.PAUSED)
        return BatchSummary(
            completed_count=counts.complete,
            failed_count=counts.error,
            orphan_warnings=warnings,
            paused_count=paused,
            cancelled_count=sum(1 for o in outcomes.values() if o is AttemptOutcome.CANCELLED),
            auth_required=paused > 0,
        )

    @staticmethod
    def _warnings_for(task: UploadTask) -> List[OrphanWarning]:
        warnings = []
        if task.is_orphaned and task.remote_result is not None:
            warnings.append(OrphanWarning(
                task_id=task.id,
                file_name=task.display_name or task.source.name,
                remote_id=task.remote_result.remote_id,
                message=task.error_message or "Remote object has no record",
            ))
        for remote_id in task.stale_remote_ids:
            warnings.append(OrphanWarning(
                task_id=task.id,
                file_name=task.source.name,
                remote_id=remote_id,
                message="Left behind by an earlier attempt; clean-up did not succeed",
            ))
        return warnings

    def _task_changed(self, task: UploadTask) -> None:
        self._events.emit_nowait("task_status", task)
        self._events.emit_nowait("counts", self.counts)

    def _task_progressed(self, task: UploadTask, progress: TaskProgress) -> None:
        self._events.emit_nowait("task_progress", task, progress)

    def _notify_counts(self) -> None:
        self._events.emit_nowait("counts", self.counts)
