"""Upload task: the unit of work for one file."""
import logging
from typing import Dict, FrozenSet, List, Optional

from ..errors import ErrorKind, InvalidTaskState, InvalidTransition, UploadError
from ..models import (
    FileCategory,
    PersistedFileRecord,
    RemoteResult,
    SourceFile,
    TaskProgress,
    TaskStatus,
)
from ..utils.events import ProgressReporter
from .cancellation import CancellationController

logger = logging.getLogger(__name__)

_TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.UPLOADING}),
    TaskStatus.UPLOADING: frozenset({TaskStatus.COMPLETE, TaskStatus.ERROR, TaskStatus.PENDING}),
    TaskStatus.ERROR: frozenset({TaskStatus.UPLOADING}),
    TaskStatus.COMPLETE: frozenset(),
}


class UploadTask:
    """
    One file moving through `pending -> uploading -> complete | error`.

    `remote_result` is evidence that the transfer happened. It survives a
    failed record write so the object can be cleaned up, and is only
    cleared by an explicit removal (a successful delete, or handing the id
    over to `stale_remote_ids` when a clean-up did not succeed).
    """

    def __init__(
        self,
        task_id: str,
        source: SourceFile,
        category: FileCategory,
        progress_interval: float = 0.5,
    ):
        self.id = task_id
        self.source = source
        self._category = category
        self._status = TaskStatus.PENDING
        self._progress = ProgressReporter(progress_interval)
        self._progress.reset(source.size)

        self.remote_result: Optional[RemoteResult] = None
        self.record: Optional[PersistedFileRecord] = None
        self.error: Optional[UploadError] = None
        self.interruption: Optional[UploadError] = None  # why a task went back to pending
        self.display_name: Optional[str] = None
        self.sequence: Optional[int] = None
        self.attempts = 0
        self.stale_remote_ids: List[str] = []
        self.cancellation: Optional[CancellationController] = None

    def __repr__(self) -> str:
        return f"UploadTask(id={self.id!r}, file={self.source.name!r}, status={self._status.value})"

    # State properties
    @property
    def status(self) -> TaskStatus:
        return self._status

    @property
    def category(self) -> FileCategory:
        return self._category

    @category.setter
    def category(self, value: FileCategory) -> None:
        if self._status is not TaskStatus.PENDING:
            raise InvalidTaskState(f"Cannot change category of task {self.id} in state {self._status.value}")
        self._category = value

    @property
    def progress(self) -> TaskProgress:
        return self._progress.snapshot

    @property
    def progress_percent(self) -> int:
        return self._progress.snapshot.percent

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error else None

    @property
    def is_orphaned(self) -> bool:
        return self.error_kind is ErrorKind.ORPHANED_REMOTE_ARTIFACT

    @property
    def is_active(self) -> bool:
        return self._status is TaskStatus.UPLOADING

    # Transitions
    def _transition(self, target: TaskStatus) -> None:
        if target not in _TRANSITIONS[self._status]:
            raise InvalidTransition(
                f"Task {self.id}: {self._status.value} -> {target.value} is not allowed"
            )
        logger.debug(f"Task {self.id} ({self.source.name}): {self._status.value} -> {target.value}")
        self._status = target

    def begin_attempt(self, controller: CancellationController) -> None:
        if self.remote_result is not None:
            raise InvalidTaskState(
                f"Task {self.id} still holds remote object {self.remote_result.remote_id}; clean it up first"
            )
        self._transition(TaskStatus.UPLOADING)
        self.attempts += 1
        self.error = None
        self.interruption = None
        self.display_name = None
        self.sequence = None
        self.cancellation = controller
        self._progress.reset(self.source.size)

    def record_progress(self, bytes_sent: int, bytes_total: int) -> Optional[TaskProgress]:
        """Returns a snapshot when the update should be broadcast."""
        if self._status is not TaskStatus.UPLOADING:
            return None
        return self._progress.update(bytes_sent, bytes_total)

    def mark_transferred(self, remote_result: RemoteResult) -> None:
        if self._status is not TaskStatus.UPLOADING:
            raise InvalidTransition(f"Task {self.id} is not uploading")
        self.remote_result = remote_result

    def mark_complete(self, record: PersistedFileRecord) -> None:
        if self.remote_result is None:
            raise InvalidTransition(f"Task {self.id} cannot complete without a remote result")
        self._transition(TaskStatus.COMPLETE)
        self.record = record
        self.cancellation = None
        self._progress.complete()

    def mark_failed(self, error: UploadError) -> None:
        self._transition(TaskStatus.ERROR)
        self.error = error
        self.cancellation = None

    def reset_to_pending(self, reason: UploadError) -> None:
        """Back to pending with zero progress (cancellation or sign-in needed)."""
        self._transition(TaskStatus.PENDING)
        if self.remote_result is not None:
            self.retire_remote_result()
        self.interruption = reason
        self.error = None
        self.display_name = None
        self.sequence = None
        self.cancellation = None
        self._progress.reset(self.source.size)

    def clear_remote_result(self) -> None:
        """The remote object is gone; forget it."""
        self.remote_result = None

    def retire_remote_result(self) -> None:
        """Keep the id of an object that could not be cleaned up, then forget it."""
        if self.remote_result is not None:
            if self.remote_result.remote_id not in self.stale_remote_ids:
                self.stale_remote_ids.append(self.remote_result.remote_id)
            self.remote_result = None
