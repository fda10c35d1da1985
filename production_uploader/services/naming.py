"""
Naming Service - Single Responsibility: sequence-numbered display names.

Names look like `{identifier}_{tag}_{NN}.{ext}`, e.g. `ABC-1000_raw_01.mov`.
"""
import asyncio
import logging
from typing import Dict, Iterable, Optional

from ..models import FileCategory, PersistedFileRecord, SourceFile, TaskStatus

logger = logging.getLogger(__name__)


class NamingService:
    """Computes collision-free display names for a project's uploads."""

    def __init__(self, default_extension: str = "mov"):
        self._default_extension = default_extension

    @staticmethod
    def count_active(records: Iterable[PersistedFileRecord]) -> int:
        return sum(1 for record in records if not record.is_deleted)

    def next_sequence(self, persisted: Iterable[PersistedFileRecord], batch_before: Iterable) -> int:
        """
        Sequence for the next task.

        This is the counting rule; uploads get their numbers from a
        BatchSequencer, which yields the same values when tasks run one
        after another and stays collision-free when they overlap.

        Args:
            persisted: Records already stored for the project
            batch_before: Tasks of the current batch queued before this one

        Returns:
            count(non-deleted records) + count(completed earlier tasks) + 1
        """
        completed = sum(1 for task in batch_before if task.status is TaskStatus.COMPLETE)
        return self.count_active(persisted) + completed + 1

    def display_name(
        self,
        identifier: Optional[str],
        category: FileCategory,
        sequence: int,
        source: SourceFile,
    ) -> str:
        """Build the display name, or keep the original one when naming does not apply."""
        if not self.applies(identifier, category):
            return source.name
        extension = source.extension or self._default_extension
        return f"{identifier}_{category.sequence_tag}_{sequence:02d}.{extension}"

    @staticmethod
    def applies(identifier: Optional[str], category: FileCategory) -> bool:
        return bool(identifier) and category.sequence_tag is not None

    def sequencer(self, persisted: Iterable[PersistedFileRecord]) -> "BatchSequencer":
        return BatchSequencer(self.count_active(persisted))


class BatchSequencer:
    """
    Hands out sequence numbers for one queue run.

    A number is claimed when a task starts its transfer and released if the
    attempt does not complete. Claims are computed under a lock from what
    has been observed so far, so overlapping transfers never share a number.
    """

    def __init__(self, base: int):
        self._base = base
        self._claims: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    @property
    def base(self) -> int:
        return self._base

    async def reserve(self, task_id: str) -> int:
        async with self._lock:
            if task_id in self._claims:
                return self._claims[task_id]
            taken = set(self._claims.values())
            sequence = self._base + 1
            while sequence in taken:
                sequence += 1
            self._claims[task_id] = sequence
            logger.debug(f"Reserved sequence {sequence} for task {task_id}")
            return sequence

    def release(self, task_id: str) -> None:
        sequence = self._claims.pop(task_id, None)
        if sequence is not None:
            logger.debug(f"Released sequence {sequence} from task {task_id}")

    def claimed(self, task_id: str) -> Optional[int]:
        return self._claims.get(task_id)
