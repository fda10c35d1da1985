"""Cooperative cancellation for a single upload attempt."""
import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from ..errors import Cancelled
from ..protocols import IRemoteStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationController:
    """
    Abort handle for one attempt of one task.

    Cancelling asks the remote store to abort the transfer at transport
    level and cancels whatever the attempt is currently waiting on. Once the
    attempt starts committing its record, cancel requests are ignored.
    """

    def __init__(self, task_id: str, remote_store: IRemoteStore):
        self._task_id = task_id
        self._store = remote_store
        self._cancelled = False
        self._committing = False
        self._current: Optional[asyncio.Future] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def committing(self) -> bool:
        return self._committing

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise Cancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await a step of the attempt so cancel() can interrupt it.

        Raises:
            Cancelled: the step was interrupted by cancel()
        """
        self.raise_if_cancelled()
        future = asyncio.ensure_future(awaitable)
        self._current = future
        try:
            return await future
        except asyncio.CancelledError:
            if self._cancelled:
                raise Cancelled() from None
            raise
        finally:
            self._current = None

    def begin_commit(self) -> bool:
        """Enter the record-write phase. False if the attempt was already cancelled."""
        if self._cancelled:
            return False
        self._committing = True
        return True

    async def cancel(self) -> bool:
        """
        Request cancellation.

        Returns:
            True if the attempt will end as cancelled
        """
        if self._committing:
            logger.info(f"Task {self._task_id} is committing its record, cancel ignored")
            return False
        if self._cancelled:
            return True

        self._cancelled = True
        current = self._current
        if current is not None and not current.done():
            current.cancel()

        try:
            await self._store.abort(self._task_id)
        except Exception as e:
            logger.warning(f"Transport abort failed for task {self._task_id}: {e}")
        return True
