import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Set

from ..models import TaskProgress

logger = logging.getLogger(__name__)


class EventEmitter:
    """Simple event emitter for upload events."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}
        self._pending: Set[asyncio.Task] = set()

    def on(self, event_name: str, callback: Callable):
        """Subscribe to an event."""
        if event_name not in self._listeners:
            self._listeners[event_name] = []
        if callback not in self._listeners[event_name]:
            self._listeners[event_name].append(callback)

    def off(self, event_name: str, callback: Callable):
        """Unsubscribe from an event."""
        if event_name in self._listeners:
            if callback in self._listeners[event_name]:
                self._listeners[event_name].remove(callback)

    async def emit(self, event_name: str, *args, **kwargs):
        """Emit an event to all listeners."""
        if event_name not in self._listeners:
            return

        for callback in self._listeners[event_name][:]:  # Copy list to avoid modification during iteration
            await self._invoke(event_name, callback, args, kwargs)

    def emit_nowait(self, event_name: str, *args, **kwargs):
        """
        Emit from synchronous code.

        Plain listeners run immediately, so they see the state that caused
        the event; coroutine listeners are scheduled on the running loop.
        """
        if event_name not in self._listeners:
            return

        for callback in self._listeners[event_name][:]:
            if asyncio.iscoroutinefunction(callback):
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError:
                    logger.debug(f"No running loop, skipped async listener for {event_name}")
                    continue
                task = loop.create_task(self._invoke(event_name, callback, args, kwargs))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
                continue
            try:
                callback(*args, **kwargs)
            except Exception as e:
                logger.error(f"Error in event listener for {event_name}: {e}")

    async def drain(self):
        """Wait for coroutine listeners scheduled by emit_nowait."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @staticmethod
    async def _invoke(event_name: str, callback: Callable, args, kwargs):
        try:
            if asyncio.iscoroutinefunction(callback):
                await callback(*args, **kwargs)
            else:
                callback(*args, **kwargs)
        except Exception as e:
            logger.error(f"Error in event listener for {event_name}: {e}")


class ProgressReporter:
    """
    Byte progress for one transfer attempt.

    Progress never goes backwards while an attempt runs; updates are
    throttled to one every `interval` seconds, except the final one.
    """

    def __init__(self, interval: float = 0.5, clock: Callable[[], float] = time.monotonic):
        self._interval = interval
        self._clock = clock
        self._last_emit: Optional[float] = None
        self._snapshot = TaskProgress()

    @property
    def snapshot(self) -> TaskProgress:
        return self._snapshot

    def reset(self, total: int = 0) -> TaskProgress:
        self._snapshot = TaskProgress(bytes_sent=0, bytes_total=total, percent=0)
        self._last_emit = None
        return self._snapshot

    def update(self, bytes_sent: int, bytes_total: int) -> Optional[TaskProgress]:
        """Record progress; returns the snapshot when listeners should hear about it."""
        total = bytes_total or self._snapshot.bytes_total
        sent = max(bytes_sent, self._snapshot.bytes_sent)
        if total > 0:
            sent = min(sent, total)
            percent = int(sent * 100 / total)
        else:
            percent = self._snapshot.percent
        percent = max(percent, self._snapshot.percent)

        if sent == self._snapshot.bytes_sent and percent == self._snapshot.percent:
            return None
        self._snapshot = TaskProgress(bytes_sent=sent, bytes_total=total, percent=percent)

        now = self._clock()
        final = total > 0 and sent >= total
        if final or self._last_emit is None or now - self._last_emit >= self._interval:
            self._last_emit = now
            return self._snapshot
        return None

    def complete(self) -> TaskProgress:
        total = self._snapshot.bytes_total
        self._snapshot = TaskProgress(bytes_sent=total, bytes_total=total, percent=100)
        return self._snapshot
