"""Read-only sync status for the online/pending/last-sync indicator."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from .connectivity import ConnectivityMonitor
from .offline_queue import OfflineReportQueue, QueueError
from .sync_engine import SyncEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncStatusSnapshot:
    online: bool
    pending_count: int
    is_syncing: bool
    last_sync_at: Optional[datetime]
    last_error: Optional[str]
    needs_attention_count: int  # out of automatic attempts, waiting for the officer


class SyncStatusSurface:
    """Projection over the queue, engine and monitor. Exposes no mutators."""

    def __init__(self, queue: OfflineReportQueue, engine: SyncEngine, monitor: ConnectivityMonitor):
        self._queue = queue
        self._engine = engine
        self._monitor = monitor
        self._subscribers: List[Callable[[SyncStatusSnapshot], None]] = []
        self._detach = [
            queue.add_listener(self._changed),
            engine.add_listener(self._changed),
            monitor.subscribe(lambda _state: self._changed()),
        ]

    def snapshot(self) -> SyncStatusSnapshot:
        try:
            pending = self._queue.count_pending()
            needs_attention = self._queue.count_exhausted(self._engine.max_attempts)
            last_error = self._engine.last_error
        except QueueError as exc:
            # Status must stay readable when the store is not
            pending, needs_attention, last_error = 0, 0, str(exc)
        return SyncStatusSnapshot(
            online=self._monitor.is_online,
            pending_count=pending,
            is_syncing=self._engine.is_syncing,
            last_sync_at=self._engine.last_sync_at,
            last_error=last_error,
            needs_attention_count=needs_attention,
        )

    def subscribe(self, callback: Callable[[SyncStatusSnapshot], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def close(self) -> None:
        for detach in self._detach:
            detach()
        self._detach = []
        self._subscribers = []

    def _changed(self) -> None:
        if not self._subscribers:
            return
        snap = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snap)
            except Exception:
                logger.exception("Sync status subscriber failed")
