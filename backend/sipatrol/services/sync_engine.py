"""
Sync engine: drains the offline report queue to the report API.
Runs on the reconnect edge, on a timer while online, and on demand.
Only one pass is ever in flight; triggers that arrive meanwhile are folded
into a single follow-up pass.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from ..core.config import settings
from .connectivity import ConnectivityMonitor, ConnectivityState
from .offline_queue import (
    InvalidTransitionError,
    OfflineReportQueue,
    OfflineReportRecord,
    QueueError,
    RecordNotFoundError,
    RecordStatus,
)
from .report_client import DeliveryError

logger = logging.getLogger(__name__)


@dataclass
class SyncPassResult:
    """Outcome of one sync pass."""
    attempted: int = 0
    synced: int = 0
    failed: int = 0
    skipped: int = 0  # exhausted, backing off, or changed mid-pass
    halted: bool = False
    coalesced: bool = False
    error: Optional[str] = None


def backoff_delay(attempt_count: int, base: float, cap: float) -> float:
    """Seconds to wait after ``attempt_count`` failed attempts (exponential, capped)."""
    if attempt_count <= 0:
        return 0.0
    return min(base * (2 ** (attempt_count - 1)), cap)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncEngine:
    def __init__(
        self,
        queue: OfflineReportQueue,
        client,
        monitor: ConnectivityMonitor,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.queue = queue
        self.client = client
        self.monitor = monitor
        self.interval = interval if interval is not None else settings.SYNC_INTERVAL_SECONDS
        self.max_attempts = max_attempts if max_attempts is not None else settings.SYNC_MAX_ATTEMPTS
        self.backoff_base = backoff_base if backoff_base is not None else settings.SYNC_BACKOFF_BASE_SECONDS
        self.backoff_max = backoff_max if backoff_max is not None else settings.SYNC_BACKOFF_MAX_SECONDS
        self._clock = clock or _utcnow

        self._current: Optional[asyncio.Task] = None
        self._rerun_requested = False
        self._periodic_task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

        self._is_syncing = False
        self._last_sync_at: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._listeners: List[Callable[[], None]] = []
        self._exhausted_callbacks: List[Callable[[OfflineReportRecord], None]] = []

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def last_sync_at(self) -> Optional[datetime]:
        return self._last_sync_at

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.monitor.subscribe(self._on_connectivity_change)
        if self.interval > 0 and self._periodic_task is None:
            self._periodic_task = asyncio.get_running_loop().create_task(self._periodic_loop())
        logger.info("Sync engine started (interval=%ss, max_attempts=%d)", self.interval, self.max_attempts)
        if self.monitor.is_online:
            self.trigger("startup")

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        task, self._periodic_task = self._periodic_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        current = self._current
        if current is not None and not current.done():
            self._rerun_requested = False
            await asyncio.wait([current])
        logger.info("Sync engine stopped")

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def trigger(self, reason: str = "manual", force: bool = False) -> Optional[asyncio.Task]:
        """
        Start a sync pass unless one is running.
        Returns the pass task, or None when the trigger was coalesced or skipped.
        """
        if self._current is not None and not self._current.done():
            self._rerun_requested = True
            logger.debug("Sync pass in flight, coalescing %s trigger", reason)
            return None
        if not force and not self.monitor.is_online:
            logger.debug("Offline, ignoring %s trigger", reason)
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, ignoring %s trigger", reason)
            return None
        self._current = loop.create_task(self._run(reason))
        return self._current

    async def sync_now(self) -> SyncPassResult:
        """Manual sync. Runs even if the monitor reports offline; the attempt decides."""
        task = self.trigger("manual", force=True)
        if task is None:
            return SyncPassResult(coalesced=True)
        return await task

    def _on_connectivity_change(self, state: ConnectivityState) -> None:
        if state == ConnectivityState.ONLINE:
            self.trigger("reconnect")

    async def _periodic_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self.monitor.is_online:
                self.trigger("timer")

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def _run(self, reason: str) -> SyncPassResult:
        result = await self._run_pass(reason)
        while self._rerun_requested:
            self._rerun_requested = False
            if not self.monitor.is_online:
                break
            await self._run_pass("coalesced")
        return result

    def _backoff_elapsed(self, record: OfflineReportRecord, now: datetime) -> bool:
        if record.status != RecordStatus.FAILED or record.last_attempt_at is None:
            return True
        delay = backoff_delay(record.attempt_count, self.backoff_base, self.backoff_max)
        return now >= record.last_attempt_at + timedelta(seconds=delay)

    async def _run_pass(self, reason: str) -> SyncPassResult:
        result = SyncPassResult()
        self._set_syncing(True)
        logger.debug("Sync pass started (%s)", reason)
        try:
            now = self._clock()
            for record in self.queue.list_pending():
                if record.attempt_count >= self.max_attempts or not self._backoff_elapsed(record, now):
                    result.skipped += 1
                    continue

                try:
                    self.queue.mark_syncing(record.local_id)
                except (RecordNotFoundError, InvalidTransitionError) as exc:
                    # Discarded or retried by the officer since the pass listed it
                    logger.info("Report %s changed during the pass, skipping: %s", record.local_id, exc)
                    result.skipped += 1
                    continue
                result.attempted += 1
                try:
                    delivery = await self.client.submit_report(record)
                except DeliveryError as exc:
                    self._record_failure(record, str(exc), result)
                    if exc.halts_pass:
                        logger.warning("Sync pass halted at report %s: %s", record.local_id, exc)
                        result.halted = True
                        result.error = str(exc)
                        break
                    logger.warning("Delivery of report %s failed: %s", record.local_id, exc)
                    continue
                except Exception as exc:
                    logger.exception("Unexpected failure delivering report %s", record.local_id)
                    self._record_failure(record, f"Unexpected error: {exc}", result)
                    result.halted = True
                    result.error = str(exc)
                    break

                self.queue.mark_synced(record.local_id)
                self.queue.remove(record.local_id)
                result.synced += 1
                if delivery.duplicate:
                    logger.info("Report %s was already created as %s", record.local_id, delivery.report_id)
        except QueueError as exc:
            logger.error("Offline store failure during sync pass: %s", exc)
            result.halted = True
            result.error = str(exc)
            self._last_error = str(exc)
        finally:
            if not result.halted:
                self._last_sync_at = self._clock()
                if result.failed == 0:
                    self._last_error = None
            self._set_syncing(False)

        logger.info(
            "Sync pass finished: %d synced, %d failed, %d skipped%s",
            result.synced, result.failed, result.skipped, " (halted)" if result.halted else "",
        )
        return result

    def _record_failure(self, record: OfflineReportRecord, error: str, result: SyncPassResult) -> None:
        failed = self.queue.mark_failed(record.local_id, error)
        result.failed += 1
        self._last_error = error
        if failed.attempt_count >= self.max_attempts:
            logger.error(
                "Report %s gave up after %d attempts, needs officer action: %s",
                failed.local_id, failed.attempt_count, error,
            )
            for callback in list(self._exhausted_callbacks):
                try:
                    callback(failed)
                except Exception:
                    logger.exception("Exhausted-record callback failed")

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def add_listener(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove_listener() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove_listener

    def on_exhausted(self, callback: Callable[[OfflineReportRecord], None]) -> None:
        """Register a push notification for records that ran out of automatic attempts."""
        self._exhausted_callbacks.append(callback)

    def _set_syncing(self, value: bool) -> None:
        self._is_syncing = value
        for callback in list(self._listeners):
            try:
                callback()
            except Exception:
                logger.exception("Sync engine listener failed")
