"""
Field-device composition root.
Owns the offline queue, connectivity monitor, report client, sync engine and
status surface, and starts/stops them together.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from ..core.config import Settings, settings as default_settings
from .connectivity import ConnectivityMonitor
from .offline_queue import OfflineReportQueue, OfflineReportRecord
from .report_client import ReportApiClient
from .sync_engine import SyncEngine
from .sync_status import SyncStatusSurface

logger = logging.getLogger(__name__)


class PatrolAgent:
    def __init__(
        self,
        config: Optional[Settings] = None,
        queue: Optional[OfflineReportQueue] = None,
        client=None,
        monitor: Optional[ConnectivityMonitor] = None,
        engine: Optional[SyncEngine] = None,
        probe_enabled: Optional[bool] = None,
    ):
        self.config = config or default_settings
        self.queue = queue or OfflineReportQueue(
            database_url=self.config.OFFLINE_QUEUE_URL,
            max_records=self.config.OFFLINE_QUEUE_MAX_RECORDS,
            max_bytes=self.config.OFFLINE_QUEUE_MAX_BYTES,
        )
        self.client = client or ReportApiClient(
            base_url=self.config.REPORT_API_URL,
            token=self.config.REPORT_API_TOKEN,
            timeout=self.config.REPORT_API_TIMEOUT,
        )
        self.monitor = monitor or ConnectivityMonitor()
        self.engine = engine or SyncEngine(
            self.queue,
            self.client,
            self.monitor,
            interval=self.config.SYNC_INTERVAL_SECONDS,
            max_attempts=self.config.SYNC_MAX_ATTEMPTS,
            backoff_base=self.config.SYNC_BACKOFF_BASE_SECONDS,
            backoff_max=self.config.SYNC_BACKOFF_MAX_SECONDS,
        )
        self.status = SyncStatusSurface(self.queue, self.engine, self.monitor)
        self.probe_enabled = (
            probe_enabled if probe_enabled is not None else self.config.CONNECTIVITY_PROBE_ENABLED
        )
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        self.queue.recover_interrupted()
        await self.engine.start()
        if self.probe_enabled and hasattr(self.client, "check_health"):
            self.monitor.start_probe(self.client.check_health, self.config.CONNECTIVITY_PROBE_INTERVAL_SECONDS)
        self._started = True
        logger.info("Patrol agent started")

    async def stop(self) -> None:
        if not self._started:
            return
        await self.monitor.stop_probe()
        await self.engine.stop()
        if hasattr(self.client, "aclose"):
            await self.client.aclose()
        self._started = False
        logger.info("Patrol agent stopped")

    def submit_report(
        self,
        image_data: bytes,
        latitude: float,
        longitude: float,
        captured_at: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> OfflineReportRecord:
        """
        Record a capture. The queue is always the record of intent; storage
        errors propagate so the officer is never told a report was saved when
        it was not. Delivery is attempted right away when online.
        """
        record = self.queue.enqueue(
            image_data=image_data,
            latitude=latitude,
            longitude=longitude,
            captured_at=captured_at or datetime.now(timezone.utc),
            notes=notes,
            captured_offline=not self.monitor.is_online,
        )
        if self.monitor.is_online:
            self.engine.trigger("capture")
        return record

    def retry(self, local_id: str) -> OfflineReportRecord:
        """Officer asks to try an exhausted or rejected report again."""
        record = self.queue.reset_attempts(local_id)
        self.engine.trigger("retry")
        return record

    def discard(self, local_id: str) -> None:
        self.queue.discard(local_id)
