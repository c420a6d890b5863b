"""
Durable offline report queue.
Officers keep filing reports in dead zones (basements, car parks, perimeter
fences); every submission is written to a local database before the capture
screen reports success and stays there until the report API confirms it.
"""
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterator, List, Optional

from sqlalchemy import (
    Boolean, Column, DateTime, Float, Integer, LargeBinary, String, Text, create_engine, func,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ..core.config import settings

logger = logging.getLogger(__name__)

# Local store lives on the device, separate from the report API schema
LocalBase = declarative_base()


class RecordStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    FAILED = "failed"
    SYNCED = "synced"


RETRYABLE_STATUSES = (RecordStatus.PENDING.value, RecordStatus.FAILED.value)


class QueueError(Exception):
    """Base class for offline queue errors."""


class QueueStorageError(QueueError):
    """The local store could not be read or written."""


class QueueFullError(QueueError):
    """Accepting the capture would exceed the configured queue capacity."""


class InvalidRecordError(QueueError, ValueError):
    """A capture is missing required content or has out-of-range coordinates."""


class DuplicateRecordError(QueueError):
    """A record with the same local_id is already queued."""


class RecordNotFoundError(QueueError, KeyError):
    """No queued record has the given local_id."""


class InvalidTransitionError(QueueError):
    """The requested status change is not allowed from the record's current status."""


class OfflineReportRow(LocalBase):
    __tablename__ = "offline_reports"

    seq = Column(Integer, primary_key=True, autoincrement=True)  # tie-break for equal captured_at
    local_id = Column(String(36), unique=True, nullable=False, index=True)

    # Captured content, written once
    image_data = Column(LargeBinary, nullable=False)
    notes = Column(Text, nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    captured_at = Column(DateTime, nullable=False, index=True)  # naive UTC
    captured_offline = Column(Boolean, nullable=False, default=False)
    enqueued_at = Column(DateTime, nullable=False)

    # Delivery state, written only by the sync engine
    status = Column(String(10), nullable=False, default=RecordStatus.PENDING.value, index=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    last_attempt_at = Column(DateTime, nullable=True)


@dataclass(frozen=True)
class OfflineReportRecord:
    """Detached snapshot of a queued report."""
    local_id: str
    image_data: bytes
    notes: Optional[str]
    latitude: float
    longitude: float
    captured_at: datetime
    captured_offline: bool
    enqueued_at: datetime
    status: RecordStatus
    attempt_count: int
    last_error: Optional[str]
    last_attempt_at: Optional[datetime]

    @property
    def idempotency_key(self) -> str:
        return self.local_id

    @property
    def image_size(self) -> int:
        return len(self.image_data)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_storage(value: datetime) -> datetime:
    """SQLite has no timezone support; store naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_storage(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def _to_record(row: OfflineReportRow) -> OfflineReportRecord:
    return OfflineReportRecord(
        local_id=row.local_id,
        image_data=bytes(row.image_data),
        notes=row.notes,
        latitude=row.latitude,
        longitude=row.longitude,
        captured_at=_from_storage(row.captured_at),
        captured_offline=bool(row.captured_offline),
        enqueued_at=_from_storage(row.enqueued_at),
        status=RecordStatus(row.status),
        attempt_count=row.attempt_count,
        last_error=row.last_error,
        last_attempt_at=_from_storage(row.last_attempt_at),
    )


class OfflineReportQueue:
    """
    Durable queue of report submissions awaiting delivery.

    Lifecycle: pending -> syncing -> synced (then removed), or
    syncing -> failed -> syncing again on a later pass.
    Records are never evicted; when the queue is full new captures are rejected.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        max_records: Optional[int] = None,
        max_bytes: Optional[int] = None,
    ):
        if engine is None:
            url = database_url or settings.OFFLINE_QUEUE_URL
            connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
            engine = create_engine(url, connect_args=connect_args)
        self.engine = engine
        self.max_records = max_records if max_records is not None else settings.OFFLINE_QUEUE_MAX_RECORDS
        self.max_bytes = max_bytes if max_bytes is not None else settings.OFFLINE_QUEUE_MAX_BYTES
        self._session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        self._listeners: List[Callable[[], None]] = []
        try:
            LocalBase.metadata.create_all(bind=engine)
        except SQLAlchemyError as exc:
            raise QueueStorageError(f"Offline store unavailable: {exc}") from exc

    # ------------------------------------------------------------------
    # Capture side
    # ------------------------------------------------------------------

    def enqueue(
        self,
        image_data: bytes,
        latitude: float,
        longitude: float,
        captured_at: datetime,
        notes: Optional[str] = None,
        local_id: Optional[str] = None,
        captured_offline: bool = False,
    ) -> OfflineReportRecord:
        """Persist a new capture. Returning normally means the report is durable."""
        self._validate(image_data, latitude, longitude, captured_at)
        local_id = local_id or str(uuid.uuid4())

        with self._transaction() as db:
            if db.query(OfflineReportRow.seq).filter(OfflineReportRow.local_id == local_id).first():
                raise DuplicateRecordError(f"Record {local_id} is already queued")

            count, total_bytes = db.query(
                func.count(OfflineReportRow.seq),
                func.coalesce(func.sum(func.length(OfflineReportRow.image_data)), 0),
            ).one()
            if count >= self.max_records:
                raise QueueFullError(f"Offline queue holds {count} reports (limit {self.max_records})")
            if total_bytes + len(image_data) > self.max_bytes:
                raise QueueFullError(f"Offline queue storage limit of {self.max_bytes} bytes reached")

            row = OfflineReportRow(
                local_id=local_id,
                image_data=bytes(image_data),
                notes=notes,
                latitude=float(latitude),
                longitude=float(longitude),
                captured_at=_to_storage(captured_at),
                captured_offline=captured_offline,
                enqueued_at=_to_storage(_utcnow()),
                status=RecordStatus.PENDING.value,
                attempt_count=0,
            )
            db.add(row)
            db.flush()
            record = _to_record(row)

        logger.info("Queued report %s captured at %s", record.local_id, record.captured_at.isoformat())
        self._notify()
        return record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_pending(self) -> List[OfflineReportRecord]:
        """Records eligible for delivery, oldest capture first."""
        with self._transaction() as db:
            rows = (
                db.query(OfflineReportRow)
                .filter(OfflineReportRow.status.in_(RETRYABLE_STATUSES))
                .order_by(OfflineReportRow.captured_at, OfflineReportRow.seq)
                .all()
            )
            return [_to_record(r) for r in rows]

    def list_all(self) -> List[OfflineReportRecord]:
        with self._transaction() as db:
            rows = db.query(OfflineReportRow).order_by(OfflineReportRow.captured_at, OfflineReportRow.seq).all()
            return [_to_record(r) for r in rows]

    def get(self, local_id: str) -> OfflineReportRecord:
        with self._transaction() as db:
            return _to_record(self._get_row(db, local_id))

    def count_pending(self) -> int:
        with self._transaction() as db:
            return (
                db.query(func.count(OfflineReportRow.seq))
                .filter(OfflineReportRow.status.in_(RETRYABLE_STATUSES))
                .scalar()
            )

    def count_exhausted(self, max_attempts: int) -> int:
        """Retryable records that have used up their automatic attempts."""
        with self._transaction() as db:
            return (
                db.query(func.count(OfflineReportRow.seq))
                .filter(
                    OfflineReportRow.status.in_(RETRYABLE_STATUSES),
                    OfflineReportRow.attempt_count >= max_attempts,
                )
                .scalar()
            )

    # ------------------------------------------------------------------
    # Status transitions (sync engine)
    # ------------------------------------------------------------------

    def mark_syncing(self, local_id: str) -> OfflineReportRecord:
        return self._transition(local_id, RETRYABLE_STATUSES, RecordStatus.SYNCING, stamp_attempt=True)

    def mark_synced(self, local_id: str) -> OfflineReportRecord:
        return self._transition(local_id, (RecordStatus.SYNCING.value,), RecordStatus.SYNCED)

    def mark_failed(self, local_id: str, error: str) -> OfflineReportRecord:
        """Record a failed delivery attempt; the record stays eligible for retry."""
        return self._transition(
            local_id, (RecordStatus.SYNCING.value,), RecordStatus.FAILED, error=error, count_attempt=True,
        )

    def remove(self, local_id: str) -> None:
        """Delete a delivered record. Only valid once it is marked synced."""
        with self._transaction() as db:
            row = self._get_row(db, local_id)
            if row.status != RecordStatus.SYNCED.value:
                raise InvalidTransitionError(f"Cannot remove record {local_id} in status {row.status}")
            db.delete(row)
        self._notify()

    def recover_interrupted(self) -> int:
        """Return records left in ``syncing`` by a terminated process to ``pending``."""
        with self._transaction() as db:
            recovered = (
                db.query(OfflineReportRow)
                .filter(OfflineReportRow.status == RecordStatus.SYNCING.value)
                .update({OfflineReportRow.status: RecordStatus.PENDING.value}, synchronize_session=False)
            )
        if recovered:
            logger.warning("Recovered %d report(s) interrupted mid-sync", recovered)
            self._notify()
        return recovered

    # ------------------------------------------------------------------
    # Manual intervention (officer decisions)
    # ------------------------------------------------------------------

    def reset_attempts(self, local_id: str) -> OfflineReportRecord:
        """Give a failed record a fresh set of automatic attempts."""
        with self._transaction() as db:
            row = self._get_row(db, local_id)
            if row.status not in RETRYABLE_STATUSES:
                raise InvalidTransitionError(f"Cannot retry record {local_id} in status {row.status}")
            row.status = RecordStatus.PENDING.value
            row.attempt_count = 0
            row.last_error = None
            db.flush()
            record = _to_record(row)
        self._notify()
        return record

    def discard(self, local_id: str) -> None:
        """Drop an undelivered record at the officer's request."""
        with self._transaction() as db:
            row = self._get_row(db, local_id)
            if row.status == RecordStatus.SYNCING.value:
                raise InvalidTransitionError(f"Record {local_id} is being delivered")
            attempts, last_error = row.attempt_count, row.last_error
            db.delete(row)
        logger.warning(
            "Report %s discarded by officer after %d attempt(s), last error: %s",
            local_id, attempts, last_error,
        )
        self._notify()

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def add_listener(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove_listener() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove_listener

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(image_data: bytes, latitude: float, longitude: float, captured_at: datetime) -> None:
        if not image_data:
            raise InvalidRecordError("A photo is required")
        if latitude is None or longitude is None:
            raise InvalidRecordError("Coordinates are required")
        if not -90.0 <= float(latitude) <= 90.0:
            raise InvalidRecordError(f"Latitude {latitude} out of range")
        if not -180.0 <= float(longitude) <= 180.0:
            raise InvalidRecordError(f"Longitude {longitude} out of range")
        if not isinstance(captured_at, datetime):
            raise InvalidRecordError("Capture time is required")

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except QueueError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Offline store operation failed: %s", exc)
            raise QueueStorageError(f"Offline store unavailable: {exc}") from exc
        finally:
            db.close()

    @staticmethod
    def _get_row(db: Session, local_id: str) -> OfflineReportRow:
        row = db.query(OfflineReportRow).filter(OfflineReportRow.local_id == local_id).first()
        if row is None:
            raise RecordNotFoundError(local_id)
        return row

    def _transition(
        self,
        local_id: str,
        allowed_from: tuple,
        new_status: RecordStatus,
        error: Optional[str] = None,
        count_attempt: bool = False,
        stamp_attempt: bool = False,
    ) -> OfflineReportRecord:
        with self._transaction() as db:
            row = self._get_row(db, local_id)
            if row.status not in allowed_from:
                raise InvalidTransitionError(
                    f"Cannot move record {local_id} from {row.status} to {new_status.value}"
                )
            row.status = new_status.value
            if count_attempt:
                row.attempt_count += 1
                row.last_error = error
            if stamp_attempt:
                row.last_attempt_at = _to_storage(_utcnow())
            db.flush()
            record = _to_record(row)
        self._notify()
        return record

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback()
            except Exception:
                logger.exception("Offline queue listener failed")
