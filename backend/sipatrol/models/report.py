from sqlalchemy import Column, String, Float, Text, Boolean, ForeignKey, DateTime
from .base import Base, TimestampMixin, generate_uuid


class Report(Base, TimestampMixin):
    __tablename__ = "reports"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    unit_id = Column(String, ForeignKey("units.id"), nullable=False, index=True)

    # Photo evidence (stored outside the database)
    image_path = Column(String(500), nullable=True)
    image_hash = Column(String(64), nullable=True)  # SHA-256 for integrity

    notes = Column(Text, nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    captured_at = Column(DateTime, nullable=False, index=True)  # device clock
    submitted_at = Column(DateTime, nullable=False)  # server clock
    is_offline_submission = Column(Boolean, default=False)

    # Client local_id; replays of the same key never create a second row
    idempotency_key = Column(String(100), unique=True, nullable=False, index=True)
