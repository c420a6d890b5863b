"""Report API: idempotent report creation, listing and retrieval."""
from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timezone
import logging

from ..models.base import get_db, generate_uuid
from ..models.profile import Profile
from ..models.report import Report
from ..services.image_storage import image_storage, decode_image_data, ImageTooLargeError, InvalidImageError
from ..core.permissions import PERM_SUBMIT_REPORTS, PERM_VIEW_ALL_REPORTS, PERM_VIEW_OWN_REPORTS, has_permission
from ..core.security import get_current_user, get_current_user_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])


class ReportCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_data: str = Field(..., alias="imageData", min_length=1)
    notes: Optional[str] = None
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    captured_at: datetime = Field(..., alias="capturedAt")
    idempotency_key: Optional[str] = Field(None, alias="idempotencyKey", max_length=100)
    is_offline_submission: bool = Field(False, alias="isOfflineSubmission")


class ReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    unit_id: str
    image_path: Optional[str]
    image_hash: Optional[str]
    notes: Optional[str]
    latitude: float
    longitude: float
    captured_at: datetime
    submitted_at: datetime
    is_offline_submission: bool
    idempotency_key: str


class ReportCreateResponse(BaseModel):
    success: bool = True
    duplicate: bool = False
    report: ReportResponse


def _to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _resolve_idempotency_key(body_key: Optional[str], header_key: Optional[str]) -> str:
    if body_key and header_key and body_key != header_key:
        raise HTTPException(status_code=400, detail="Idempotency key mismatch between header and body")
    key = body_key or header_key
    if not key:
        raise HTTPException(status_code=400, detail="Missing idempotency key")
    return key


def _find_by_key(db: Session, key: str) -> Optional[Report]:
    return db.query(Report).filter(Report.idempotency_key == key).first()


def _replay(existing: Report, user_id: str, response: Response) -> ReportCreateResponse:
    """Answer a repeated submission with the row created by the first one."""
    if existing.user_id != user_id:
        raise HTTPException(status_code=409, detail="Idempotency key already used")
    logger.info("Duplicate submission for key %s, returning report %s", existing.idempotency_key, existing.id)
    response.status_code = status.HTTP_200_OK
    return ReportCreateResponse(duplicate=True, report=ReportResponse.model_validate(existing))


def _require_view(profile: Profile) -> None:
    if not has_permission(profile.role, PERM_VIEW_OWN_REPORTS):
        raise HTTPException(status_code=403, detail="Role cannot view reports")


@router.post("", response_model=ReportCreateResponse, status_code=status.HTTP_201_CREATED)
def create_report(
    req: ReportCreateRequest,
    response: Response,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """
    Create a patrol report.
    Safe to call more than once with the same idempotency key: only the first
    call creates a row, later calls get that row back with ``duplicate=True``.
    """
    key = _resolve_idempotency_key(req.idempotency_key, idempotency_key)

    profile = db.query(Profile).filter(Profile.id == user_id).first()
    if not profile or not profile.assigned_unit_id:
        raise HTTPException(status_code=403, detail="User not assigned to any unit")
    if not has_permission(profile.role, PERM_SUBMIT_REPORTS):
        raise HTTPException(status_code=403, detail="Role cannot submit reports")

    existing = _find_by_key(db, key)
    if existing:
        return _replay(existing, user_id, response)

    try:
        image_bytes = decode_image_data(req.image_data)
    except ImageTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))
    except InvalidImageError as e:
        raise HTTPException(status_code=400, detail=str(e))

    report = Report(
        id=generate_uuid(),
        user_id=user_id,
        unit_id=profile.assigned_unit_id,
        notes=req.notes,
        latitude=req.latitude,
        longitude=req.longitude,
        captured_at=_to_utc_naive(req.captured_at),
        submitted_at=datetime.utcnow(),
        is_offline_submission=req.is_offline_submission,
        idempotency_key=key,
    )

    # Claim the key before writing the photo so a losing racer stores nothing
    db.add(report)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        existing = _find_by_key(db, key)
        if not existing:
            raise
        return _replay(existing, user_id, response)

    try:
        img_result = image_storage.store(
            image_data=image_bytes,
            unit_id=report.unit_id,
            report_id=report.id,
        )
    except OSError:
        db.rollback()
        logger.exception("Image storage failed for report %s", report.id)
        raise HTTPException(status_code=500, detail="Image storage failed")
    report.image_path = img_result["image_path"]
    report.image_hash = img_result["image_hash"]
    db.commit()
    db.refresh(report)

    logger.info("Report %s created by %s for unit %s", report.id, user_id, report.unit_id)
    return ReportCreateResponse(report=ReportResponse.model_validate(report))


@router.get("", response_model=List[ReportResponse])
def list_reports(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    """Officers see their own reports; admins see every report. Newest capture first."""
    _require_view(current_user)
    q = db.query(Report)
    if not has_permission(current_user.role, PERM_VIEW_ALL_REPORTS):
        q = q.filter(Report.user_id == current_user.id)
    return q.order_by(Report.captured_at.desc()).offset(skip).limit(limit).all()


@router.get("/{report_id}", response_model=ReportResponse)
def get_report(
    report_id: str,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    _require_view(current_user)
    report = db.query(Report).filter(Report.id == report_id).first()
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")
    if report.user_id != current_user.id and not has_permission(current_user.role, PERM_VIEW_ALL_REPORTS):
        raise HTTPException(status_code=404, detail="Report not found")
    return report
