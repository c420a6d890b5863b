"""Profile endpoints: onboarding creates the caller's profile row."""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict

from ..models.base import get_db
from ..models.profile import Profile, Unit, UserRole
from ..core.security import get_current_user_id

router = APIRouter(prefix="/profile", tags=["profile"])


class ProfileCreateRequest(BaseModel):
    id: str
    full_name: str
    role: str = UserRole.SECURITY
    assigned_unit_id: Optional[str] = None


class ProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    full_name: Optional[str]
    role: str
    assigned_unit_id: Optional[str]


@router.post("", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
def create_profile(
    req: ProfileCreateRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Create the signed-in user's profile. The ID must match the token subject."""
    if req.id != user_id:
        raise HTTPException(status_code=400, detail="Invalid user ID")
    if req.role not in UserRole.ALL:
        raise HTTPException(status_code=400, detail="Unknown role")
    if db.query(Profile).filter(Profile.id == user_id).first():
        raise HTTPException(status_code=409, detail="Profile already exists")
    if req.assigned_unit_id and not db.query(Unit).filter(Unit.id == req.assigned_unit_id).first():
        raise HTTPException(status_code=400, detail="Unknown unit")

    profile = Profile(
        id=user_id,
        full_name=req.full_name,
        role=req.role,
        assigned_unit_id=req.assigned_unit_id,
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


@router.get("/me", response_model=ProfileResponse)
def get_my_profile(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    profile = db.query(Profile).filter(Profile.id == user_id).first()
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile
