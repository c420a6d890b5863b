from sqlalchemy import Column, String, Text, ForeignKey
from sqlalchemy.orm import relationship
from .base import Base, TimestampMixin, generate_uuid


class UserRole:
    SECURITY = "security"
    ADMIN = "admin"

    ALL = [SECURITY, ADMIN]


class Unit(Base, TimestampMixin):
    """Organizational/physical security division that reports are attributed to."""
    __tablename__ = "units"

    id = Column(String, primary_key=True, default=generate_uuid)
    name = Column(String(200), unique=True, nullable=False)
    description = Column(Text, nullable=True)

    officers = relationship("Profile", back_populates="assigned_unit")


class Profile(Base, TimestampMixin):
    __tablename__ = "profiles"

    # Subject of the identity provider token, not generated here
    id = Column(String, primary_key=True)
    full_name = Column(String(200), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.SECURITY)
    assigned_unit_id = Column(String, ForeignKey("units.id"), nullable=True, index=True)

    assigned_unit = relationship("Unit", back_populates="officers")
