"""
RBAC global settings model (one row per organization)
"""
from sqlalchemy import Column, Integer, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.db.base import Base


class RBACSettings(Base):
    __tablename__ = "rbac_settings"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, unique=True)

    # Audit write failure aborts the grant/revoke when on
    strict_mode = Column(Boolean, nullable=False, default=False)
    # Clock-in allowed this many minutes before shift start; clock-out until this long after shift end
    grace_period_minutes = Column(Integer, nullable=False, default=15)
    # Location policy (enforced only when require_location is on)
    require_location = Column(Boolean, nullable=False, default=False)
    max_distance_meters = Column(Integer, nullable=False, default=100)
    audit_logging = Column(Boolean, nullable=False, default=True)

    # Notification toggles
    notify_on_clock_in = Column(Boolean, nullable=False, default=True)
    notify_on_clock_out = Column(Boolean, nullable=False, default=True)
    notify_on_access_granted = Column(Boolean, nullable=False, default=True)
    notify_on_access_revoked = Column(Boolean, nullable=False, default=True)

    # Manual grants without explicit expiry end with the roster entry (plus grace)
    manual_grants_expire_with_shift = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp(), nullable=False)

    organization = relationship("Organization", back_populates="rbac_settings")
