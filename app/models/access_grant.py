"""
Access grant model

At most one grant per (staff_id, property_id) may have revoked_at NULL; the
partial unique index below backs the ledger's per-key lock. Grants are never
deleted, revocation is a state transition.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, Enum as SQLEnum, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.db.base import Base
from app.utils.enums import enum_values


class GrantType(str, enum.Enum):
    RBAC_AUTOMATIC = "rbac_automatic"
    MANUAL = "manual"
    TEMPORARY = "temporary"


class AccessGrant(Base):
    __tablename__ = "access_grants"
    __table_args__ = (
        Index(
            "uq_access_grants_active_staff_property",
            "staff_id",
            "property_id",
            unique=True,
            postgresql_where=text("revoked_at IS NULL"),
            sqlite_where=text("revoked_at IS NULL"),
        ),
        Index("ix_access_grants_staff_revoked", "staff_id", "revoked_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False)
    roster_entry_id = Column(Integer, ForeignKey("roster_entries.id"), nullable=False)
    clock_event_id = Column(Integer, ForeignKey("clock_events.id"), nullable=True)  # null for manual grants
    grant_type = Column(
        SQLEnum(GrantType, name="grant_type", values_callable=enum_values),
        nullable=False,
    )
    granted_at = Column(DateTime(timezone=True), nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    granted_by = Column(Integer, ForeignKey("staff.id"), nullable=True)
    revoked_by = Column(Integer, ForeignKey("staff.id"), nullable=True)
    revoke_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)

    staff = relationship("Staff", foreign_keys=[staff_id])
    property = relationship("Property")
    roster_entry = relationship("RosterEntry")
    clock_event = relationship("ClockEvent")
