"""
Access audit log model (append-only)
"""
import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship

from app.db.base import Base
from app.utils.enums import enum_values


class AuditAction(str, enum.Enum):
    ACCESS_GRANTED = "access_granted"
    ACCESS_REVOKED = "access_revoked"
    ACCESS_DENIED = "access_denied"
    ACCESS_REQUESTED = "access_requested"


class AuditResourceType(str, enum.Enum):
    PROPERTY = "property"
    CLIENT = "client"
    DOCUMENT = "document"
    ROSTER = "roster"


class AccessAuditLog(Base):
    __tablename__ = "access_audit_logs"
    __table_args__ = (
        Index("ix_access_audit_logs_org_created", "organization_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=True, index=True)  # subject of the decision
    actor_id = Column(Integer, ForeignKey("staff.id"), nullable=True)  # null = system action
    action = Column(
        SQLEnum(AuditAction, name="audit_action", values_callable=enum_values),
        nullable=False,
    )
    resource_type = Column(
        SQLEnum(AuditResourceType, name="audit_resource_type", values_callable=enum_values),
        nullable=False,
    )
    resource_id = Column(Integer, nullable=True, index=True)
    reason = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    meta_json = Column(JSON, nullable=True)
    # Set explicitly on insert; SQLite server defaults lose sub-second ordering
    created_at = Column(DateTime(timezone=True), nullable=False)

    staff = relationship("Staff", foreign_keys=[staff_id])
