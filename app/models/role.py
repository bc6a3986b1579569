"""
Role model

Per-organization role with its RBAC flags. bypasses_access_control marks
administrative roles that always see the whole organization.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.db.base import Base


class Role(Base):
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_roles_organization_name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    rbac_enabled = Column(Boolean, nullable=False, default=True)
    bypasses_access_control = Column(Boolean, nullable=False, default=False)
    permissions = Column(JSON, nullable=False, default=list)  # e.g. ["view_clients", "clock_in_out"]
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp(), nullable=False)

    organization = relationship("Organization", back_populates="roles")

    def has_permission(self, permission: str) -> bool:
        return permission in (self.permissions or [])
