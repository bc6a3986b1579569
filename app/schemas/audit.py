"""
Access audit log schemas
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

from app.models.audit_log import AuditAction, AuditResourceType
from app.utils.datetime_utils import iso_8601_utc


class AccessAuditLogOut(BaseModel):
    id: int
    organization_id: int
    staff_id: Optional[int] = None
    actor_id: Optional[int] = None
    action: AuditAction
    resource_type: AuditResourceType
    resource_id: Optional[int] = None
    reason: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    meta_json: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("created_at", when_used="always")
    @classmethod
    def _ser_datetime(cls, dt: Optional[datetime]) -> Optional[str]:
        return iso_8601_utc(dt)


class AccessHistoryFilters(BaseModel):
    """Filters for the audit trail; every field is optional"""

    staff_id: Optional[int] = None
    resource_id: Optional[int] = None
    resource_type: Optional[AuditResourceType] = None
    action: Optional[AuditAction] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: Optional[int] = Field(None, ge=1, le=500)
    offset: int = Field(0, ge=0)

    @model_validator(mode="after")
    def check_range(self) -> "AccessHistoryFilters":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be less than or equal to end_date")
        return self


class AccessHistoryResponse(BaseModel):
    items: List[AccessAuditLogOut]
    total: int
