"""
Access schemas: accessible properties/clients, grants, monitoring projection
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from app.models.access_grant import GrantType
from app.schemas.audit import AccessAuditLogOut
from app.utils.datetime_utils import iso_8601_utc


class PropertyOut(BaseModel):
    id: int
    organization_id: int
    name: str
    address: Optional[str] = None
    property_type: str
    status: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    model_config = ConfigDict(from_attributes=True)


class ClientOut(BaseModel):
    id: int
    organization_id: int
    property_id: int
    name: str
    status: str

    model_config = ConfigDict(from_attributes=True)


class AccessGrantOut(BaseModel):
    """Access grant output. Datetimes in UTC (Z)."""

    id: int
    organization_id: int
    staff_id: int
    property_id: int
    roster_entry_id: int
    clock_event_id: Optional[int] = None
    grant_type: GrantType
    granted_at: datetime
    revoked_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    granted_by: Optional[int] = None
    revoked_by: Optional[int] = None
    revoke_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("granted_at", "revoked_at", "expires_at", when_used="always")
    @classmethod
    def _ser_datetime(cls, dt: Optional[datetime]) -> Optional[str]:
        return iso_8601_utc(dt)


class ManualGrantRequest(BaseModel):
    """Administrative out-of-band grant"""

    staff_id: int
    property_id: int
    roster_entry_id: int
    grant_type: GrantType = GrantType.MANUAL
    expires_at: Optional[datetime] = None
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("grant_type")
    @classmethod
    def check_grant_type(cls, v: GrantType) -> GrantType:
        if v == GrantType.RBAC_AUTOMATIC:
            raise ValueError("rbac_automatic grants are only issued by clock-in")
        return v


class RevokeRequest(BaseModel):
    staff_id: int
    property_id: int
    reason: Optional[str] = Field(None, max_length=500)


class RevokeResponse(BaseModel):
    revoked: List[AccessGrantOut]


class ExpireSweepResponse(BaseModel):
    revoked_count: int


class AccessRequestIn(BaseModel):
    property_id: int
    roster_entry_id: Optional[int] = None
    reason: Optional[str] = Field(None, max_length=500)
    request_type: str = Field(default="manual", pattern="^(automatic|manual|emergency)$")


class AccessRequestOut(BaseModel):
    recorded: bool
    entry: Optional[AccessAuditLogOut] = None


class StaffAccessOut(BaseModel):
    staff_id: int
    exempt: bool
    properties: List[PropertyOut]
    clients: List[ClientOut]


class CurrentAccessOut(BaseModel):
    """One row of the live monitoring dashboard"""

    staff_id: int
    staff_name: str
    property_id: int
    property_name: str
    roster_entry_id: int
    start_time: datetime
    end_time: datetime
    last_clock_event: Optional[datetime] = None
    access_granted_at: datetime
    grant_type: GrantType
    expires_at: Optional[datetime] = None

    @field_serializer("start_time", "end_time", "last_clock_event", "access_granted_at", "expires_at", when_used="always")
    @classmethod
    def _ser_datetime(cls, dt: Optional[datetime]) -> Optional[str]:
        return iso_8601_utc(dt)
