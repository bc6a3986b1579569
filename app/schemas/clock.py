"""
Clock event schemas
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from app.models.clock_event import ClockEventType
from app.schemas.access import AccessGrantOut
from app.utils.datetime_utils import iso_8601_utc


class GeoLocation(BaseModel):
    """Location fix reported by the device"""

    lat: float = Field(..., ge=-90, le=90, description="Latitude")
    lng: float = Field(..., ge=-180, le=180, description="Longitude")
    accuracy: Optional[float] = Field(None, gt=0, description="Accuracy in meters")
    is_mocked: Optional[bool] = Field(None, description="True if the OS reports a mock location provider")


class ClockRequest(BaseModel):
    """Clock-in/out request for the current staff member"""

    roster_entry_id: int
    location: Optional[GeoLocation] = None
    notes: Optional[str] = Field(None, max_length=1000)


class ClockEventOut(BaseModel):
    id: int
    organization_id: int
    staff_id: int
    roster_entry_id: int
    event_type: ClockEventType
    event_at: datetime
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    location_accuracy: Optional[float] = None
    distance_meters: Optional[float] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("event_at", when_used="always")
    @classmethod
    def _ser_datetime(cls, dt: Optional[datetime]) -> Optional[str]:
        return iso_8601_utc(dt)


class ClockResultOut(BaseModel):
    event: ClockEventOut
    rbac_applied: bool
    grant: Optional[AccessGrantOut] = None
    revoked_grants: List[AccessGrantOut] = Field(default_factory=list)
