"""
Clock event model (immutable clock-in/out log against a roster entry)
"""
import enum

from sqlalchemy import Column, Integer, Float, Text, DateTime, ForeignKey, JSON, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.db.base import Base
from app.utils.enums import enum_values


class ClockEventType(str, enum.Enum):
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"


class ClockEvent(Base):
    __tablename__ = "clock_events"
    __table_args__ = (
        Index("ix_clock_events_staff_roster", "staff_id", "roster_entry_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False)
    roster_entry_id = Column(Integer, ForeignKey("roster_entries.id"), nullable=False)
    event_type = Column(
        SQLEnum(ClockEventType, name="clock_event_type", values_callable=enum_values),
        nullable=False,
    )
    event_at = Column(DateTime(timezone=True), nullable=False)
    location_lat = Column(Float, nullable=True)
    location_lng = Column(Float, nullable=True)
    location_accuracy = Column(Float, nullable=True)
    distance_meters = Column(Float, nullable=True)  # set when both event and property have coordinates
    notes = Column(Text, nullable=True)
    meta_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)

    staff = relationship("Staff")
    roster_entry = relationship("RosterEntry")
