"""
Monitoring service: live access projection and access history for admins
"""
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.access_grant import AccessGrant
from app.models.audit_log import AccessAuditLog
from app.models.clock_event import ClockEvent, ClockEventType
from app.models.property import Property
from app.models.roster import RosterEntry
from app.models.staff import Staff
from app.schemas.access import CurrentAccessOut
from app.schemas.audit import AccessHistoryFilters
from app.services import audit_service, directory_service
from app.services.access_grant_service import is_grant_active
from app.utils.datetime_utils import ensure_utc, now_utc


def get_current_access(
    db: Session,
    organization_id: int,
    now: Optional[datetime] = None,
) -> List[CurrentAccessOut]:
    """
    One row per active, unexpired grant in the organization, newest grant first.

    last_clock_event is the staff member's latest clock-in for the grant's roster entry.
    """
    directory_service.get_organization(db, organization_id)
    now = ensure_utc(now) or now_utc()

    rows = (
        db.query(AccessGrant, Staff, Property, RosterEntry)
        .join(Staff, Staff.id == AccessGrant.staff_id)
        .join(Property, Property.id == AccessGrant.property_id)
        .join(RosterEntry, RosterEntry.id == AccessGrant.roster_entry_id)
        .filter(
            AccessGrant.organization_id == organization_id,
            AccessGrant.revoked_at.is_(None),
        )
        .order_by(AccessGrant.granted_at.desc(), AccessGrant.id.desc())
        .all()
    )

    result = []
    for grant, staff, prop, roster_entry in rows:
        if not is_grant_active(grant, now):
            continue
        last_clock_in = (
            db.query(func.max(ClockEvent.event_at))
            .filter(
                ClockEvent.staff_id == staff.id,
                ClockEvent.roster_entry_id == roster_entry.id,
                ClockEvent.event_type == ClockEventType.CLOCK_IN,
            )
            .scalar()
        )
        result.append(
            CurrentAccessOut(
                staff_id=staff.id,
                staff_name=staff.name,
                property_id=prop.id,
                property_name=prop.name,
                roster_entry_id=roster_entry.id,
                start_time=ensure_utc(roster_entry.start_time),
                end_time=ensure_utc(roster_entry.end_time),
                last_clock_event=ensure_utc(last_clock_in),
                access_granted_at=ensure_utc(grant.granted_at),
                grant_type=grant.grant_type,
                expires_at=ensure_utc(grant.expires_at),
            )
        )
    return result


def get_access_history(
    db: Session,
    organization_id: int,
    filters: Optional[AccessHistoryFilters] = None,
) -> Tuple[List[AccessAuditLog], int]:
    """
    Paginated audit trail of an organization, newest first.

    Returns:
        (entries for the requested page, total matching entries)
    """
    directory_service.get_organization(db, organization_id)
    filters = filters or AccessHistoryFilters()
    entries = audit_service.query_access_log(db, organization_id, filters)
    total = audit_service.count_access_log(db, organization_id, filters)
    return entries, total
