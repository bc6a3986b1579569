"""
Clock event service: clock-in/out against a roster entry.

Validates staff and roster entry, the shift window (start - grace .. end + grace)
and the location policy, appends an immutable ClockEvent and drives the grant
ledger in the same transaction. All timestamps are server UTC time.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    LocationPolicyError,
    LocationRequiredError,
    MismatchError,
    OutOfRangeError,
    RosterEntryStateError,
    ShiftWindowError,
    StaffInactiveError,
)
from app.models.access_grant import AccessGrant, GrantType
from app.models.audit_log import AuditAction, AuditResourceType
from app.models.clock_event import ClockEvent, ClockEventType
from app.models.property import Property
from app.models.roster import RosterEntry, RosterStatus
from app.models.staff import Staff
from app.schemas.clock import GeoLocation
from app.schemas.rbac import GlobalRBACSettings
from app.services import access_grant_service, audit_service, directory_service, rbac_config_service, rbac_events
from app.services.grant_locks import grant_key, grant_locks
from app.utils.datetime_utils import ensure_utc, minutes, now_utc
from app.utils.geo import haversine_meters
from app.utils.json_serializer import sanitize_for_json

logger = logging.getLogger(__name__)


@dataclass
class ClockResult:
    event: ClockEvent
    rbac_applied: bool
    grant: Optional[AccessGrant] = None
    revoked_grants: List[AccessGrant] = field(default_factory=list)


def _label(event_type: ClockEventType) -> str:
    return "clock-in" if event_type == ClockEventType.CLOCK_IN else "clock-out"


def _distance_to_property(location: Optional[GeoLocation], prop: Property) -> Optional[float]:
    if location is None or not prop.has_coordinates:
        return None
    return haversine_meters(location.lat, location.lng, prop.latitude, prop.longitude)


def _audit_rejection(
    db: Session,
    error: Exception,
    global_settings: GlobalRBACSettings,
    staff: Staff,
    roster_entry: RosterEntry,
    event_type: ClockEventType,
    now: datetime,
    ip_address: Optional[str],
    user_agent: Optional[str],
) -> None:
    """Audit a rejected clock event as access_denied and commit the entry"""
    try:
        audit_service.audit_decision(
            db,
            global_settings,
            organization_id=staff.organization_id,
            action=AuditAction.ACCESS_DENIED,
            resource_type=AuditResourceType.PROPERTY,
            resource_id=roster_entry.property_id,
            staff_id=staff.id,
            actor_id=staff.id,
            reason=f"{_label(event_type).capitalize()} rejected: {error}",
            ip_address=ip_address,
            user_agent=user_agent,
            meta={"roster_entry_id": roster_entry.id, "attempted_at": now, **getattr(error, "extra", {})},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("%s rejected: staff=%s roster_entry=%s: %s", _label(event_type), staff.id, roster_entry.id, error)


def _check_shift_window(
    event_type: ClockEventType,
    roster_entry: RosterEntry,
    grace_period_minutes: int,
    now: datetime,
) -> Optional[ShiftWindowError]:
    grace = minutes(grace_period_minutes)
    start = ensure_utc(roster_entry.start_time)
    end = ensure_utc(roster_entry.end_time)

    if event_type == ClockEventType.CLOCK_IN and now < start - grace:
        return ShiftWindowError(
            f"Too early to clock in; earliest is {(start - grace).isoformat()}",
            earliest=(start - grace).isoformat(),
        )
    # Early finish is always allowed for clock-out, so only the upper bound applies to both
    if now > end + grace:
        return ShiftWindowError(
            f"Too late to {_label(event_type)}; latest was {(end + grace).isoformat()}",
            latest=(end + grace).isoformat(),
        )
    return None


def _check_location(
    event_type: ClockEventType,
    location: Optional[GeoLocation],
    distance: Optional[float],
    global_settings: GlobalRBACSettings,
    staff: Staff,
    prop: Property,
) -> Optional[LocationPolicyError]:
    if location is not None and location.is_mocked is True and settings.REJECT_MOCKED_LOCATION:
        return LocationPolicyError(f"Mock location is not allowed for {_label(event_type)}")

    out_of_range = distance is not None and distance > global_settings.max_distance_meters

    if global_settings.require_location:
        if location is None:
            return LocationRequiredError(f"Location is required to {_label(event_type)}")
        if out_of_range:
            return OutOfRangeError(
                f"Location is {distance:.0f} m from {prop.name}; maximum is {global_settings.max_distance_meters} m",
                distance_meters=round(distance, 1),
                max_distance_meters=global_settings.max_distance_meters,
            )
    elif out_of_range:
        logger.warning(
            "%s outside allowed range (advisory): staff=%s property=%s distance=%.0fm max=%sm",
            _label(event_type), staff.id, prop.id, distance, global_settings.max_distance_meters,
        )
    return None


def _record(
    db: Session,
    event_type: ClockEventType,
    staff_id: int,
    roster_entry_id: int,
    location: Optional[GeoLocation],
    now: Optional[datetime],
    ip_address: Optional[str],
    user_agent: Optional[str],
    notes: Optional[str],
) -> ClockResult:
    now = ensure_utc(now) or now_utc()

    staff = directory_service.get_staff(db, staff_id)
    roster_entry = directory_service.get_roster_entry(db, roster_entry_id)
    if roster_entry.staff_id != staff.id:
        raise MismatchError(f"Roster entry {roster_entry_id} is not assigned to staff {staff_id}")
    if not staff.is_active:
        raise StaffInactiveError(f"Staff {staff_id} is {staff.status} and cannot {_label(event_type)}")
    if roster_entry.status == RosterStatus.CANCELLED.value:
        raise RosterEntryStateError(f"Roster entry {roster_entry_id} is cancelled")

    prop = directory_service.get_property(db, roster_entry.property_id)
    config = rbac_config_service.get_config(db, staff.organization_id)
    global_settings = config.global_settings

    window_error = _check_shift_window(event_type, roster_entry, global_settings.grace_period_minutes, now)
    if window_error is not None:
        _audit_rejection(db, window_error, global_settings, staff, roster_entry, event_type, now, ip_address, user_agent)
        raise window_error

    distance = _distance_to_property(location, prop)
    location_error = _check_location(event_type, location, distance, global_settings, staff, prop)
    if location_error is not None:
        _audit_rejection(db, location_error, global_settings, staff, roster_entry, event_type, now, ip_address, user_agent)
        raise location_error

    rbac_applied = rbac_config_service.is_rbac_applicable(db, staff, config)
    grant = None
    revoked: List[AccessGrant] = []

    with grant_locks.hold(grant_key(staff.id, prop.id)):
        try:
            event = ClockEvent(
                organization_id=staff.organization_id,
                staff_id=staff.id,
                roster_entry_id=roster_entry.id,
                event_type=event_type,
                event_at=now,
                location_lat=location.lat if location else None,
                location_lng=location.lng if location else None,
                location_accuracy=location.accuracy if location else None,
                distance_meters=round(distance, 1) if distance is not None else None,
                notes=notes,
                meta_json=sanitize_for_json({
                    "ip_address": ip_address,
                    "user_agent": user_agent,
                    "is_mocked": location.is_mocked if location else None,
                    "rbac_applied": rbac_applied,
                }),
            )
            db.add(event)
            db.flush()

            if event_type == ClockEventType.CLOCK_IN:
                if rbac_applied:
                    grant = access_grant_service.grant_access(
                        db,
                        staff.id,
                        prop.id,
                        roster_entry.id,
                        GrantType.RBAC_AUTOMATIC,
                        clock_event_id=event.id,
                        now=now,
                        config=config,
                        commit=False,
                    )
                else:
                    audit_service.audit_decision(
                        db,
                        global_settings,
                        organization_id=staff.organization_id,
                        action=AuditAction.ACCESS_GRANTED,
                        resource_type=AuditResourceType.PROPERTY,
                        resource_id=prop.id,
                        staff_id=staff.id,
                        actor_id=staff.id,
                        reason=f"Clocked in for roster entry {roster_entry.id}; staff is exempt from "
                               "access control, no grant issued",
                        ip_address=ip_address,
                        user_agent=user_agent,
                        meta={"clock_event_id": event.id, "roster_entry_id": roster_entry.id},
                    )
            else:
                # Revoke even for exempt staff so a grant from before a config change does not linger
                revoked = access_grant_service.revoke_access(
                    db,
                    staff.id,
                    prop.id,
                    reason=f"Clocked out of roster entry {roster_entry.id}",
                    now=now,
                    config=config,
                    commit=False,
                )
                if not revoked:
                    why = "staff is exempt from access control" if not rbac_applied else "no active grant to revoke"
                    audit_service.audit_decision(
                        db,
                        global_settings,
                        organization_id=staff.organization_id,
                        action=AuditAction.ACCESS_REVOKED,
                        resource_type=AuditResourceType.PROPERTY,
                        resource_id=prop.id,
                        staff_id=staff.id,
                        actor_id=staff.id,
                        reason=f"Clocked out of roster entry {roster_entry.id}; {why}",
                        ip_address=ip_address,
                        user_agent=user_agent,
                        meta={"clock_event_id": event.id, "roster_entry_id": roster_entry.id},
                    )

            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(event)
    if grant is not None:
        db.refresh(grant)
    for revoked_grant in revoked:
        db.refresh(revoked_grant)

    logger.info(
        "%s recorded: staff=%s roster_entry=%s property=%s rbac=%s distance=%s",
        _label(event_type), staff.id, roster_entry.id, prop.id, rbac_applied,
        event.distance_meters,
    )
    _notify(global_settings, event_type, staff, prop, event, grant, revoked)
    return ClockResult(event=event, rbac_applied=rbac_applied, grant=grant, revoked_grants=revoked)


def _notify(
    global_settings: GlobalRBACSettings,
    event_type: ClockEventType,
    staff: Staff,
    prop: Property,
    event: ClockEvent,
    grant: Optional[AccessGrant],
    revoked: List[AccessGrant],
) -> None:
    notifications = global_settings.notifications
    common = {"organization_id": staff.organization_id, "staff_id": staff.id, "property_id": prop.id}

    rbac_events.emit_rbac_event(
        notifications,
        rbac_events.CLOCK_IN if event_type == ClockEventType.CLOCK_IN else rbac_events.CLOCK_OUT,
        payload={"clock_event_id": event.id, "roster_entry_id": event.roster_entry_id},
        **common,
    )
    if grant is not None:
        rbac_events.emit_rbac_event(
            notifications,
            rbac_events.ACCESS_GRANTED,
            payload={"grant_id": grant.id, "grant_type": grant.grant_type},
            **common,
        )
    if revoked:
        rbac_events.emit_rbac_event(
            notifications,
            rbac_events.ACCESS_REVOKED,
            payload={"grant_ids": [g.id for g in revoked]},
            **common,
        )


def clock_in(
    db: Session,
    staff_id: int,
    roster_entry_id: int,
    location: Optional[GeoLocation] = None,
    now: Optional[datetime] = None,
    *,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    notes: Optional[str] = None,
) -> ClockResult:
    """
    Clock in against a roster entry.

    Valid from shift start minus grace to shift end plus grace, inclusive. If
    access control applies to the staff member an rbac_automatic grant anchored
    to the new clock event is issued in the same transaction.

    Raises:
        NotFoundError, MismatchError, StaffInactiveError, RosterEntryStateError:
            Invalid staff or roster entry
        ShiftWindowError: Outside the shift window (denial is audited)
        LocationPolicyError: Rejected by the location policy (denial is audited)
    """
    return _record(db, ClockEventType.CLOCK_IN, staff_id, roster_entry_id, location, now, ip_address, user_agent, notes)


def clock_out(
    db: Session,
    staff_id: int,
    roster_entry_id: int,
    location: Optional[GeoLocation] = None,
    now: Optional[datetime] = None,
    *,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    notes: Optional[str] = None,
) -> ClockResult:
    """
    Clock out of a roster entry and revoke the staff member's grants for its property.

    Allowed any time up to shift end plus grace. Without an active grant this
    still records the clock event.
    """
    return _record(db, ClockEventType.CLOCK_OUT, staff_id, roster_entry_id, location, now, ip_address, user_agent, notes)
