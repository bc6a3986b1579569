"""
Access grant ledger: grant, revoke and expire AccessGrant rows.

For a (staff_id, property_id) key at most one grant has revoked_at NULL. Every
mutation of a key runs under its KeyedLock; the active-grant scan locks rows
where the dialect supports FOR UPDATE, and the partial unique index rejects
anything that slips past both (another process). Grants are never deleted.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import GrantConflictError, GrantValidationError, MismatchError
from app.models.access_grant import AccessGrant, GrantType
from app.models.audit_log import AuditAction, AuditResourceType
from app.models.property import Property
from app.models.roster import RosterEntry
from app.models.staff import Staff
from app.schemas.rbac import GlobalRBACSettings, RBACConfig
from app.services import audit_service, directory_service, rbac_config_service, rbac_events
from app.services.grant_locks import grant_key, grant_locks
from app.utils.datetime_utils import ensure_utc, minutes, now_utc

logger = logging.getLogger(__name__)

REASON_EXPIRED = "expired"
REASON_SUPERSEDED = "superseded"


def is_grant_active(grant: AccessGrant, now: Optional[datetime] = None) -> bool:
    """Not revoked and not past its expiry"""
    if grant.revoked_at is not None:
        return False
    if grant.expires_at is None:
        return True
    return ensure_utc(grant.expires_at) > (ensure_utc(now) or now_utc())


def _active_grants(db: Session, staff_id: int, property_id: int) -> List[AccessGrant]:
    return (
        db.query(AccessGrant)
        .filter(
            AccessGrant.staff_id == staff_id,
            AccessGrant.property_id == property_id,
            AccessGrant.revoked_at.is_(None),
        )
        .order_by(AccessGrant.id)
        .with_for_update()
        .all()
    )


def _revoke_rows(
    grants: List[AccessGrant],
    now: datetime,
    reason: str,
    revoked_by: Optional[int],
) -> None:
    for grant in grants:
        grant.revoked_at = now
        grant.revoke_reason = reason
        grant.revoked_by = revoked_by


def _check_membership(staff: Staff, prop: Property, roster_entry: RosterEntry) -> None:
    if prop.organization_id != staff.organization_id:
        raise MismatchError(f"Property {prop.id} is not part of staff {staff.id}'s organization")
    if roster_entry.organization_id != staff.organization_id:
        raise MismatchError(f"Roster entry {roster_entry.id} is not part of staff {staff.id}'s organization")
    if roster_entry.staff_id != staff.id:
        raise MismatchError(f"Roster entry {roster_entry.id} is not assigned to staff {staff.id}")
    if roster_entry.property_id != prop.id:
        raise MismatchError(f"Roster entry {roster_entry.id} is not scheduled at property {prop.id}")


def _resolve_expiry(
    grant_type: GrantType,
    expires_at: Optional[datetime],
    roster_entry: RosterEntry,
    global_settings: GlobalRBACSettings,
    now: datetime,
) -> Optional[datetime]:
    """
    Expiry policy:
    - rbac_automatic: never expires, clock-out revokes it
    - temporary: explicit expires_at required
    - manual: explicit expires_at, else end of shift plus grace when
      manual_grants_expire_with_shift is on, else no expiry
    """
    expires_at = ensure_utc(expires_at)

    if grant_type == GrantType.RBAC_AUTOMATIC:
        if expires_at is not None:
            raise GrantValidationError("Automatic grants do not carry an expiry; clock-out revokes them")
        return None

    if grant_type == GrantType.TEMPORARY and expires_at is None:
        raise GrantValidationError("Temporary grants require expires_at")

    if expires_at is None and global_settings.manual_grants_expire_with_shift:
        expires_at = ensure_utc(roster_entry.end_time) + minutes(global_settings.grace_period_minutes)

    if expires_at is not None and expires_at <= now:
        raise GrantValidationError(
            f"Grant would already be expired (expires_at {expires_at.isoformat()})",
            expires_at=expires_at.isoformat(),
        )
    return expires_at


def _default_grant_reason(grant_type: GrantType, roster_entry_id: int, granted_by: Optional[int]) -> str:
    if grant_type == GrantType.RBAC_AUTOMATIC:
        return f"Clocked in for roster entry {roster_entry_id}"
    if granted_by is not None:
        return f"{grant_type.value.capitalize()} grant by staff {granted_by} for roster entry {roster_entry_id}"
    return f"{grant_type.value.capitalize()} grant for roster entry {roster_entry_id}"


def grant_access(
    db: Session,
    staff_id: int,
    property_id: int,
    roster_entry_id: int,
    grant_type: GrantType,
    *,
    clock_event_id: Optional[int] = None,
    expires_at: Optional[datetime] = None,
    granted_by: Optional[int] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    config: Optional[RBACConfig] = None,
    commit: bool = True,
) -> AccessGrant:
    """
    Grant staff access to a property, superseding any active grant for the pair.

    Superseded grants are revoked (not deleted) and named in the audit entry's
    reason. With commit=False the caller owns the transaction and must hold the
    key's lock until it commits.

    Raises:
        NotFoundError: Unknown staff, property or roster entry
        MismatchError: Staff, property and roster entry do not belong together
        GrantValidationError: Expiry not allowed for the grant type
        GrantConflictError: A concurrent writer holds the active grant (retry)
        AuditWriteError: Audit write failed in strict mode
    """
    now = ensure_utc(now) or now_utc()
    grant_type = GrantType(grant_type)

    staff = directory_service.get_staff(db, staff_id)
    prop = directory_service.get_property(db, property_id)
    roster_entry = directory_service.get_roster_entry(db, roster_entry_id)
    _check_membership(staff, prop, roster_entry)

    if config is None:
        config = rbac_config_service.get_config(db, staff.organization_id)
    expires_at = _resolve_expiry(grant_type, expires_at, roster_entry, config.global_settings, now)
    reason = reason or _default_grant_reason(grant_type, roster_entry_id, granted_by)

    with grant_locks.hold(grant_key(staff_id, property_id)):
        try:
            superseded = _active_grants(db, staff_id, property_id)
            _revoke_rows(superseded, now, REASON_SUPERSEDED, granted_by)
            # Revocations must reach the database before the insert or the partial index trips
            db.flush()

            grant = AccessGrant(
                organization_id=staff.organization_id,
                staff_id=staff_id,
                property_id=property_id,
                roster_entry_id=roster_entry_id,
                clock_event_id=clock_event_id,
                grant_type=grant_type,
                granted_at=now,
                expires_at=expires_at,
                granted_by=granted_by,
            )
            db.add(grant)
            db.flush()

            superseded_ids = [g.id for g in superseded]
            audit_reason = reason
            if superseded_ids:
                audit_reason = f"{reason} (superseded grant(s) {', '.join(str(i) for i in superseded_ids)})"
            audit_service.audit_decision(
                db,
                config.global_settings,
                organization_id=staff.organization_id,
                action=AuditAction.ACCESS_GRANTED,
                resource_type=AuditResourceType.PROPERTY,
                resource_id=property_id,
                staff_id=staff_id,
                actor_id=granted_by,
                reason=audit_reason,
                meta={
                    "grant_id": grant.id,
                    "grant_type": grant_type,
                    "roster_entry_id": roster_entry_id,
                    "clock_event_id": clock_event_id,
                    "expires_at": expires_at,
                    "superseded_grant_ids": superseded_ids,
                },
            )

            if commit:
                db.commit()
                db.refresh(grant)
        except IntegrityError as exc:
            db.rollback()
            logger.warning("Grant conflict for staff %s property %s: %s", staff_id, property_id, exc)
            raise GrantConflictError(
                f"Staff {staff_id} already holds an active grant for property {property_id}; retry",
                staff_id=staff_id,
                property_id=property_id,
            ) from exc
        except Exception:
            db.rollback()
            raise

    logger.info(
        "Access granted: staff=%s property=%s grant=%s type=%s superseded=%s",
        staff_id, property_id, grant.id, grant_type.value, superseded_ids,
    )
    if commit:
        rbac_events.emit_rbac_event(
            config.global_settings.notifications,
            rbac_events.ACCESS_GRANTED,
            organization_id=staff.organization_id,
            staff_id=staff_id,
            property_id=property_id,
            payload={"grant_id": grant.id, "grant_type": grant_type},
        )
    return grant


def revoke_access(
    db: Session,
    staff_id: int,
    property_id: int,
    *,
    reason: Optional[str] = None,
    revoked_by: Optional[int] = None,
    now: Optional[datetime] = None,
    config: Optional[RBACConfig] = None,
    commit: bool = True,
) -> List[AccessGrant]:
    """
    Revoke every active grant of staff for a property.

    Returns the revoked grants. With nothing active this is a no-op returning []
    and no audit entry is written.

    Raises:
        NotFoundError: Unknown staff or property
        AuditWriteError: Audit write failed in strict mode
    """
    now = ensure_utc(now) or now_utc()
    staff = directory_service.get_staff(db, staff_id)
    directory_service.get_property(db, property_id)

    if config is None:
        config = rbac_config_service.get_config(db, staff.organization_id)
    reason = reason or ("Revoked by staff %s" % revoked_by if revoked_by is not None else "Revoked")

    with grant_locks.hold(grant_key(staff_id, property_id)):
        try:
            revoked = _active_grants(db, staff_id, property_id)
            if not revoked:
                logger.debug("No active grant to revoke: staff=%s property=%s", staff_id, property_id)
                return []

            _revoke_rows(revoked, now, reason, revoked_by)
            db.flush()

            audit_service.audit_decision(
                db,
                config.global_settings,
                organization_id=staff.organization_id,
                action=AuditAction.ACCESS_REVOKED,
                resource_type=AuditResourceType.PROPERTY,
                resource_id=property_id,
                staff_id=staff_id,
                actor_id=revoked_by,
                reason=reason,
                meta={
                    "grant_ids": [g.id for g in revoked],
                    "roster_entry_ids": sorted({g.roster_entry_id for g in revoked}),
                },
            )

            if commit:
                db.commit()
                for grant in revoked:
                    db.refresh(grant)
        except Exception:
            db.rollback()
            raise

    logger.info(
        "Access revoked: staff=%s property=%s grants=%s reason=%s",
        staff_id, property_id, [g.id for g in revoked], reason,
    )
    if commit:
        rbac_events.emit_rbac_event(
            config.global_settings.notifications,
            rbac_events.ACCESS_REVOKED,
            organization_id=staff.organization_id,
            staff_id=staff_id,
            property_id=property_id,
            payload={"grant_ids": [g.id for g in revoked], "reason": reason},
        )
    return revoked


def expire_grants(
    db: Session,
    now: Optional[datetime] = None,
    organization_id: Optional[int] = None,
) -> int:
    """
    Sweep: stamp revoked_at on grants whose expiry has passed.

    Limited to one organization when organization_id is given.

    The resolver already ignores expired grants; this only makes the ledger
    reflect it. Each revocation is audited as a system action.

    Returns:
        Number of grants revoked
    """
    now = ensure_utc(now) or now_utc()
    query = db.query(AccessGrant).filter(AccessGrant.revoked_at.is_(None), AccessGrant.expires_at.isnot(None))
    if organization_id is not None:
        query = query.filter(AccessGrant.organization_id == organization_id)
    candidates = query.order_by(AccessGrant.id).all()
    # Compared in Python: SQLite returns naive datetimes
    expired = [g for g in candidates if ensure_utc(g.expires_at) <= now]

    count = 0
    for grant in expired:
        config = rbac_config_service.get_config(db, grant.organization_id)
        with grant_locks.hold(grant_key(grant.staff_id, grant.property_id)):
            try:
                db.refresh(grant)
                if grant.revoked_at is not None:
                    continue
                _revoke_rows([grant], now, REASON_EXPIRED, None)
                db.flush()
                audit_service.audit_decision(
                    db,
                    config.global_settings,
                    organization_id=grant.organization_id,
                    action=AuditAction.ACCESS_REVOKED,
                    resource_type=AuditResourceType.PROPERTY,
                    resource_id=grant.property_id,
                    staff_id=grant.staff_id,
                    actor_id=None,
                    reason=f"Grant {grant.id} expired at {ensure_utc(grant.expires_at).isoformat()}",
                    meta={"grant_ids": [grant.id], "grant_type": grant.grant_type},
                )
                db.commit()
            except Exception:
                db.rollback()
                raise
        count += 1
        rbac_events.emit_rbac_event(
            config.global_settings.notifications,
            rbac_events.ACCESS_REVOKED,
            organization_id=grant.organization_id,
            staff_id=grant.staff_id,
            property_id=grant.property_id,
            payload={"grant_ids": [grant.id], "reason": REASON_EXPIRED},
        )

    if count:
        logger.info("Expired %s access grant(s)", count)
    return count


def list_active_grants(db: Session, staff_id: int, now: Optional[datetime] = None) -> List[AccessGrant]:
    """Unrevoked, unexpired grants of a staff member"""
    grants = (
        db.query(AccessGrant)
        .filter(AccessGrant.staff_id == staff_id, AccessGrant.revoked_at.is_(None))
        .order_by(AccessGrant.id)
        .all()
    )
    return [g for g in grants if is_grant_active(g, now)]
