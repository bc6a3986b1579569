"""
Accessibility resolver: which properties and clients a staff member may see now.

Exempt staff (bypass role, or RBAC off for the organization, role or staff
member) see their whole organization. Everyone else sees the properties of
their active, unexpired grants, and the clients living there. The boolean
checks are projections of the same property-id set, and nothing here writes
except the authorize_* helpers, which audit denials.
"""
import logging
from datetime import datetime
from typing import List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from app.core.errors import AccessDeniedError, MismatchError, RBACError
from app.models.access_grant import AccessGrant
from app.models.audit_log import AccessAuditLog, AuditAction, AuditResourceType
from app.models.property import Client, Property
from app.models.staff import Staff
from app.services import audit_service, directory_service, rbac_config_service
from app.utils.datetime_utils import ensure_utc, now_utc

logger = logging.getLogger(__name__)

REQUEST_TYPES = ("automatic", "manual", "emergency")


def is_exempt(db: Session, staff: Staff) -> bool:
    return not rbac_config_service.is_rbac_applicable(db, staff)


def _granted_property_ids(db: Session, staff: Staff, now: datetime) -> Set[int]:
    rows = (
        db.query(AccessGrant.property_id, AccessGrant.expires_at)
        .join(Property, Property.id == AccessGrant.property_id)
        .filter(
            AccessGrant.staff_id == staff.id,
            AccessGrant.revoked_at.is_(None),
            Property.organization_id == staff.organization_id,
        )
        .all()
    )
    return {
        property_id
        for property_id, expires_at in rows
        if expires_at is None or ensure_utc(expires_at) > now
    }


def _resolve(db: Session, staff_id: int, now: Optional[datetime]) -> Tuple[Staff, bool, Set[int]]:
    """(staff, exempt, granted property ids); the id set is empty for exempt staff"""
    staff = directory_service.get_staff(db, staff_id)
    if is_exempt(db, staff):
        return staff, True, set()
    return staff, False, _granted_property_ids(db, staff, ensure_utc(now) or now_utc())


def get_accessible_properties(db: Session, staff_id: int, now: Optional[datetime] = None) -> List[Property]:
    """
    Properties the staff member may access, ordered by id.

    Raises:
        NotFoundError: If the staff member does not exist
    """
    staff, exempt, property_ids = _resolve(db, staff_id, now)
    if exempt:
        return directory_service.list_properties(db, staff.organization_id)
    return directory_service.list_properties(db, staff.organization_id, property_ids)


def get_accessible_clients(db: Session, staff_id: int, now: Optional[datetime] = None) -> List[Client]:
    """Clients living at the staff member's accessible properties, ordered by id"""
    staff, exempt, property_ids = _resolve(db, staff_id, now)
    if exempt:
        return directory_service.list_clients(db, staff.organization_id)
    return directory_service.list_clients(db, staff.organization_id, property_ids)


def can_access_property(db: Session, staff_id: int, property_id: int, now: Optional[datetime] = None) -> bool:
    """False for unknown properties and properties of other organizations"""
    staff, exempt, property_ids = _resolve(db, staff_id, now)
    prop = db.get(Property, property_id)
    if prop is None or prop.organization_id != staff.organization_id:
        return False
    return exempt or property_id in property_ids


def can_access_client(db: Session, staff_id: int, client_id: int, now: Optional[datetime] = None) -> bool:
    client = db.get(Client, client_id)
    if client is None:
        # Still raises NotFoundError for an unknown staff member
        directory_service.get_staff(db, staff_id)
        return False
    return can_access_property(db, staff_id, client.property_id, now)


def _deny(
    db: Session,
    staff: Staff,
    resource_type: AuditResourceType,
    resource_id: int,
    reason: str,
    ip_address: Optional[str],
    user_agent: Optional[str],
) -> None:
    config = rbac_config_service.get_config(db, staff.organization_id)
    try:
        audit_service.audit_decision(
            db,
            config.global_settings,
            organization_id=staff.organization_id,
            action=AuditAction.ACCESS_DENIED,
            resource_type=resource_type,
            resource_id=resource_id,
            staff_id=staff.id,
            actor_id=staff.id,
            reason=reason,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Access denied: staff=%s %s=%s", staff.id, resource_type.value, resource_id)


def authorize_property_access(
    db: Session,
    staff_id: int,
    property_id: int,
    *,
    now: Optional[datetime] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Property:
    """
    Return the property if the staff member may access it.

    Raises:
        NotFoundError: Unknown staff or property
        AccessDeniedError: No access; the denial is audited first
    """
    staff = directory_service.get_staff(db, staff_id)
    prop = directory_service.get_property(db, property_id)
    if can_access_property(db, staff_id, property_id, now):
        return prop

    reason = f"No active access grant for property {property_id}"
    _deny(db, staff, AuditResourceType.PROPERTY, property_id, reason, ip_address, user_agent)
    raise AccessDeniedError(reason, property_id=property_id)


def authorize_client_access(
    db: Session,
    staff_id: int,
    client_id: int,
    *,
    now: Optional[datetime] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Client:
    """Client counterpart of authorize_property_access"""
    staff = directory_service.get_staff(db, staff_id)
    client = directory_service.get_client(db, client_id)
    if can_access_client(db, staff_id, client_id, now):
        return client

    reason = f"No active access grant for client {client_id}'s property {client.property_id}"
    _deny(db, staff, AuditResourceType.CLIENT, client_id, reason, ip_address, user_agent)
    raise AccessDeniedError(reason, client_id=client_id)


def request_access(
    db: Session,
    staff_id: int,
    property_id: int,
    roster_entry_id: Optional[int] = None,
    reason: Optional[str] = None,
    request_type: str = "manual",
    *,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Optional[AccessAuditLog]:
    """
    Record an access request for an administrator to act on. Grants nothing.

    Returns the audit entry, or None when audit logging is off.
    """
    if request_type not in REQUEST_TYPES:
        raise RBACError(f"request_type must be one of {list(REQUEST_TYPES)}")

    staff = directory_service.get_staff(db, staff_id)
    prop = directory_service.get_property(db, property_id)
    if prop.organization_id != staff.organization_id:
        raise MismatchError(f"Property {property_id} is not part of staff {staff_id}'s organization")
    if roster_entry_id is not None:
        roster_entry = directory_service.get_roster_entry(db, roster_entry_id)
        if roster_entry.staff_id != staff_id:
            raise MismatchError(f"Roster entry {roster_entry_id} is not assigned to staff {staff_id}")

    config = rbac_config_service.get_config(db, staff.organization_id)
    try:
        entry = audit_service.audit_decision(
            db,
            config.global_settings,
            organization_id=staff.organization_id,
            action=AuditAction.ACCESS_REQUESTED,
            resource_type=AuditResourceType.PROPERTY,
            resource_id=property_id,
            staff_id=staff_id,
            actor_id=staff_id,
            reason=reason or f"{request_type.capitalize()} access request for property {property_id}",
            ip_address=ip_address,
            user_agent=user_agent,
            meta={"request_type": request_type, "roster_entry_id": roster_entry_id},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    if entry is not None:
        db.refresh(entry)
    logger.info("Access requested: staff=%s property=%s type=%s", staff_id, property_id, request_type)
    return entry
