"""
Access audit log service
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from app.core.errors import AuditWriteError
from app.models.audit_log import AccessAuditLog, AuditAction, AuditResourceType
from app.schemas.audit import AccessHistoryFilters
from app.schemas.rbac import GlobalRBACSettings
from app.utils.datetime_utils import ensure_utc, now_utc
from app.utils.json_serializer import sanitize_for_json

logger = logging.getLogger(__name__)


def _flush_entry(db: Session, entry: AccessAuditLog) -> None:
    # SAVEPOINT so a failed insert does not poison the caller's transaction
    with db.begin_nested():
        db.add(entry)


def record_access_event(
    db: Session,
    *,
    organization_id: int,
    action: AuditAction,
    resource_type: AuditResourceType,
    resource_id: Optional[int],
    staff_id: Optional[int] = None,
    actor_id: Optional[int] = None,
    reason: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> AccessAuditLog:
    """
    Append an access audit entry

    The entry is flushed inside a SAVEPOINT but not committed; it becomes durable
    with the caller's transaction.

    Args:
        db: Database session
        organization_id: Organization the decision belongs to
        action: access_granted, access_revoked, access_denied or access_requested
        resource_type: Type of resource (property, client, document, roster)
        resource_id: ID of the resource (optional)
        staff_id: Staff member the decision is about
        actor_id: Staff member who triggered it (None = system)
        reason: Human-readable reason
        meta: Additional metadata as dictionary (optional)

    Returns:
        Created AccessAuditLog instance

    Raises:
        AuditWriteError: If the entry could not be persisted
    """
    safe_meta = sanitize_for_json(meta) if meta is not None else None

    # Explicitly set created_at to keep sub-second ordering on SQLite
    entry = AccessAuditLog(
        organization_id=organization_id,
        staff_id=staff_id,
        actor_id=actor_id,
        action=AuditAction(action),
        resource_type=AuditResourceType(resource_type),
        resource_id=resource_id,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        meta_json=safe_meta,
        created_at=now_utc(),
    )
    try:
        _flush_entry(db, entry)
    except SQLAlchemyError as exc:
        logger.error("Audit write failed: action=%s staff=%s resource=%s: %s", action, staff_id, resource_id, exc)
        raise AuditWriteError(f"Could not write audit entry for {AuditAction(action).value}") from exc

    return entry


def audit_decision(
    db: Session,
    global_settings: GlobalRBACSettings,
    **fields: Any,
) -> Optional[AccessAuditLog]:
    """
    Record an access decision according to the organization's audit settings.

    Returns None without writing when audit logging is off. A failed write
    re-raises AuditWriteError in strict mode; in lenient mode it is logged and
    None is returned so the decision proceeds without its entry.
    """
    if not global_settings.audit_logging:
        logger.debug("Audit logging disabled, skipping %s for staff %s", fields.get("action"), fields.get("staff_id"))
        return None

    try:
        return record_access_event(db, **fields)
    except AuditWriteError:
        if global_settings.strict_mode:
            raise
        logger.error(
            "Audit entry dropped (lenient mode): action=%s staff=%s resource=%s",
            fields.get("action"), fields.get("staff_id"), fields.get("resource_id"),
        )
        return None


def _filtered_query(db: Session, organization_id: int, filters: AccessHistoryFilters) -> Query:
    query = db.query(AccessAuditLog).filter(AccessAuditLog.organization_id == organization_id)

    if filters.staff_id is not None:
        query = query.filter(AccessAuditLog.staff_id == filters.staff_id)
    if filters.resource_id is not None:
        query = query.filter(AccessAuditLog.resource_id == filters.resource_id)
    if filters.resource_type is not None:
        query = query.filter(AccessAuditLog.resource_type == filters.resource_type)
    if filters.action is not None:
        query = query.filter(AccessAuditLog.action == filters.action)
    if filters.start_date is not None:
        query = query.filter(AccessAuditLog.created_at >= ensure_utc(filters.start_date))
    if filters.end_date is not None:
        query = query.filter(AccessAuditLog.created_at <= ensure_utc(filters.end_date))

    return query


def query_access_log(
    db: Session,
    organization_id: int,
    filters: Optional[AccessHistoryFilters] = None,
) -> List[AccessAuditLog]:
    """
    Audit entries of an organization, newest first.

    Filters are applied before ordering and pagination (limit/offset).
    """
    filters = filters or AccessHistoryFilters()
    query = _filtered_query(db, organization_id, filters).order_by(
        AccessAuditLog.created_at.desc(),
        AccessAuditLog.id.desc(),
    )
    if filters.offset:
        query = query.offset(filters.offset)
    if filters.limit is not None:
        query = query.limit(filters.limit)
    return query.all()


def count_access_log(
    db: Session,
    organization_id: int,
    filters: Optional[AccessHistoryFilters] = None,
) -> int:
    """Number of entries matching filters, ignoring pagination"""
    return _filtered_query(db, organization_id, filters or AccessHistoryFilters()).count()
