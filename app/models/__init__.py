"""
Database models
"""
from app.models.organization import Organization
from app.models.role import Role
from app.models.staff import Staff, StaffStatus
from app.models.property import Property, Client, PropertyType, PropertyStatus, ClientStatus
from app.models.roster import RosterEntry, RosterStatus
from app.models.clock_event import ClockEvent, ClockEventType
from app.models.access_grant import AccessGrant, GrantType
from app.models.audit_log import AccessAuditLog, AuditAction, AuditResourceType
from app.models.rbac_settings import RBACSettings

__all__ = [
    "Organization",
    "Role",
    "Staff",
    "StaffStatus",
    "Property",
    "Client",
    "PropertyType",
    "PropertyStatus",
    "ClientStatus",
    "RosterEntry",
    "RosterStatus",
    "ClockEvent",
    "ClockEventType",
    "AccessGrant",
    "GrantType",
    "AccessAuditLog",
    "AuditAction",
    "AuditResourceType",
    "RBACSettings",
]
