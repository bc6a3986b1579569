"""
Admin RBAC endpoints: configuration, manual grants, monitoring and history.
All endpoints act on the current admin's organization and require manage_system.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.constants import PERMISSION_MANAGE_SYSTEM
from app.core.deps import get_db, require_permissions
from app.core.errors import NotFoundError
from app.models.audit_log import AuditAction, AuditResourceType
from app.models.staff import Staff
from app.schemas.access import (
    AccessGrantOut,
    ClientOut,
    CurrentAccessOut,
    ExpireSweepResponse,
    ManualGrantRequest,
    PropertyOut,
    RevokeRequest,
    RevokeResponse,
    StaffAccessOut,
)
from app.schemas.audit import AccessAuditLogOut, AccessHistoryFilters, AccessHistoryResponse
from app.schemas.rbac import (
    GlobalSettingsUpdate,
    OrganizationToggle,
    RBACConfig,
    RBACValidationResult,
    RoleConfigUpdate,
)
from app.services import (
    access_grant_service,
    access_resolver_service,
    directory_service,
    monitoring_service,
    rbac_config_service,
)

router = APIRouter()

require_admin = require_permissions(PERMISSION_MANAGE_SYSTEM)


def _staff_in_org(db: Session, staff_id: int, organization_id: int) -> Staff:
    """Staff of another organization are reported as not found"""
    staff = directory_service.get_staff(db, staff_id)
    if staff.organization_id != organization_id:
        raise NotFoundError("Staff", staff_id)
    return staff


@router.get("/config", response_model=RBACConfig)
def get_config(
    db: Session = Depends(get_db),
    current_user: Staff = Depends(require_admin),
):
    return rbac_config_service.get_config(db, current_user.organization_id)


@router.put("/config", response_model=RBACValidationResult)
def update_config(
    config: RBACConfig,
    db: Session = Depends(get_db),
    current_user: Staff = Depends(require_admin),
):
    """Replace the configuration; 400 with errors/warnings if invalid"""
    return rbac_config_service.update_config(db, current_user.organization_id, config)


@router.post("/config/validate", response_model=RBACValidationResult)
def validate_config(
    config: RBACConfig,
    db: Session = Depends(get_db),
    current_user: Staff = Depends(require_admin),
):
    """Dry-run validation against the organization's roles; nothing is saved"""
    role_ids = [role.id for role in directory_service.list_roles(db, current_user.organization_id)]
    return rbac_config_service.validate_config(config, known_role_ids=role_ids)


@router.patch("/config/organization", response_model=RBACValidationResult)
def set_organization_enabled(
    body: OrganizationToggle,
    db: Session = Depends(get_db),
    current_user: Staff = Depends(require_admin),
):
    return rbac_config_service.set_organization_enabled(db, current_user.organization_id, body.enabled)


@router.patch("/config/roles/{role_id}", response_model=RBACValidationResult)
def update_role_config(
    role_id: int,
    body: RoleConfigUpdate,
    db: Session = Depends(get_db),
    current_user: Staff = Depends(require_admin),
):
    return rbac_config_service.set_role_enabled(
        db,
        current_user.organization_id,
        role_id,
        body.rbac_enabled,
        bypasses_access_control=body.bypasses_access_control,
        permissions=body.permissions,
    )


@router.patch("/config/settings", response_model=RBACValidationResult)
def update_settings(
    body: GlobalSettingsUpdate,
    db: Session = Depends(get_db),
    current_user: Staff = Depends(require_admin),
):
    return rbac_config_service.update_global_settings(db, current_user.organization_id, body)


@router.post("/grants", response_model=AccessGrantOut, status_code=status.HTTP_201_CREATED)
def create_grant(
    body: ManualGrantRequest,
    db: Session = Depends(get_db),
    current_user: Staff = Depends(require_admin),
):
    """Out-of-band manual or temporary grant; supersedes any active grant for the pair"""
    _staff_in_org(db, body.staff_id, current_user.organization_id)
    return access_grant_service.grant_access(
        db,
        body.staff_id,
        body.property_id,
        body.roster_entry_id,
        body.grant_type,
        expires_at=body.expires_at,
        granted_by=current_user.id,
        reason=body.reason,
    )


@router.post("/grants/revoke", response_model=RevokeResponse)
def revoke_grants(
    body: RevokeRequest,
    db: Session = Depends(get_db),
    current_user: Staff = Depends(require_admin),
):
    """Revoke all active grants of a staff member for a property; empty list if none"""
    _staff_in_org(db, body.staff_id, current_user.organization_id)
    revoked = access_grant_service.revoke_access(
        db,
        body.staff_id,
        body.property_id,
        reason=body.reason,
        revoked_by=current_user.id,
    )
    return RevokeResponse(revoked=[AccessGrantOut.model_validate(g) for g in revoked])


@router.post("/grants/expire", response_model=ExpireSweepResponse)
def expire_grants(
    db: Session = Depends(get_db),
    current_user: Staff = Depends(require_admin),
):
    """Revoke the organization's grants whose expiry has passed"""
    count = access_grant_service.expire_grants(db, organization_id=current_user.organization_id)
    return ExpireSweepResponse(revoked_count=count)


@router.get("/current-access", response_model=List[CurrentAccessOut])
def current_access(
    db: Session = Depends(get_db),
    current_user: Staff = Depends(require_admin),
):
    return monitoring_service.get_current_access(db, current_user.organization_id)


@router.get("/history", response_model=AccessHistoryResponse)
def access_history(
    staff_id: Optional[int] = Query(None, description="Subject staff id"),
    resource_id: Optional[int] = Query(None),
    resource_type: Optional[AuditResourceType] = Query(None),
    action: Optional[AuditAction] = Query(None),
    start_date: Optional[datetime] = Query(None, description="Inclusive lower bound on created_at"),
    end_date: Optional[datetime] = Query(None, description="Inclusive upper bound on created_at"),
    limit: Optional[int] = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: Staff = Depends(require_admin),
):
    """Audit trail, newest first; total counts all matches"""
    try:
        filters = AccessHistoryFilters(
            staff_id=staff_id,
            resource_id=resource_id,
            resource_type=resource_type,
            action=action,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date must be less than or equal to end_date",
        ) from e

    entries, total = monitoring_service.get_access_history(db, current_user.organization_id, filters)
    return AccessHistoryResponse(
        items=[AccessAuditLogOut.model_validate(e) for e in entries],
        total=total,
    )


@router.get("/staff/{staff_id}/access", response_model=StaffAccessOut)
def staff_access(
    staff_id: int,
    db: Session = Depends(get_db),
    current_user: Staff = Depends(require_admin),
):
    """What a staff member can see right now"""
    staff = _staff_in_org(db, staff_id, current_user.organization_id)
    return StaffAccessOut(
        staff_id=staff.id,
        exempt=access_resolver_service.is_exempt(db, staff),
        properties=[PropertyOut.model_validate(p) for p in access_resolver_service.get_accessible_properties(db, staff.id)],
        clients=[ClientOut.model_validate(c) for c in access_resolver_service.get_accessible_clients(db, staff.id)],
    )
