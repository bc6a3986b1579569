"""
Access endpoints for the current staff member: accessible properties/clients,
authorized single reads and access requests.
"""
from typing import List

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.core.deps import client_ip, get_current_user, get_db, user_agent
from app.models.staff import Staff
from app.schemas.access import AccessRequestIn, AccessRequestOut, ClientOut, PropertyOut
from app.schemas.audit import AccessAuditLogOut
from app.services import access_resolver_service as resolver

router = APIRouter()


@router.get("/properties", response_model=List[PropertyOut])
def list_my_properties(
    db: Session = Depends(get_db),
    current_user: Staff = Depends(get_current_user),
):
    """Properties the current staff member may access right now"""
    return resolver.get_accessible_properties(db, current_user.id)


@router.get("/clients", response_model=List[ClientOut])
def list_my_clients(
    db: Session = Depends(get_db),
    current_user: Staff = Depends(get_current_user),
):
    """Clients at the current staff member's accessible properties"""
    return resolver.get_accessible_clients(db, current_user.id)


@router.get("/properties/{property_id}", response_model=PropertyOut)
def get_property(
    property_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: Staff = Depends(get_current_user),
):
    """Read one property; 403 (audited) without access"""
    return resolver.authorize_property_access(
        db, current_user.id, property_id,
        ip_address=client_ip(request), user_agent=user_agent(request),
    )


@router.get("/clients/{client_id}", response_model=ClientOut)
def get_client(
    client_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: Staff = Depends(get_current_user),
):
    """Read one client; 403 (audited) without access to its property"""
    return resolver.authorize_client_access(
        db, current_user.id, client_id,
        ip_address=client_ip(request), user_agent=user_agent(request),
    )


@router.post("/requests", response_model=AccessRequestOut, status_code=status.HTTP_202_ACCEPTED)
def request_access(
    body: AccessRequestIn,
    request: Request,
    db: Session = Depends(get_db),
    current_user: Staff = Depends(get_current_user),
):
    """
    Ask for access to a property. Recorded in the audit trail for an
    administrator to act on; no grant is created.
    """
    entry = resolver.request_access(
        db,
        current_user.id,
        body.property_id,
        roster_entry_id=body.roster_entry_id,
        reason=body.reason,
        request_type=body.request_type,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
    )
    return AccessRequestOut(
        recorded=entry is not None,
        entry=AccessAuditLogOut.model_validate(entry) if entry is not None else None,
    )
