"""
Clock endpoints: the current staff member clocks in/out of their roster entry.
Server UTC time is used; the client only supplies the roster entry and an optional location fix.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.deps import client_ip, get_current_user, get_db, user_agent
from app.models.staff import Staff
from app.schemas.access import AccessGrantOut
from app.schemas.clock import ClockEventOut, ClockRequest, ClockResultOut
from app.services import clock_event_service
from app.services.clock_event_service import ClockResult

router = APIRouter()


def _to_out(result: ClockResult) -> ClockResultOut:
    return ClockResultOut(
        event=ClockEventOut.model_validate(result.event),
        rbac_applied=result.rbac_applied,
        grant=AccessGrantOut.model_validate(result.grant) if result.grant is not None else None,
        revoked_grants=[AccessGrantOut.model_validate(g) for g in result.revoked_grants],
    )


@router.post("/in", response_model=ClockResultOut)
def clock_in(
    body: ClockRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: Staff = Depends(get_current_user),
):
    """Clock in; issues an automatic access grant when access control applies."""
    result = clock_event_service.clock_in(
        db,
        current_user.id,
        body.roster_entry_id,
        body.location,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
        notes=body.notes,
    )
    return _to_out(result)


@router.post("/out", response_model=ClockResultOut)
def clock_out(
    body: ClockRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: Staff = Depends(get_current_user),
):
    """Clock out; revokes the staff member's grants for the roster entry's property."""
    result = clock_event_service.clock_out(
        db,
        current_user.id,
        body.roster_entry_id,
        body.location,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
        notes=body.notes,
    )
    return _to_out(result)
