"""
Directory lookups: organizations, staff, roles, properties, clients, roster entries.

Read-only; the directory tables are maintained outside this service.
"""
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.models.organization import Organization
from app.models.property import Client, Property
from app.models.role import Role
from app.models.roster import RosterEntry
from app.models.staff import Staff


def _get_or_404(db: Session, model, entity: str, entity_id: int):
    obj = db.get(model, entity_id)
    if obj is None:
        raise NotFoundError(entity, entity_id)
    return obj


def get_organization(db: Session, organization_id: int) -> Organization:
    return _get_or_404(db, Organization, "Organization", organization_id)


def get_staff(db: Session, staff_id: int) -> Staff:
    return _get_or_404(db, Staff, "Staff", staff_id)


def get_staff_by_email(db: Session, email: str) -> Optional[Staff]:
    return db.query(Staff).filter(Staff.email == email.strip().lower()).first()


def get_role(db: Session, role_id: int) -> Role:
    return _get_or_404(db, Role, "Role", role_id)


def get_property(db: Session, property_id: int) -> Property:
    return _get_or_404(db, Property, "Property", property_id)


def get_client(db: Session, client_id: int) -> Client:
    return _get_or_404(db, Client, "Client", client_id)


def get_roster_entry(db: Session, roster_entry_id: int) -> RosterEntry:
    return _get_or_404(db, RosterEntry, "RosterEntry", roster_entry_id)


def list_roles(db: Session, organization_id: int) -> List[Role]:
    return (
        db.query(Role)
        .filter(Role.organization_id == organization_id)
        .order_by(Role.id)
        .all()
    )


def list_properties(
    db: Session,
    organization_id: int,
    property_ids: Optional[Iterable[int]] = None,
) -> List[Property]:
    """
    Properties of an organization, ordered by id.

    When property_ids is given the result is restricted to those ids.
    """
    query = db.query(Property).filter(Property.organization_id == organization_id)
    if property_ids is not None:
        ids = list(property_ids)
        if not ids:
            return []
        query = query.filter(Property.id.in_(ids))
    return query.order_by(Property.id).all()


def list_clients(
    db: Session,
    organization_id: int,
    property_ids: Optional[Iterable[int]] = None,
) -> List[Client]:
    """Clients of an organization, optionally only those living at property_ids"""
    query = db.query(Client).filter(Client.organization_id == organization_id)
    if property_ids is not None:
        ids = list(property_ids)
        if not ids:
            return []
        query = query.filter(Client.property_id.in_(ids))
    return query.order_by(Client.id).all()
