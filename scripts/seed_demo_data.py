"""
Seed the CareNest demo organization: roles, staff, properties, clients and one
day of roster entries. Existing rows (matched by slug / email / name) are left
unchanged. Run from the project root with .env loaded.

Usage:
  python scripts/seed_demo_data.py              # roster for today (UTC)
  python scripts/seed_demo_data.py 2026-01-15   # roster for the given date
"""
import sys
from datetime import date, datetime, time, timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.core.constants import (
    PERMISSION_CLOCK_IN_OUT,
    PERMISSION_EDIT_CLIENTS,
    PERMISSION_MANAGE_STAFF,
    PERMISSION_MANAGE_SYSTEM,
    PERMISSION_VIEW_CLIENTS,
    PERMISSION_VIEW_PROPERTIES,
)
from app.core.security import hash_password
from app.db.session import SessionLocal
from app.models import Client, Organization, Property, Role, RosterEntry, Staff
from app.services.rbac_config_service import config_cache, get_or_create_settings
from app.utils.datetime_utils import UTC

DEMO_PASSWORD = "CareNest@123"

ROLES = [
    {
        "name": "Support Facilitator",
        "description": "Direct support staff working with clients",
        "rbac_enabled": True,
        "bypasses_access_control": False,
        "permissions": [PERMISSION_VIEW_CLIENTS, PERMISSION_EDIT_CLIENTS, PERMISSION_VIEW_PROPERTIES, PERMISSION_CLOCK_IN_OUT],
    },
    {
        "name": "House Lead",
        "description": "Senior staff managing specific properties",
        "rbac_enabled": True,
        "bypasses_access_control": False,
        "permissions": [
            PERMISSION_VIEW_CLIENTS, PERMISSION_EDIT_CLIENTS, PERMISSION_VIEW_PROPERTIES,
            PERMISSION_MANAGE_STAFF, PERMISSION_CLOCK_IN_OUT,
        ],
    },
    {
        "name": "Office Admin",
        "description": "Administrative staff with full access",
        "rbac_enabled": False,
        "bypasses_access_control": True,
        "permissions": [PERMISSION_MANAGE_SYSTEM],
    },
]

STAFF = [
    ("Sarah Johnson", "sarah.johnson@carenest.com", "+64 21 123 4567", "Support Facilitator", True),
    ("Michael Chen", "michael.chen@carenest.com", "+64 21 234 5678", "House Lead", True),
    ("Lisa Thompson", "lisa.thompson@carenest.com", "+64 21 345 6789", "Office Admin", False),
]

PROPERTIES = [
    ("Sunrise House", "123 Sunrise Street, Auckland", "residential", -36.8485, 174.7633),
    ("Community Hub", "456 Community Road, Auckland", "community", -36.8523, 174.7691),
    ("Independence Villa", "789 Independence Lane, Auckland", "residential", -36.8600, 174.7800),
]

CLIENTS = [
    ("Emma Wilson", "Sunrise House"),
    ("David Lee", "Sunrise House"),
    ("Sophie Anderson", "Community Hub"),
]

# (staff email, property, day offset, start hour, end hour, notes); hours in UTC
ROSTER = [
    ("sarah.johnson@carenest.com", "Sunrise House", 0, 8, 16, "Morning shift - high support needs"),
    ("michael.chen@carenest.com", "Sunrise House", 0, 16, 22, "Evening shift - house lead"),
    ("sarah.johnson@carenest.com", "Community Hub", 1, 9, 17, "Community hub support"),
    ("michael.chen@carenest.com", "Independence Villa", 0, 10, 18, "Independence support"),
]


def _at(day: date, hour: int) -> datetime:
    return datetime.combine(day, time(hour=hour), tzinfo=UTC)


def main():
    day = date.fromisoformat(sys.argv[1]) if len(sys.argv) > 1 else datetime.now(UTC).date()

    db = SessionLocal()
    try:
        organization = db.query(Organization).filter(Organization.slug == "carenest").first()
        if organization is None:
            organization = Organization(name="CareNest Disability Services", slug="carenest", rbac_enabled=True)
            db.add(organization)
            db.flush()
        print(f"Organization: {organization.name} (id={organization.id})")

        roles = {}
        for values in ROLES:
            role = (
                db.query(Role)
                .filter(Role.organization_id == organization.id, Role.name == values["name"])
                .first()
            )
            if role is None:
                role = Role(organization_id=organization.id, is_active=True, **values)
                db.add(role)
                db.flush()
            roles[role.name] = role
            print(f"Role: {role.name} (id={role.id}, rbac={role.rbac_enabled}, bypass={role.bypasses_access_control})")

        staff_by_email = {}
        for name, email, phone, role_name, rbac_enabled in STAFF:
            staff = db.query(Staff).filter(Staff.email == email).first()
            if staff is None:
                staff = Staff(
                    organization_id=organization.id,
                    role_id=roles[role_name].id,
                    name=name,
                    email=email,
                    phone=phone,
                    password_hash=hash_password(DEMO_PASSWORD),
                    rbac_enabled=rbac_enabled,
                )
                db.add(staff)
                db.flush()
            staff_by_email[email] = staff
            print(f"Staff: {staff.name} <{staff.email}> (id={staff.id})")

        properties = {}
        for name, address, property_type, lat, lng in PROPERTIES:
            prop = (
                db.query(Property)
                .filter(Property.organization_id == organization.id, Property.name == name)
                .first()
            )
            if prop is None:
                prop = Property(
                    organization_id=organization.id,
                    name=name,
                    address=address,
                    property_type=property_type,
                    latitude=lat,
                    longitude=lng,
                )
                db.add(prop)
                db.flush()
            properties[name] = prop

        for name, property_name in CLIENTS:
            exists = db.query(Client).filter(Client.organization_id == organization.id, Client.name == name).first()
            if exists is None:
                db.add(Client(organization_id=organization.id, property_id=properties[property_name].id, name=name))

        created = 0
        for email, property_name, day_offset, start_hour, end_hour, notes in ROSTER:
            shift_day = day + timedelta(days=day_offset)
            staff = staff_by_email[email]
            prop = properties[property_name]
            start_time = _at(shift_day, start_hour)
            exists = (
                db.query(RosterEntry)
                .filter(
                    RosterEntry.staff_id == staff.id,
                    RosterEntry.property_id == prop.id,
                    RosterEntry.start_time == start_time,
                )
                .first()
            )
            if exists is None:
                db.add(RosterEntry(
                    organization_id=organization.id,
                    staff_id=staff.id,
                    property_id=prop.id,
                    start_time=start_time,
                    end_time=_at(shift_day, end_hour),
                    notes=notes,
                ))
                created += 1
        db.commit()

        # Demo organization enforces location within 100 m
        row = get_or_create_settings(db, organization.id)
        row.grace_period_minutes = 15
        row.require_location = True
        row.max_distance_meters = 100
        db.commit()
        config_cache.invalidate(organization.id)
        print(f"Seeded {created} roster entries for {day.isoformat()}; demo password: {DEMO_PASSWORD}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
