"""
Tests for the clock, access and admin RBAC endpoints
"""
from datetime import timedelta

import pytest
from fastapi import status

from app.models.access_grant import AccessGrant, GrantType
from app.models.audit_log import AccessAuditLog, AuditAction
from app.models.role import Role
from app.services.access_grant_service import grant_access
from app.utils.datetime_utils import now_utc

from conftest import auth_headers, make_roster_entry, make_staff


@pytest.fixture
def live_entry(db, sw1, prop1):
    """sw1 at prop1, shift running now"""
    now = now_utc()
    return make_roster_entry(db, sw1, prop1, now - timedelta(hours=1), now + timedelta(hours=4))


@pytest.fixture
def admin_headers(client, admin1):
    return auth_headers(client, admin1.email)


@pytest.fixture
def sw1_headers(client, sw1):
    return auth_headers(client, sw1.email)


def test_clock_in_and_out_via_api(client, sw1, prop1, prop2, clients, live_entry, sw1_headers):
    response = client.post(
        "/api/v1/clock/in",
        json={"roster_entry_id": live_entry.id, "location": {"lat": -36.8485, "lng": 174.7633, "accuracy": 8}},
        headers={**sw1_headers, "User-Agent": "CareNest-Mobile/2.1"},
    )
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["rbac_applied"] is True
    assert data["event"]["event_type"] == "clock_in"
    assert data["event"]["event_at"].endswith("Z")
    assert data["grant"]["grant_type"] == "rbac_automatic"
    assert data["grant"]["property_id"] == prop1.id

    response = client.get("/api/v1/access/properties", headers=sw1_headers)
    assert [p["id"] for p in response.json()] == [prop1.id]

    response = client.get("/api/v1/access/clients", headers=sw1_headers)
    assert [c["id"] for c in response.json()] == [clients[0].id, clients[1].id]

    response = client.post("/api/v1/clock/out", json={"roster_entry_id": live_entry.id}, headers=sw1_headers)
    assert response.status_code == status.HTTP_200_OK
    assert len(response.json()["revoked_grants"]) == 1

    response = client.get("/api/v1/access/properties", headers=sw1_headers)
    assert response.json() == []


def test_clock_in_outside_window_returns_400(client, db, sw1, prop1, sw1_headers):
    now = now_utc()
    future = make_roster_entry(db, sw1, prop1, now + timedelta(hours=3), now + timedelta(hours=8))

    response = client.post("/api/v1/clock/in", json={"roster_entry_id": future.id}, headers=sw1_headers)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    body = response.json()
    assert body["error"] is True
    assert "earliest" in body


def test_clock_in_other_staff_roster_entry(client, sw2, live_entry):
    response = client.post(
        "/api/v1/clock/in",
        json={"roster_entry_id": live_entry.id},
        headers=auth_headers(client, sw2.email),
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_clock_in_invalid_location_returns_422(client, live_entry, sw1_headers):
    response = client.post(
        "/api/v1/clock/in",
        json={"roster_entry_id": live_entry.id, "location": {"lat": 123.0, "lng": 0}},
        headers=sw1_headers,
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_single_property_read_denied_and_audited(client, db, sw1, prop1, sw1_headers):
    response = client.get(f"/api/v1/access/properties/{prop1.id}", headers=sw1_headers)

    assert response.status_code == status.HTTP_403_FORBIDDEN
    entry = db.query(AccessAuditLog).one()
    assert entry.action == AuditAction.ACCESS_DENIED
    assert entry.ip_address is not None


def test_single_client_read_allowed_with_grant(client, db, sw1, prop1, clients, live_entry, sw1_headers):
    grant_access(db, sw1.id, prop1.id, live_entry.id, GrantType.RBAC_AUTOMATIC)

    response = client.get(f"/api/v1/access/clients/{clients[0].id}", headers=sw1_headers)

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["name"] == "Emma Wilson"


def test_unknown_property_returns_404(client, sw1_headers):
    response = client.get("/api/v1/access/properties/9999", headers=sw1_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_access_request_recorded(client, db, prop1, sw1_headers):
    response = client.post(
        "/api/v1/access/requests",
        json={"property_id": prop1.id, "reason": "Cover for sick leave", "request_type": "emergency"},
        headers=sw1_headers,
    )

    assert response.status_code == status.HTTP_202_ACCEPTED
    data = response.json()
    assert data["recorded"] is True
    assert data["entry"]["action"] == "access_requested"
    assert db.query(AccessGrant).count() == 0


def test_access_request_invalid_type(client, prop1, sw1_headers):
    response = client.post(
        "/api/v1/access/requests",
        json={"property_id": prop1.id, "request_type": "vip"},
        headers=sw1_headers,
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_admin_endpoints_require_manage_system(client, sw1_headers):
    assert client.get("/api/v1/admin/rbac/config", headers=sw1_headers).status_code == status.HTTP_403_FORBIDDEN
    assert client.get("/api/v1/admin/rbac/history", headers=sw1_headers).status_code == status.HTTP_403_FORBIDDEN


def test_get_config(client, org, support_role, admin_role, admin_headers):
    response = client.get("/api/v1/admin/rbac/config", headers=admin_headers)

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["organization_enabled"] is True
    assert {rc["role_id"] for rc in data["role_configurations"]} == {support_role.id, admin_role.id}
    assert data["global_settings"]["grace_period_minutes"] == 15


def test_put_invalid_config_returns_errors(client, support_role, admin_role, admin_headers):
    config = client.get("/api/v1/admin/rbac/config", headers=admin_headers).json()
    for rc in config["role_configurations"]:
        rc["rbac_enabled"] = False

    response = client.put("/api/v1/admin/rbac/config", json=config, headers=admin_headers)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    body = response.json()
    assert body["errors"]
    assert "warnings" in body


def test_put_config_roundtrip(client, support_role, admin_role, admin_headers):
    config = client.get("/api/v1/admin/rbac/config", headers=admin_headers).json()
    config["global_settings"]["grace_period_minutes"] = 10

    response = client.put("/api/v1/admin/rbac/config", json=config, headers=admin_headers)

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["is_valid"] is True
    config = client.get("/api/v1/admin/rbac/config", headers=admin_headers).json()
    assert config["global_settings"]["grace_period_minutes"] == 10


def test_validate_config_dry_run(client, db, support_role, admin_role, admin_headers):
    config = client.get("/api/v1/admin/rbac/config", headers=admin_headers).json()
    config["global_settings"]["grace_period_minutes"] = -5

    response = client.post("/api/v1/admin/rbac/config/validate", json=config, headers=admin_headers)

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["is_valid"] is False
    config = client.get("/api/v1/admin/rbac/config", headers=admin_headers).json()
    assert config["global_settings"]["grace_period_minutes"] == 15


def test_patch_organization_role_and_settings(client, support_role, admin_role, admin_headers):
    response = client.patch(
        f"/api/v1/admin/rbac/config/roles/{support_role.id}",
        json={"permissions": ["view_clients", "clock_in_out"]},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_200_OK

    response = client.patch(
        "/api/v1/admin/rbac/config/settings",
        json={"strict_mode": True, "notifications": {"on_clock_out": False}},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_200_OK

    response = client.patch("/api/v1/admin/rbac/config/organization", json={"enabled": False}, headers=admin_headers)
    assert response.status_code == status.HTTP_200_OK

    config = client.get("/api/v1/admin/rbac/config", headers=admin_headers).json()
    assert config["organization_enabled"] is False
    assert config["global_settings"]["strict_mode"] is True
    assert config["global_settings"]["notifications"]["on_clock_out"] is False
    support = [rc for rc in config["role_configurations"] if rc["role_id"] == support_role.id][0]
    assert support["permissions"] == ["view_clients", "clock_in_out"]


def test_patch_unknown_role_returns_404(client, admin_headers):
    response = client.patch("/api/v1/admin/rbac/config/roles/9999", json={"rbac_enabled": True}, headers=admin_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_manual_grant_and_revoke(client, db, admin1, sw1, prop1, live_entry, admin_headers):
    response = client.post(
        "/api/v1/admin/rbac/grants",
        json={"staff_id": sw1.id, "property_id": prop1.id, "roster_entry_id": live_entry.id, "reason": "Handover"},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_201_CREATED
    grant = response.json()
    assert grant["grant_type"] == "manual"
    assert grant["granted_by"] == admin1.id
    assert grant["expires_at"].endswith("Z")

    response = client.post(
        "/api/v1/admin/rbac/grants/revoke",
        json={"staff_id": sw1.id, "property_id": prop1.id, "reason": "Handover complete"},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_200_OK
    revoked = response.json()["revoked"]
    assert [g["id"] for g in revoked] == [grant["id"]]
    assert revoked[0]["revoked_by"] == admin1.id

    # Nothing left to revoke
    response = client.post(
        "/api/v1/admin/rbac/grants/revoke",
        json={"staff_id": sw1.id, "property_id": prop1.id},
        headers=admin_headers,
    )
    assert response.json()["revoked"] == []


def test_manual_grant_rejects_automatic_type(client, sw1, prop1, live_entry, admin_headers):
    response = client.post(
        "/api/v1/admin/rbac/grants",
        json={"staff_id": sw1.id, "property_id": prop1.id, "roster_entry_id": live_entry.id,
              "grant_type": "rbac_automatic"},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_manual_grant_for_foreign_staff_returns_404(client, db, other_org, prop1, live_entry, admin_headers):
    foreign_role = Role(organization_id=other_org.id, name="Support", permissions=[])
    db.add(foreign_role)
    db.commit()
    outsider = make_staff(db, other_org, foreign_role, "Outsider", "outsider@other.example.com")

    response = client.post(
        "/api/v1/admin/rbac/grants",
        json={"staff_id": outsider.id, "property_id": prop1.id, "roster_entry_id": live_entry.id},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_expire_sweep_endpoint(client, db, sw1, prop1, live_entry, admin_headers):
    grant = grant_access(
        db, sw1.id, prop1.id, live_entry.id, GrantType.TEMPORARY,
        expires_at=now_utc() + timedelta(minutes=5),
    )
    grant.expires_at = now_utc() - timedelta(minutes=1)
    db.commit()

    response = client.post("/api/v1/admin/rbac/grants/expire", headers=admin_headers)

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["revoked_count"] == 1


def test_current_access(client, db, sw1, prop1, live_entry, sw1_headers, admin_headers):
    client.post("/api/v1/clock/in", json={"roster_entry_id": live_entry.id}, headers=sw1_headers)

    response = client.get("/api/v1/admin/rbac/current-access", headers=admin_headers)

    assert response.status_code == status.HTTP_200_OK
    rows = response.json()
    assert len(rows) == 1
    row = rows[0]
    assert row["staff_id"] == sw1.id
    assert row["staff_name"] == "Sarah Johnson"
    assert row["property_name"] == "Sunrise House"
    assert row["roster_entry_id"] == live_entry.id
    assert row["grant_type"] == "rbac_automatic"
    assert row["last_clock_event"].endswith("Z")


def test_history_endpoint(client, db, sw1, prop1, live_entry, sw1_headers, admin_headers):
    client.post("/api/v1/clock/in", json={"roster_entry_id": live_entry.id}, headers=sw1_headers)
    client.post("/api/v1/clock/out", json={"roster_entry_id": live_entry.id}, headers=sw1_headers)

    response = client.get("/api/v1/admin/rbac/history", headers=admin_headers)
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["total"] == 2
    assert [e["action"] for e in data["items"]] == ["access_revoked", "access_granted"]

    response = client.get(
        "/api/v1/admin/rbac/history",
        params={"action": "access_granted", "staff_id": sw1.id, "limit": 1},
        headers=admin_headers,
    )
    assert response.json()["total"] == 1


def test_history_inverted_range_returns_400(client, admin_headers):
    response = client.get(
        "/api/v1/admin/rbac/history",
        params={"start_date": "2026-03-02T12:00:00Z", "end_date": "2026-03-02T09:00:00Z"},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_staff_access_endpoint(client, db, sw1, prop1, clients, live_entry, admin_headers):
    response = client.get(f"/api/v1/admin/rbac/staff/{sw1.id}/access", headers=admin_headers)
    data = response.json()
    assert data["exempt"] is False
    assert data["properties"] == []

    grant_access(db, sw1.id, prop1.id, live_entry.id, GrantType.RBAC_AUTOMATIC)

    data = client.get(f"/api/v1/admin/rbac/staff/{sw1.id}/access", headers=admin_headers).json()
    assert [p["id"] for p in data["properties"]] == [prop1.id]
    assert len(data["clients"]) == 2
