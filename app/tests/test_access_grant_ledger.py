"""
Tests for the access grant ledger (grant, revoke, expire)
"""
import pytest
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError

from app.core.errors import AuditWriteError, GrantConflictError, GrantValidationError, MismatchError, NotFoundError
from app.models.access_grant import AccessGrant, GrantType
from app.models.audit_log import AccessAuditLog, AuditAction
from app.models.rbac_settings import RBACSettings
from app.services import access_grant_service, audit_service, rbac_events
from app.services.access_grant_service import (
    REASON_EXPIRED,
    REASON_SUPERSEDED,
    expire_grants,
    grant_access,
    list_active_grants,
    revoke_access,
)
from app.services.grant_locks import grant_locks
from app.services.rbac_config_service import config_cache
from app.utils.datetime_utils import ensure_utc

from conftest import at, make_roster_entry


def _active(db, staff_id, property_id):
    return (
        db.query(AccessGrant)
        .filter(
            AccessGrant.staff_id == staff_id,
            AccessGrant.property_id == property_id,
            AccessGrant.revoked_at.is_(None),
        )
        .all()
    )


def _set_settings(db, org, **values):
    row = db.query(RBACSettings).filter(RBACSettings.organization_id == org.id).one()
    for key, value in values.items():
        setattr(row, key, value)
    db.commit()
    config_cache.invalidate(org.id)


def _fail_flush(db, entry):
    raise OperationalError("INSERT INTO access_audit_logs", {}, Exception("disk I/O error"))


def test_automatic_grant_has_no_expiry(db, sw1, prop1, re1):
    grant = grant_access(db, sw1.id, prop1.id, re1.id, GrantType.RBAC_AUTOMATIC, now=at(8))

    assert grant.id is not None
    assert grant.grant_type == GrantType.RBAC_AUTOMATIC
    assert grant.revoked_at is None
    assert grant.expires_at is None
    assert ensure_utc(grant.granted_at) == at(8)


def test_grant_writes_one_audit_entry(db, org, sw1, prop1, re1):
    grant = grant_access(db, sw1.id, prop1.id, re1.id, GrantType.RBAC_AUTOMATIC, now=at(8))

    entries = db.query(AccessAuditLog).all()
    assert len(entries) == 1
    entry = entries[0]
    assert entry.action == AuditAction.ACCESS_GRANTED
    assert entry.organization_id == org.id
    assert entry.staff_id == sw1.id
    assert entry.resource_id == prop1.id
    assert entry.meta_json["grant_id"] == grant.id
    assert entry.meta_json["grant_type"] == "rbac_automatic"


def test_second_grant_supersedes_first(db, sw1, prop1, re1):
    first = grant_access(db, sw1.id, prop1.id, re1.id, GrantType.RBAC_AUTOMATIC, now=at(8))
    second = grant_access(db, sw1.id, prop1.id, re1.id, GrantType.RBAC_AUTOMATIC, now=at(9))

    db.refresh(first)
    assert first.revoked_at is not None
    assert first.revoke_reason == REASON_SUPERSEDED
    assert [g.id for g in _active(db, sw1.id, prop1.id)] == [second.id]

    # Superseded grant is kept, and named in the audit trail
    assert db.query(AccessGrant).count() == 2
    latest = (
        db.query(AccessAuditLog)
        .filter(AccessAuditLog.action == AuditAction.ACCESS_GRANTED)
        .order_by(AccessAuditLog.id.desc())
        .first()
    )
    assert str(first.id) in latest.reason
    assert latest.meta_json["superseded_grant_ids"] == [first.id]


def test_grants_for_different_properties_coexist(db, sw1, prop1, prop2, re1, re2):
    grant_access(db, sw1.id, prop1.id, re1.id, GrantType.RBAC_AUTOMATIC, now=at(8))
    grant_access(db, sw1.id, prop2.id, re2.id, GrantType.RBAC_AUTOMATIC, now=at(8))

    assert len(_active(db, sw1.id, prop1.id)) == 1
    assert len(_active(db, sw1.id, prop2.id)) == 1


def test_revoke_access_returns_revoked_grants(db, admin1, sw1, prop1, re1):
    grant = grant_access(db, sw1.id, prop1.id, re1.id, GrantType.RBAC_AUTOMATIC, now=at(8))

    revoked = revoke_access(db, sw1.id, prop1.id, reason="Shift swapped", revoked_by=admin1.id, now=at(12))

    assert [g.id for g in revoked] == [grant.id]
    assert ensure_utc(revoked[0].revoked_at) == at(12)
    assert revoked[0].revoke_reason == "Shift swapped"
    assert revoked[0].revoked_by == admin1.id
    assert _active(db, sw1.id, prop1.id) == []

    entry = (
        db.query(AccessAuditLog)
        .filter(AccessAuditLog.action == AuditAction.ACCESS_REVOKED)
        .one()
    )
    assert entry.actor_id == admin1.id
    assert entry.meta_json["grant_ids"] == [grant.id]


def test_revoke_without_active_grant_is_noop(db, sw1, prop1):
    assert revoke_access(db, sw1.id, prop1.id, now=at(12)) == []
    assert revoke_access(db, sw1.id, prop1.id, now=at(12)) == []
    assert db.query(AccessAuditLog).count() == 0


def test_revoke_unknown_staff_raises(db, prop1):
    with pytest.raises(NotFoundError):
        revoke_access(db, 9999, prop1.id)


def test_grant_unknown_roster_entry_raises(db, sw1, prop1):
    with pytest.raises(NotFoundError):
        grant_access(db, sw1.id, prop1.id, 9999, GrantType.MANUAL, now=at(8))


def test_grant_rejects_roster_entry_of_other_staff(db, sw1, sw2, prop1):
    entry = make_roster_entry(db, sw2, prop1, at(8), at(16))
    with pytest.raises(MismatchError):
        grant_access(db, sw1.id, prop1.id, entry.id, GrantType.MANUAL, now=at(8))


def test_grant_rejects_roster_entry_at_other_property(db, sw1, prop2, re1):
    with pytest.raises(MismatchError):
        grant_access(db, sw1.id, prop2.id, re1.id, GrantType.MANUAL, now=at(8))
    assert db.query(AccessGrant).count() == 0


def test_manual_grant_defaults_to_shift_end_plus_grace(db, admin1, sw1, prop1, re1):
    grant = grant_access(db, sw1.id, prop1.id, re1.id, GrantType.MANUAL, granted_by=admin1.id, now=at(9))

    assert ensure_utc(grant.expires_at) == at(16, 15)
    assert grant.granted_by == admin1.id
    assert grant.clock_event_id is None


def test_manual_grant_without_shift_expiry(db, org, sw1, prop1, re1):
    _set_settings(db, org, manual_grants_expire_with_shift=False)
    grant = grant_access(db, sw1.id, prop1.id, re1.id, GrantType.MANUAL, now=at(9))
    assert grant.expires_at is None


def test_temporary_grant_requires_expiry(db, sw1, prop1, re1):
    with pytest.raises(GrantValidationError):
        grant_access(db, sw1.id, prop1.id, re1.id, GrantType.TEMPORARY, now=at(9))

    grant = grant_access(db, sw1.id, prop1.id, re1.id, GrantType.TEMPORARY, expires_at=at(10), now=at(9))
    assert ensure_utc(grant.expires_at) == at(10)


def test_automatic_grant_rejects_expiry(db, sw1, prop1, re1):
    with pytest.raises(GrantValidationError):
        grant_access(db, sw1.id, prop1.id, re1.id, GrantType.RBAC_AUTOMATIC, expires_at=at(10), now=at(9))


def test_grant_rejects_expiry_in_the_past(db, sw1, prop1, re1):
    with pytest.raises(GrantValidationError):
        grant_access(db, sw1.id, prop1.id, re1.id, GrantType.TEMPORARY, expires_at=at(8), now=at(9))
    assert db.query(AccessGrant).count() == 0


def test_list_active_grants_skips_expired(db, sw1, prop1, prop2, re1, re2):
    grant_access(db, sw1.id, prop1.id, re1.id, GrantType.TEMPORARY, expires_at=at(10), now=at(9))
    automatic = grant_access(db, sw1.id, prop2.id, re2.id, GrantType.RBAC_AUTOMATIC, now=at(9))

    assert len(list_active_grants(db, sw1.id, now=at(9, 30))) == 2
    assert [g.id for g in list_active_grants(db, sw1.id, now=at(10))] == [automatic.id]


def test_expire_grants_revokes_expired_only(db, sw1, prop1, prop2, re1, re2):
    temporary = grant_access(db, sw1.id, prop1.id, re1.id, GrantType.TEMPORARY, expires_at=at(10), now=at(9))
    automatic = grant_access(db, sw1.id, prop2.id, re2.id, GrantType.RBAC_AUTOMATIC, now=at(9))

    assert expire_grants(db, now=at(9, 59)) == 0
    assert expire_grants(db, now=at(10, 1)) == 1

    db.refresh(temporary)
    db.refresh(automatic)
    assert temporary.revoked_at is not None
    assert temporary.revoke_reason == REASON_EXPIRED
    assert temporary.revoked_by is None
    assert automatic.revoked_at is None

    entry = (
        db.query(AccessAuditLog)
        .filter(AccessAuditLog.action == AuditAction.ACCESS_REVOKED)
        .one()
    )
    assert entry.actor_id is None
    assert entry.meta_json["grant_ids"] == [temporary.id]

    # Second sweep finds nothing
    assert expire_grants(db, now=at(11)) == 0


def test_expire_grants_scoped_to_organization(db, other_org, sw1, prop1, re1):
    grant_access(db, sw1.id, prop1.id, re1.id, GrantType.TEMPORARY, expires_at=at(10), now=at(9))

    assert expire_grants(db, now=at(11), organization_id=other_org.id) == 0
    assert expire_grants(db, now=at(11), organization_id=sw1.organization_id) == 1


def test_grant_conflict_maps_integrity_error(db, sw1, prop1, re1, monkeypatch):
    # Simulate another process inserting between the scan and our insert
    monkeypatch.setattr(access_grant_service, "_active_grants", lambda db, staff_id, property_id: [])
    grant_access(db, sw1.id, prop1.id, re1.id, GrantType.RBAC_AUTOMATIC, now=at(8))

    with pytest.raises(GrantConflictError) as exc_info:
        grant_access(db, sw1.id, prop1.id, re1.id, GrantType.RBAC_AUTOMATIC, now=at(9))

    assert isinstance(exc_info.value.__cause__, IntegrityError)
    assert exc_info.value.status_code == 409
    assert len(_active(db, sw1.id, prop1.id)) == 1


def test_strict_mode_audit_failure_aborts_grant(db, org, sw1, prop1, re1, monkeypatch):
    _set_settings(db, org, strict_mode=True)
    monkeypatch.setattr(audit_service, "_flush_entry", _fail_flush)

    with pytest.raises(AuditWriteError):
        grant_access(db, sw1.id, prop1.id, re1.id, GrantType.RBAC_AUTOMATIC, now=at(8))

    assert db.query(AccessGrant).count() == 0


def test_strict_mode_audit_failure_aborts_revoke(db, org, sw1, prop1, re1, monkeypatch):
    grant = grant_access(db, sw1.id, prop1.id, re1.id, GrantType.RBAC_AUTOMATIC, now=at(8))
    _set_settings(db, org, strict_mode=True)
    monkeypatch.setattr(audit_service, "_flush_entry", _fail_flush)

    with pytest.raises(AuditWriteError):
        revoke_access(db, sw1.id, prop1.id, now=at(12))

    db.refresh(grant)
    assert grant.revoked_at is None


def test_lenient_mode_audit_failure_keeps_grant(db, sw1, prop1, re1, monkeypatch):
    monkeypatch.setattr(audit_service, "_flush_entry", _fail_flush)

    grant = grant_access(db, sw1.id, prop1.id, re1.id, GrantType.RBAC_AUTOMATIC, now=at(8))

    assert grant.id is not None
    assert len(_active(db, sw1.id, prop1.id)) == 1
    assert db.query(AccessAuditLog).count() == 0


def test_audit_logging_off_writes_no_entries(db, org, sw1, prop1, re1):
    _set_settings(db, org, audit_logging=False)

    grant_access(db, sw1.id, prop1.id, re1.id, GrantType.RBAC_AUTOMATIC, now=at(8))
    revoke_access(db, sw1.id, prop1.id, now=at(12))

    assert db.query(AccessAuditLog).count() == 0


def test_emitted_events_are_frozen(db, sw1, prop1, re1):
    received = []
    rbac_events.subscribe(received.append)

    grant = grant_access(db, sw1.id, prop1.id, re1.id, GrantType.MANUAL, now=at(8))

    event = received[0]
    assert event.payload == {"grant_id": grant.id, "grant_type": "manual"}
    assert event.to_dict()["occurred_at"].endswith("Z")
    with pytest.raises(ValidationError):
        event.staff_id = 999


def test_grant_and_revoke_emit_events(db, sw1, prop1, re1):
    received = []
    rbac_events.subscribe(received.append)

    grant = grant_access(db, sw1.id, prop1.id, re1.id, GrantType.RBAC_AUTOMATIC, now=at(8))
    revoke_access(db, sw1.id, prop1.id, now=at(12))

    assert [e.event_type for e in received] == [rbac_events.ACCESS_GRANTED, rbac_events.ACCESS_REVOKED]
    assert received[0].payload["grant_id"] == grant.id
    assert received[1].payload["grant_ids"] == [grant.id]


def test_deferred_commit_emits_nothing(db, sw1, prop1, re1):
    received = []
    rbac_events.subscribe(received.append)

    grant_access(db, sw1.id, prop1.id, re1.id, GrantType.RBAC_AUTOMATIC, now=at(8), commit=False)
    db.rollback()

    assert received == []
    assert db.query(AccessGrant).count() == 0


def test_locks_released_after_ledger_calls(db, sw1, prop1, re1):
    grant_access(db, sw1.id, prop1.id, re1.id, GrantType.RBAC_AUTOMATIC, now=at(8))
    revoke_access(db, sw1.id, prop1.id, now=at(12))
    with pytest.raises(GrantValidationError):
        grant_access(db, sw1.id, prop1.id, re1.id, GrantType.TEMPORARY, now=at(9))

    assert len(grant_locks) == 0
