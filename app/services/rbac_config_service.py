"""
RBAC configuration service

Organization master switch, per-role flags and global settings, exposed as one
RBACConfig snapshot. Reads go through a per-organization TTL cache that every
write invalidates. Writes only change configuration: they never create or
revoke grants.
"""
import logging
import threading
import time
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.constants import GRACE_PERIOD_WARNING_MINUTES, PERMISSION_VIEW_ALL
from app.core.errors import ConfigurationError, NotFoundError
from app.models.rbac_settings import RBACSettings
from app.models.staff import Staff
from app.schemas.rbac import (
    GlobalRBACSettings,
    GlobalSettingsUpdate,
    NotificationSettings,
    RBACConfig,
    RBACValidationResult,
    RoleRBACConfig,
)
from app.services import directory_service

logger = logging.getLogger(__name__)


class RBACConfigCache:
    """
    Per-organization cache of RBACConfig snapshots.

    Entries are (stored_at, config) tuples; a ttl of 0 disables caching.
    """

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl_seconds = settings.RBAC_CONFIG_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._lock = threading.Lock()
        self._entries: Dict[int, Tuple[float, RBACConfig]] = {}

    def get(self, organization_id: int) -> Optional[RBACConfig]:
        if self.ttl_seconds <= 0:
            return None
        with self._lock:
            entry = self._entries.get(organization_id)
            if entry is None:
                return None
            stored_at, config = entry
            if time.monotonic() - stored_at > self.ttl_seconds:
                del self._entries[organization_id]
                return None
            return config

    def put(self, organization_id: int, config: RBACConfig) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[organization_id] = (time.monotonic(), config)

    def invalidate(self, organization_id: Optional[int] = None) -> None:
        """Drop one organization's entry, or every entry when organization_id is None"""
        with self._lock:
            if organization_id is None:
                self._entries.clear()
            else:
                self._entries.pop(organization_id, None)

    def __contains__(self, organization_id: int) -> bool:
        return self.get(organization_id) is not None


config_cache = RBACConfigCache()


def get_or_create_settings(db: Session, organization_id: int) -> RBACSettings:
    """
    Get the organization's settings row, creating it with application defaults if missing.
    """
    row = db.query(RBACSettings).filter(RBACSettings.organization_id == organization_id).first()

    if not row:
        row = RBACSettings(
            organization_id=organization_id,
            strict_mode=settings.RBAC_DEFAULT_STRICT_MODE,
            grace_period_minutes=settings.RBAC_DEFAULT_GRACE_PERIOD_MINUTES,
            require_location=settings.RBAC_DEFAULT_REQUIRE_LOCATION,
            max_distance_meters=settings.RBAC_DEFAULT_MAX_DISTANCE_METERS,
            audit_logging=settings.RBAC_DEFAULT_AUDIT_LOGGING,
            notify_on_clock_in=True,
            notify_on_clock_out=True,
            notify_on_access_granted=True,
            notify_on_access_revoked=True,
            manual_grants_expire_with_shift=True,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        logger.info("Created default RBAC settings for organization %s", organization_id)

    return row


def _settings_to_schema(row: RBACSettings) -> GlobalRBACSettings:
    return GlobalRBACSettings(
        strict_mode=row.strict_mode,
        grace_period_minutes=row.grace_period_minutes,
        require_location=row.require_location,
        max_distance_meters=row.max_distance_meters,
        audit_logging=row.audit_logging,
        manual_grants_expire_with_shift=row.manual_grants_expire_with_shift,
        notifications=NotificationSettings(
            on_clock_in=row.notify_on_clock_in,
            on_clock_out=row.notify_on_clock_out,
            on_access_granted=row.notify_on_access_granted,
            on_access_revoked=row.notify_on_access_revoked,
        ),
    )


def _apply_settings(row: RBACSettings, global_settings: GlobalRBACSettings) -> None:
    row.strict_mode = global_settings.strict_mode
    row.grace_period_minutes = global_settings.grace_period_minutes
    row.require_location = global_settings.require_location
    row.max_distance_meters = global_settings.max_distance_meters
    row.audit_logging = global_settings.audit_logging
    row.manual_grants_expire_with_shift = global_settings.manual_grants_expire_with_shift
    row.notify_on_clock_in = global_settings.notifications.on_clock_in
    row.notify_on_clock_out = global_settings.notifications.on_clock_out
    row.notify_on_access_granted = global_settings.notifications.on_access_granted
    row.notify_on_access_revoked = global_settings.notifications.on_access_revoked


def get_config(db: Session, organization_id: int, *, use_cache: bool = True) -> RBACConfig:
    """
    Current RBAC configuration of an organization.

    Raises:
        NotFoundError: If the organization does not exist
    """
    if use_cache:
        cached = config_cache.get(organization_id)
        if cached is not None:
            return cached

    organization = directory_service.get_organization(db, organization_id)
    row = get_or_create_settings(db, organization_id)
    roles = directory_service.list_roles(db, organization_id)

    config = RBACConfig(
        organization_enabled=bool(organization.rbac_enabled),
        role_configurations=[
            RoleRBACConfig(
                role_id=role.id,
                role_name=role.name,
                rbac_enabled=bool(role.rbac_enabled),
                bypasses_access_control=bool(role.bypasses_access_control),
                permissions=list(role.permissions or []),
            )
            for role in roles
        ],
        global_settings=_settings_to_schema(row),
    )
    config_cache.put(organization_id, config)
    return config


def validate_config(
    config: RBACConfig,
    known_role_ids: Optional[Iterable[int]] = None,
) -> RBACValidationResult:
    """
    Validate an RBAC configuration without saving it.

    Errors block a write; warnings are reported but accepted.
    known_role_ids, when given, are the role ids that exist in the organization.
    """
    errors: List[str] = []
    warnings: List[str] = []
    global_settings = config.global_settings

    role_ids = [role_config.role_id for role_config in config.role_configurations]
    duplicates = sorted({role_id for role_id in role_ids if role_ids.count(role_id) > 1})
    if duplicates:
        errors.append(f"Duplicate role configuration for role id(s): {duplicates}")

    if known_role_ids is not None:
        unknown = sorted(set(role_ids) - set(known_role_ids))
        if unknown:
            errors.append(f"Role id(s) not found in organization: {unknown}")

    if config.organization_enabled and not any(rc.rbac_enabled for rc in config.role_configurations):
        errors.append(
            "RBAC is enabled for the organization but no role has RBAC enabled; "
            "automatic access control would apply to no staff"
        )

    if global_settings.grace_period_minutes < 0:
        errors.append("Grace period cannot be negative")

    if global_settings.require_location and global_settings.max_distance_meters <= 0:
        errors.append("Maximum distance must be greater than 0 when location is required")

    for role_config in config.role_configurations:
        if role_config.rbac_enabled and not role_config.permissions:
            warnings.append(f"Role '{role_config.role_name}' has RBAC enabled but no permissions")
        if PERMISSION_VIEW_ALL in role_config.permissions and not role_config.bypasses_access_control:
            warnings.append(
                f"Role '{role_config.role_name}' has the legacy '{PERMISSION_VIEW_ALL}' permission; "
                "set bypasses_access_control to exempt it from access control"
            )

    if global_settings.grace_period_minutes > GRACE_PERIOD_WARNING_MINUTES:
        warnings.append(
            f"Grace period of {global_settings.grace_period_minutes} minutes is unusually long "
            f"(more than {GRACE_PERIOD_WARNING_MINUTES})"
        )

    return RBACValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def update_config(db: Session, organization_id: int, config: RBACConfig) -> RBACValidationResult:
    """
    Validate and save an organization's RBAC configuration.

    Roles missing from config.role_configurations keep their current flags.
    role_name is informational and never renames a role.

    Raises:
        NotFoundError: If the organization does not exist
        ConfigurationError: If validation reports errors
    """
    organization = directory_service.get_organization(db, organization_id)
    roles = {role.id: role for role in directory_service.list_roles(db, organization_id)}

    result = validate_config(config, known_role_ids=roles.keys())
    if not result.is_valid:
        logger.warning("Rejected RBAC config for organization %s: %s", organization_id, result.errors)
        raise ConfigurationError(result.errors, result.warnings)

    organization.rbac_enabled = config.organization_enabled
    for role_config in config.role_configurations:
        role = roles[role_config.role_id]
        role.rbac_enabled = role_config.rbac_enabled
        role.bypasses_access_control = role_config.bypasses_access_control
        role.permissions = list(role_config.permissions)

    row = get_or_create_settings(db, organization_id)
    _apply_settings(row, config.global_settings)

    try:
        db.commit()
    finally:
        config_cache.invalidate(organization_id)

    logger.info(
        "RBAC config updated for organization %s: enabled=%s roles=%s",
        organization_id, config.organization_enabled, len(config.role_configurations),
    )
    for warning in result.warnings:
        logger.warning("RBAC config warning for organization %s: %s", organization_id, warning)

    return result


def set_organization_enabled(db: Session, organization_id: int, enabled: bool) -> RBACValidationResult:
    """Flip the organization master switch"""
    current = get_config(db, organization_id, use_cache=False)
    return update_config(db, organization_id, current.model_copy(update={"organization_enabled": enabled}))


def set_role_enabled(
    db: Session,
    organization_id: int,
    role_id: int,
    rbac_enabled: Optional[bool] = None,
    *,
    bypasses_access_control: Optional[bool] = None,
    permissions: Optional[List[str]] = None,
) -> RBACValidationResult:
    """
    Update one role's RBAC flags; None leaves a field unchanged.

    Raises:
        NotFoundError: If the role is not part of the organization
    """
    current = get_config(db, organization_id, use_cache=False)
    if current.role(role_id) is None:
        raise NotFoundError("Role", role_id)

    changes = {}
    if rbac_enabled is not None:
        changes["rbac_enabled"] = rbac_enabled
    if bypasses_access_control is not None:
        changes["bypasses_access_control"] = bypasses_access_control
    if permissions is not None:
        changes["permissions"] = list(permissions)

    role_configurations = [
        rc.model_copy(update=changes) if rc.role_id == role_id else rc
        for rc in current.role_configurations
    ]
    return update_config(
        db, organization_id, current.model_copy(update={"role_configurations": role_configurations})
    )


def update_global_settings(
    db: Session,
    organization_id: int,
    patch: GlobalSettingsUpdate,
) -> RBACValidationResult:
    """Partial update of global settings; unset fields keep their stored value"""
    current = get_config(db, organization_id, use_cache=False)
    changes = patch.model_dump(exclude_unset=True, exclude_none=True, exclude={"notifications"})

    if patch.notifications is not None:
        notification_changes = patch.notifications.model_dump(exclude_unset=True, exclude_none=True)
        changes["notifications"] = current.global_settings.notifications.model_copy(update=notification_changes)

    global_settings = current.global_settings.model_copy(update=changes)
    return update_config(db, organization_id, current.model_copy(update={"global_settings": global_settings}))


def is_rbac_applicable(db: Session, staff: Staff, config: Optional[RBACConfig] = None) -> bool:
    """
    True if automatic access control applies to this staff member.

    Requires the organization switch, the role flag and the staff flag to all be
    on, and the role not to bypass access control. Everyone else is exempt.

    Only the organization switch comes from the (possibly cached) config; the
    role flags are read from the staff member's role row, so a role created
    after the snapshot was taken is still enforced.
    """
    if config is None:
        config = get_config(db, staff.organization_id)

    if not config.organization_enabled:
        return False

    role = staff.role
    if role is None or not role.rbac_enabled or role.bypasses_access_control:
        return False

    return bool(staff.rbac_enabled)
