"""
RBAC configuration schemas

RBACConfig is the composite view an administrator edits: organization master
switch, per-role flags and the organization's global settings.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class NotificationSettings(BaseModel):
    on_clock_in: bool = True
    on_clock_out: bool = True
    on_access_granted: bool = True
    on_access_revoked: bool = True


class GlobalRBACSettings(BaseModel):
    strict_mode: bool = False
    grace_period_minutes: int = Field(default=15, description="Minutes before start / after end a clock event stays valid")
    require_location: bool = False
    max_distance_meters: int = Field(default=100, description="Max distance from the property when location is required")
    audit_logging: bool = True
    manual_grants_expire_with_shift: bool = Field(
        default=True,
        description="Manual grants without explicit expiry end with the roster entry",
    )
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)


class RoleRBACConfig(BaseModel):
    role_id: int
    role_name: str
    rbac_enabled: bool
    bypasses_access_control: bool = False
    permissions: List[str] = Field(default_factory=list)


class RBACConfig(BaseModel):
    """Full RBAC configuration of one organization"""

    organization_enabled: bool
    role_configurations: List[RoleRBACConfig] = Field(default_factory=list)
    global_settings: GlobalRBACSettings = Field(default_factory=GlobalRBACSettings)

    model_config = ConfigDict(frozen=True)

    def role(self, role_id: int) -> Optional[RoleRBACConfig]:
        for role_config in self.role_configurations:
            if role_config.role_id == role_id:
                return role_config
        return None


class RBACValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class OrganizationToggle(BaseModel):
    enabled: bool


class RoleConfigUpdate(BaseModel):
    """Partial update of one role's RBAC flags"""

    rbac_enabled: Optional[bool] = None
    bypasses_access_control: Optional[bool] = None
    permissions: Optional[List[str]] = None


class NotificationSettingsUpdate(BaseModel):
    on_clock_in: Optional[bool] = None
    on_clock_out: Optional[bool] = None
    on_access_granted: Optional[bool] = None
    on_access_revoked: Optional[bool] = None


class GlobalSettingsUpdate(BaseModel):
    """Partial update of global settings; omitted fields keep their value"""

    strict_mode: Optional[bool] = None
    grace_period_minutes: Optional[int] = None
    require_location: Optional[bool] = None
    max_distance_meters: Optional[int] = None
    audit_logging: Optional[bool] = None
    manual_grants_expire_with_shift: Optional[bool] = None
    notifications: Optional[NotificationSettingsUpdate] = None
