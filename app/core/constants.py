"""
Application-wide constants
"""

SERVICE_NAME = "carenest-access-backend"

# Permission names stored in roles.permissions
PERMISSION_VIEW_CLIENTS = "view_clients"
PERMISSION_EDIT_CLIENTS = "edit_clients"
PERMISSION_VIEW_PROPERTIES = "view_properties"
PERMISSION_CLOCK_IN_OUT = "clock_in_out"
PERMISSION_MANAGE_STAFF = "manage_staff"
PERMISSION_MANAGE_SYSTEM = "manage_system"

# Legacy wildcard permission; replaced by roles.bypasses_access_control
PERMISSION_VIEW_ALL = "view_all"

# Grace period above which config validation warns
GRACE_PERIOD_WARNING_MINUTES = 30
