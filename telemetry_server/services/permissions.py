"""Role to permission mapping."""

from __future__ import annotations

import enum

from telemetry_server.errors import ForbiddenError
from telemetry_server.models.user import Role


class Permission(str, enum.Enum):
    """Action an operator may be allowed to perform."""

    READ_DASHBOARD = "read_dashboard"
    READ_EVENT_LOG = "read_event_log"
    DELETE_EVENTS = "delete_events"
    MANAGE_USERS = "manage_users"
    MANAGE_DATABASE = "manage_database"
    MANAGE_TEAMS = "manage_teams"


ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.BASIC: frozenset({Permission.READ_DASHBOARD}),
    Role.ADVANCED: frozenset(
        {
            Permission.READ_DASHBOARD,
            Permission.READ_EVENT_LOG,
            Permission.DELETE_EVENTS,
        }
    ),
    Role.ADMINISTRATOR: frozenset(Permission),
}


def has_permission(role: str, permission: Permission) -> bool:
    """Return whether a role grants a permission.

    Parameters
    ----------
    role : str
        Role name; unknown roles grant nothing.
    permission : Permission
        Requested permission.

    Returns
    -------
    bool
        Whether the role allows the action.
    """
    try:
        return permission in ROLE_PERMISSIONS[Role(role)]
    except ValueError:
        return False


def ensure_permission(role: str, permission: Permission) -> None:
    """Raise ``ForbiddenError`` unless the role grants the permission."""
    if not has_permission(role, permission):
        raise ForbiddenError(permission=permission.value)
