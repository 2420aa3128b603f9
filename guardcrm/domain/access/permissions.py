"""Role hierarchy and permission matrix"""

import copy
from typing import Optional

ROLES = ("admin", "manager", "guard", "client")

ROLE_LEVELS = {"admin": 4, "manager": 3, "guard": 2, "client": 1}

_NONE = {
    "users": {"view_all": False, "create": False, "edit": False, "delete": False},
    "guards": {
        "view_all": False,
        "edit_profiles": False,
        "assign_shifts": False,
        "manage_applications": False,
    },
    "shifts": {"view_all": False, "create": False, "edit": False, "assign": False},
    "system": {"view_audit_logs": False, "manage_roles": False, "system_config": False},
    "leads": {"view_all": False, "create": False, "edit": False, "assign": False},
    "compliance": {"view_all": False, "manage_reports": False, "audit_access": False},
}


def _matrix(value: bool, overrides: Optional[dict] = None) -> dict:
    matrix = {section: {action: value for action in actions} for section, actions in _NONE.items()}
    for section, actions in (overrides or {}).items():
        matrix[section].update(actions)
    return matrix


DEFAULT_PERMISSIONS = {
    "admin": _matrix(True),
    "manager": _matrix(
        True,
        {
            "users": {"view_all": False, "create": False, "edit": False, "delete": False},
            "system": {"view_audit_logs": False, "manage_roles": False, "system_config": False},
            "compliance": {"manage_reports": False, "audit_access": False},
        },
    ),
    "guard": _matrix(False),
    "client": _matrix(False),
}


def get_default_permissions(role: str) -> dict:
    """Return a copy of the default permission matrix for a role"""
    if role not in DEFAULT_PERMISSIONS:
        raise ValueError(f"Unknown role: {role}")
    return copy.deepcopy(DEFAULT_PERMISSIONS[role])


def has_permission(role: str, permissions: Optional[dict], permission_path: str) -> bool:
    """
    Resolve a dotted permission path such as "leads.assign".

    A stored per-user matrix takes precedence over the role default. Paths that
    do not exist in the matrix resolve to False.
    """
    matrix = permissions if permissions else DEFAULT_PERMISSIONS.get(role)
    if not matrix:
        return False

    current = matrix
    for part in permission_path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return False
    return current is True


def has_role_at_least(role: str, minimum_role: str) -> bool:
    return ROLE_LEVELS.get(role, 0) >= ROLE_LEVELS.get(minimum_role, 99)


def merge_permissions(base: dict, updates: dict) -> dict:
    """Merge a partial matrix into a full one; unknown sections/actions are rejected"""
    merged = copy.deepcopy(base)
    for section, actions in updates.items():
        if section not in merged or not isinstance(actions, dict):
            raise ValueError(f"Unknown permission section: {section}")
        for action, value in actions.items():
            if action not in merged[section]:
                raise ValueError(f"Unknown permission: {section}.{action}")
            merged[section][action] = bool(value)
    return merged
