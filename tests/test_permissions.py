"""
Tests for the role hierarchy and permission matrix.
"""

import pytest

from guardcrm.domain.access.permissions import (
    get_default_permissions,
    has_permission,
    has_role_at_least,
    merge_permissions,
)


@pytest.mark.unit
class TestDefaultMatrix:
    """Role defaults resolve dotted permission paths."""

    def test_admin_has_everything(self):
        assert has_permission("admin", None, "system.view_audit_logs") is True
        assert has_permission("admin", None, "compliance.manage_reports") is True

    def test_manager_cannot_manage_users_or_read_audit_logs(self):
        assert has_permission("manager", None, "leads.assign") is True
        assert has_permission("manager", None, "users.create") is False
        assert has_permission("manager", None, "system.view_audit_logs") is False

    def test_manager_can_view_but_not_manage_compliance(self):
        assert has_permission("manager", None, "compliance.view_all") is True
        assert has_permission("manager", None, "compliance.manage_reports") is False

    def test_guard_and_client_have_nothing(self):
        for role in ("guard", "client"):
            assert has_permission(role, None, "shifts.view_all") is False

    def test_unknown_path_is_denied(self):
        assert has_permission("admin", None, "leads.teleport") is False
        assert has_permission("admin", None, "nothing") is False

    def test_unknown_role_is_denied(self):
        assert has_permission("janitor", None, "leads.view_all") is False

    def test_get_default_permissions_returns_copy(self):
        matrix = get_default_permissions("guard")
        matrix["leads"]["view_all"] = True

        assert has_permission("guard", None, "leads.view_all") is False

    def test_get_default_permissions_rejects_unknown_role(self):
        with pytest.raises(ValueError):
            get_default_permissions("janitor")


@pytest.mark.unit
class TestOverrides:
    """Stored per-user matrices take precedence over role defaults."""

    def test_user_matrix_overrides_role(self):
        matrix = merge_permissions(get_default_permissions("guard"), {"shifts": {"view_all": True}})

        assert has_permission("guard", matrix, "shifts.view_all") is True
        assert has_permission("guard", matrix, "shifts.create") is False

    def test_merge_rejects_unknown_section(self):
        with pytest.raises(ValueError, match="Unknown permission section"):
            merge_permissions(get_default_permissions("guard"), {"billing": {"view": True}})

    def test_merge_rejects_unknown_action(self):
        with pytest.raises(ValueError, match="Unknown permission"):
            merge_permissions(get_default_permissions("guard"), {"leads": {"export": True}})

    def test_merge_does_not_mutate_base(self):
        base = get_default_permissions("guard")
        merge_permissions(base, {"leads": {"create": True}})

        assert base["leads"]["create"] is False


@pytest.mark.unit
class TestRoleHierarchy:
    def test_levels(self):
        assert has_role_at_least("admin", "manager") is True
        assert has_role_at_least("manager", "manager") is True
        assert has_role_at_least("guard", "manager") is False

    def test_unknown_minimum_denies(self):
        assert has_role_at_least("admin", "owner") is False
