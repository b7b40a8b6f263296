"""Tests for the rights catalog."""

from app.features.rbac.rights import DEFAULT_RIGHTS, list_rights


def test_list_rights_sorted_and_unique() -> None:
    rights = list_rights()
    assert rights == sorted(rights)
    assert len(rights) == len(set(rights))
    assert set(rights) == set(DEFAULT_RIGHTS)


def test_list_rights_returns_a_copy() -> None:
    rights = list_rights()
    rights.append("mutated")
    assert "mutated" not in list_rights()


def test_catalog_covers_admin_rights() -> None:
    rights = list_rights()
    for right in ("rbac:roles:write", "rbac:test", "admin_panel__users:read", "*"):
        assert right in rights
