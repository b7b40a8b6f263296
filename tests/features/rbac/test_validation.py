"""Tests for write-path validation."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import RbacValidationError
from app.features.organizations.models import MembershipStatus
from app.features.rbac.models import Group, Role, ScopeType, Status
from app.features.rbac.validation import (
    ensure_active,
    validate_grant_scope,
    validate_group_member,
    validate_group_members_bulk,
    validate_group_role_scope,
    validate_scope,
)
from tests.factories import make_group, make_org, make_org_member, make_user


class TestValidateScope:
    """Tests for validate_scope."""

    def test_global_without_org(self) -> None:
        assert validate_scope(True, None) is None
        assert validate_scope(True, "  ") is None

    def test_global_with_org_rejected(self) -> None:
        with pytest.raises(RbacValidationError, match="Global roles cannot have an orgId"):
            validate_scope(True, "org-1")

    def test_org_requires_org_id(self) -> None:
        with pytest.raises(RbacValidationError, match="orgId is required for org-scoped groups"):
            validate_scope(False, None, entity="group")

    def test_org_id_trimmed(self) -> None:
        assert validate_scope(False, " org-1 ") == "org-1"


class TestValidateGrantScope:
    """Tests for validate_grant_scope."""

    def test_global_drops_scope_id(self) -> None:
        assert validate_grant_scope(ScopeType.GLOBAL, "org-1") is None
        assert validate_grant_scope("global", None) is None

    def test_org_requires_scope_id(self) -> None:
        with pytest.raises(RbacValidationError, match="scopeId is required when scopeType=org"):
            validate_grant_scope("org", None)

    def test_org_keeps_scope_id(self) -> None:
        assert validate_grant_scope(ScopeType.ORG, "org-1") == "org-1"

    def test_unknown_scope_type(self) -> None:
        with pytest.raises(RbacValidationError):
            validate_grant_scope("tenant", "org-1")


class TestGroupRoleScope:
    """Tests for validate_group_role_scope."""

    def test_global_group_takes_global_role(self) -> None:
        validate_group_role_scope(Group(is_global=True), Role(is_global=True))

    def test_global_group_rejects_org_role(self) -> None:
        with pytest.raises(RbacValidationError, match="Global groups cannot include org-scoped roles"):
            validate_group_role_scope(Group(is_global=True), Role(is_global=False, org_id="org-1"))

    def test_org_group_takes_global_role(self) -> None:
        validate_group_role_scope(Group(is_global=False, org_id="org-1"), Role(is_global=True))

    def test_org_group_takes_same_org_role(self) -> None:
        validate_group_role_scope(
            Group(is_global=False, org_id="org-1"), Role(is_global=False, org_id="org-1")
        )

    def test_org_group_rejects_other_org_role(self) -> None:
        with pytest.raises(RbacValidationError, match="Org-scoped roles must match the group orgId"):
            validate_group_role_scope(
                Group(is_global=False, org_id="org-1"), Role(is_global=False, org_id="org-2")
            )


def test_ensure_active() -> None:
    ensure_active(Role(status=Status.ACTIVE), "Role")
    with pytest.raises(RbacValidationError, match="Group is not active"):
        ensure_active(Group(status=Status.DISABLED), "Group")


class TestGroupMembership:
    """Tests for org membership checks on group members."""

    async def test_global_group_accepts_anyone(self, db: AsyncSession) -> None:
        user = await make_user(db, "a@example.com")
        group = await make_group(db, "everyone")
        await validate_group_member(db, group, user.id)

    async def test_org_group_requires_active_member(self, db: AsyncSession) -> None:
        org = await make_org(db)
        member = await make_user(db, "member@example.com")
        removed = await make_user(db, "removed@example.com")
        outsider = await make_user(db, "outsider@example.com")
        await make_org_member(db, org, member)
        await make_org_member(db, org, removed, status=MembershipStatus.REMOVED)
        group = await make_group(db, "ops", org=org)

        await validate_group_member(db, group, member.id)
        for user in (removed, outsider):
            with pytest.raises(RbacValidationError, match="User is not an active member of the group org"):
                await validate_group_member(db, group, user.id)

    async def test_bulk_reports_denied_ids_in_order(self, db: AsyncSession) -> None:
        org = await make_org(db)
        users = [await make_user(db, f"u{i}@example.com") for i in range(3)]
        await make_org_member(db, org, users[1])
        group = await make_group(db, "ops", org=org)

        with pytest.raises(RbacValidationError) as excinfo:
            await validate_group_members_bulk(db, group, [u.id for u in users])
        assert excinfo.value.details == {"denied_user_ids": [users[0].id, users[2].id]}
