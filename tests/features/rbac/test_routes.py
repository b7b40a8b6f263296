"""Tests for the RBAC HTTP API."""

from httpx import AsyncClient, BasicAuth
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.features.rbac.models import AuditLog, Effect, Grant
from app.features.rbac.repository import RbacRepository
from app.features.rbac.service import check_right
from tests.factories import (
    add_member,
    assign_role,
    bearer,
    make_grant,
    make_group,
    make_org,
    make_org_member,
    make_role,
    make_user,
)


SUPER_ADMIN = BasicAuth(config.ADMIN_USERNAME, config.ADMIN_PASSWORD)


class TestSelfService:
    """Endpoints for the calling user."""

    async def test_requires_bearer(self, client: AsyncClient) -> None:
        response = await client.get("/rbac/rights")
        assert response.status_code == 401

    async def test_invalid_token(self, client: AsyncClient) -> None:
        response = await client.get("/rbac/rights", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    async def test_rights(self, db: AsyncSession, client: AsyncClient) -> None:
        user = await make_user(db, "u@example.com")
        await db.commit()

        response = await client.get("/rbac/rights", headers=bearer(user))

        assert response.status_code == 200
        assert "rbac:test" in response.json()["rights"]

    async def test_inactive_user_forbidden(self, db: AsyncSession, client: AsyncClient) -> None:
        user = await make_user(db, "u@example.com", is_active=False)
        await db.commit()

        response = await client.get("/rbac/rights", headers=bearer(user))

        assert response.status_code == 403

    async def test_check(self, db: AsyncSession, client: AsyncClient) -> None:
        user = await make_user(db, "u@example.com")
        role = await make_role(db, "support")
        await assign_role(db, user, role)
        await make_grant(db, role, "admin_panel__users:read")
        await db.commit()

        allowed = await client.post(
            "/rbac/check", json={"right": "admin_panel__users:read"}, headers=bearer(user)
        )
        assert allowed.status_code == 200
        assert allowed.json() == {"allowed": True, "reason": "allowed", "decision_layer": "role"}

        denied = await client.post(
            "/rbac/check", json={"right": "admin_panel__users:write"}, headers=bearer(user)
        )
        assert denied.json() == {"allowed": False, "reason": "no_match", "decision_layer": None}

    async def test_check_blank_right(self, db: AsyncSession, client: AsyncClient) -> None:
        user = await make_user(db, "u@example.com")
        await db.commit()

        response = await client.post("/rbac/check", json={"right": "  "}, headers=bearer(user))

        assert response.status_code == 400
        assert response.json() == {"error": "right is required", "code": "VALIDATION"}

    async def test_my_orgs_and_rights(self, db: AsyncSession, client: AsyncClient) -> None:
        user = await make_user(db, "u@example.com")
        org = await make_org(db)
        await make_org_member(db, org, user)
        grant = await make_grant(db, user, "backoffice:*", org=org)
        await db.commit()

        orgs = await client.get("/rbac/my-orgs", headers=bearer(user))
        assert orgs.json() == {"org_ids": [org.id]}

        rights = await client.get("/rbac/my-rights", params={"org_id": org.id}, headers=bearer(user))
        body = rights.json()
        assert body["org_id"] == org.id
        assert body["layers"]["user-direct"] == [grant.id]
        assert body["grants"][0]["source"] == "user-direct:org"


class TestAdminAccess:
    """Protection of the admin surface."""

    async def test_anonymous(self, client: AsyncClient) -> None:
        assert (await client.get("/rbac/roles")).status_code == 401

    async def test_wrong_basic_credentials(self, client: AsyncClient) -> None:
        response = await client.get("/rbac/roles", auth=BasicAuth("root", "wrong"))
        assert response.status_code == 401

    async def test_super_admin(self, client: AsyncClient) -> None:
        response = await client.get("/rbac/roles", auth=SUPER_ADMIN)
        assert response.status_code == 200
        assert response.json() == []

    async def test_user_without_right_forbidden(self, db: AsyncSession, client: AsyncClient) -> None:
        user = await make_user(db, "u@example.com")
        await db.commit()

        response = await client.get("/rbac/roles", headers=bearer(user))

        assert response.status_code == 403
        assert "no_match" in response.json()["detail"]

    async def test_user_with_rbac_grant(self, db: AsyncSession, client: AsyncClient) -> None:
        user = await make_user(db, "u@example.com")
        await make_grant(db, user, "rbac:*")
        await make_grant(db, user, "rbac:grants:write", effect=Effect.DENY)
        await db.commit()

        assert (await client.get("/rbac/roles", headers=bearer(user))).status_code == 200
        response = await client.post(
            "/rbac/grants",
            json={"subject_type": "user", "subject_id": user.id, "scope_type": "global", "right": "x"},
            headers=bearer(user),
        )
        assert response.status_code == 403

    async def test_is_admin_flag(self, db: AsyncSession, client: AsyncClient) -> None:
        user = await make_user(db, "admin@example.com", is_admin=True)
        await db.commit()

        assert (await client.get("/rbac/grants", headers=bearer(user))).status_code == 200

    async def test_org_scoped_admin_right_does_not_open_admin(self, db: AsyncSession, client: AsyncClient) -> None:
        user = await make_user(db, "u@example.com")
        org = await make_org(db)
        await make_grant(db, user, "rbac:roles:read", org=org)
        await db.commit()

        assert (await client.get("/rbac/roles", headers=bearer(user))).status_code == 403
        response = await client.get("/rbac/roles", params={"org_id": org.id}, headers=bearer(user))
        assert response.status_code == 403

    async def test_org_grant_writer_cannot_escalate_globally(
        self, db: AsyncSession, client: AsyncClient, repo: RbacRepository
    ) -> None:
        user = await make_user(db, "u@example.com")
        org = await make_org(db)
        await make_grant(db, user, "rbac:grants:write", org=org)
        await db.commit()

        response = await client.post(
            "/rbac/grants",
            params={"org_id": org.id},
            json={"subject_type": "user", "subject_id": user.id, "scope_type": "global", "right": "*"},
            headers=bearer(user),
        )

        assert response.status_code == 403
        wildcard = await db.execute(select(Grant.id).where(Grant.right == "*"))
        assert wildcard.first() is None
        assert (await check_right(repo, user.id, None, "admin_panel__users:write")).allowed is False


class TestAdminManagement:
    """Round trips through the admin endpoints."""

    async def test_role_lifecycle(self, db: AsyncSession, client: AsyncClient) -> None:
        created = await client.post("/rbac/roles", json={"key": "Support", "name": "Support"}, auth=SUPER_ADMIN)
        assert created.status_code == 201
        role = created.json()
        assert role["key"] == "support"
        assert role["is_global"] is True

        duplicate = await client.post("/rbac/roles", json={"key": "support", "name": "Again"}, auth=SUPER_ADMIN)
        assert duplicate.status_code == 409
        assert duplicate.json()["code"] == "CONFLICT"

        updated = await client.patch(f"/rbac/roles/{role['id']}", json={"status": "disabled"}, auth=SUPER_ADMIN)
        assert updated.status_code == 200
        assert updated.json()["status"] == "disabled"

        missing = await client.get("/rbac/roles/nope", auth=SUPER_ADMIN)
        assert missing.status_code == 404
        assert missing.json() == {"error": "Role not found", "code": "NOT_FOUND"}

        audit = await client.get("/rbac/audit-logs", auth=SUPER_ADMIN)
        assert audit.status_code == 200
        assert audit.json()["total"] == 2
        assert {item["action"] for item in audit.json()["items"]} == {
            "admin.rbac.role.create",
            "admin.rbac.role.update",
        }
        assert {item["actor_type"] for item in audit.json()["items"]} == {"basic_auth"}

    async def test_org_role_missing_org_id(self, client: AsyncClient) -> None:
        response = await client.post(
            "/rbac/roles", json={"key": "x", "name": "X", "is_global": False}, auth=SUPER_ADMIN
        )
        assert response.status_code == 400
        assert response.json()["error"] == "orgId is required for org-scoped roles"

    async def test_request_validation_error(self, client: AsyncClient) -> None:
        response = await client.post("/rbac/roles", json={"name": "X"}, auth=SUPER_ADMIN)
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION"
        assert "key" in body["fields"]

    async def test_bulk_members(self, db: AsyncSession, client: AsyncClient) -> None:
        org = await make_org(db)
        group = await make_group(db, "ops", org=org)
        inside = await make_user(db, "in@example.com")
        outside = await make_user(db, "out@example.com")
        await make_org_member(db, org, inside)
        await db.commit()

        rejected = await client.post(
            f"/rbac/groups/{group.id}/members/bulk",
            json={"user_ids": [inside.id, outside.id]},
            auth=SUPER_ADMIN,
        )
        assert rejected.status_code == 400
        assert rejected.json() == {
            "error": "Some users are not active members of the group org",
            "code": "VALIDATION",
            "denied_user_ids": [outside.id],
        }

        accepted = await client.post(
            f"/rbac/groups/{group.id}/members/bulk",
            json={"user_ids": [inside.id, inside.id]},
            auth=SUPER_ADMIN,
        )
        assert accepted.status_code == 201
        assert accepted.json() == {"success": True, "inserted_count": 1}

        members = (await client.get(f"/rbac/groups/{group.id}/members", auth=SUPER_ADMIN)).json()
        assert [m["user_id"] for m in members] == [inside.id]

        removed = await client.post(
            f"/rbac/groups/{group.id}/members/bulk-remove",
            json={"member_ids": [members[0]["id"]]},
            auth=SUPER_ADMIN,
        )
        assert removed.json() == {"success": True, "deleted_count": 1}

    async def test_grant_then_test_decision(self, db: AsyncSession, client: AsyncClient) -> None:
        user = await make_user(db, "u@example.com")
        group = await make_group(db, "staff")
        await add_member(db, group, user)
        await db.commit()

        role = (await client.post("/rbac/roles", json={"key": "viewer", "name": "Viewer"}, auth=SUPER_ADMIN)).json()
        link = await client.post(f"/rbac/groups/{group.id}/roles", json={"role_id": role["id"]}, auth=SUPER_ADMIN)
        assert link.status_code == 201
        grant = await client.post(
            "/rbac/grants",
            json={
                "subject_type": "role",
                "subject_id": role["id"],
                "scope_type": "global",
                "right": "experiments:*",
            },
            auth=SUPER_ADMIN,
        )
        assert grant.status_code == 201
        assert grant.json()["created_by_actor_id"] == config.ADMIN_USERNAME

        decision = await client.post(
            "/rbac/test", json={"user_id": user.id, "right": "experiments:read"}, auth=SUPER_ADMIN
        )
        assert decision.status_code == 200
        body = decision.json()
        assert body["allowed"] is True
        assert body["decision_layer"] == "group-role"
        assert body["explain"][0]["source"] == "group-role:global"
        assert body["context"]["roles"][0]["source"] == "group"

        deleted = await client.delete(f"/rbac/grants/{grant.json()['id']}", auth=SUPER_ADMIN)
        assert deleted.json() == {"success": True}
        after = await client.post(
            "/rbac/test", json={"user_id": user.id, "right": "experiments:read"}, auth=SUPER_ADMIN
        )
        assert after.json()["reason"] == "no_match"

    async def test_user_roles(self, db: AsyncSession, client: AsyncClient) -> None:
        user = await make_user(db, "u@example.com")
        role = await make_role(db, "viewer")
        await db.commit()

        link = await client.post(f"/rbac/users/{user.id}/roles", json={"role_id": role.id}, auth=SUPER_ADMIN)
        assert link.status_code == 201
        listed = await client.get(f"/rbac/users/{user.id}/roles", auth=SUPER_ADMIN)
        assert [row["key"] for row in listed.json()] == ["viewer"]

        removed = await client.delete(f"/rbac/users/{user.id}/roles/{link.json()['id']}", auth=SUPER_ADMIN)
        assert removed.status_code == 200

        result = await db.execute(select(AuditLog.entity_type).where(AuditLog.entity_id == user.id))
        assert set(result.scalars().all()) == {"User"}


async def test_health(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "database": "ok"}
