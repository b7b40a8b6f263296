"""
RBAC API routes.

Self-service endpoints answer "what can I do" for the calling user; admin
endpoints manage roles, groups, links and grants and are protected by the
engine itself through ``require_right``.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Request, status

from app.core import config
from app.core.rate_limit import limiter
from app.features.organizations import membership
from app.features.rbac import admin
from app.features.rbac.audit import Actor
from app.features.rbac.dependencies import get_actor, get_repository, require_right
from app.features.rbac.models import ScopeType, Status, SubjectType
from app.features.rbac.repository import RbacRepository
from app.features.rbac.rights import list_rights
from app.features.rbac.schemas import (
    AddGroupMember,
    AddGroupMembersBulk,
    AssignRole,
    AuditLogListResponse,
    BulkAddResponse,
    BulkRemoveResponse,
    DecisionResponse,
    EffectiveRightsResponse,
    GrantCreate,
    GrantResponse,
    GroupCreate,
    GroupMemberLink,
    GroupMemberResponse,
    GroupResponse,
    GroupRoleLink,
    GroupRoleResponse,
    GroupUpdate,
    MyOrgsResponse,
    RemoveGroupMembersBulk,
    RightCheckRequest,
    RightCheckResponse,
    RightsResponse,
    RightTestRequest,
    RoleCreate,
    RoleResponse,
    RoleUpdate,
    SuccessResponse,
    UserRoleLink,
    UserRoleResponse,
)
from app.features.rbac.service import check_right, get_effective_grants
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Self-service Routes
# ============================================================================

@router.get("/rights", response_model=RightsResponse)
async def get_rights(actor: Actor = Depends(get_actor)):
    """Catalog of known rights, for selection UIs."""
    return {"rights": list_rights()}


@router.get("/my-orgs", response_model=MyOrgsResponse)
async def get_my_orgs(
    actor: Actor = Depends(get_actor),
    repo: RbacRepository = Depends(get_repository),
):
    """Organizations the caller is an active member of."""
    return {"org_ids": await membership.active_org_ids(repo.session, actor.actor_id)}


@router.get("/my-rights", response_model=EffectiveRightsResponse)
async def get_my_rights(
    org_id: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    repo: RbacRepository = Depends(get_repository),
):
    """Every grant that applies to the caller in ``org_id`` (or globally), by layer."""
    effective = await get_effective_grants(repo, actor.actor_id, org_id)
    return {
        "user_id": actor.actor_id,
        "org_id": effective.scope.org_id,
        "grants": effective.explain,
        "layers": {
            layer.value: [grant.id for grant in grants]
            for layer, grants in effective.layers.items()
        },
        "context": effective.scope.context(),
    }


@router.post("/check", response_model=RightCheckResponse)
@limiter.limit(config.RATE_LIMIT)
async def check_my_right(
    request: Request,
    body: RightCheckRequest,
    actor: Actor = Depends(get_actor),
    repo: RbacRepository = Depends(get_repository),
):
    """Decide a right for the caller."""
    decision = await check_right(repo, user_id=actor.actor_id, org_id=body.org_id, right=body.right)
    return decision.to_dict()


# ============================================================================
# Admin: Decision Test
# ============================================================================

@router.post("/test", response_model=DecisionResponse)
@limiter.limit(config.RATE_LIMIT)
async def test_right(
    request: Request,
    body: RightTestRequest,
    actor: Actor = Depends(require_right("rbac:test")),
    repo: RbacRepository = Depends(get_repository),
):
    """Full decision with explain output for any user."""
    decision = await check_right(repo, user_id=body.user_id, org_id=body.org_id, right=body.right)
    return decision.to_dict()


# ============================================================================
# Admin: Roles
# ============================================================================

@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    org_id: Optional[str] = None,
    role_status: Optional[Status] = None,
    actor: Actor = Depends(require_right("rbac:roles:read")),
    repo: RbacRepository = Depends(get_repository),
):
    return await admin.list_roles(repo, org_id=org_id, status=role_status)


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    actor: Actor = Depends(require_right("rbac:roles:write")),
    repo: RbacRepository = Depends(get_repository),
):
    """Create a global or org-scoped role."""
    return await admin.create_role(repo, actor, **role.model_dump())


@router.get("/roles/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    actor: Actor = Depends(require_right("rbac:roles:read")),
    repo: RbacRepository = Depends(get_repository),
):
    return await admin.get_role(repo, role_id)


@router.patch("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    role_update: RoleUpdate,
    actor: Actor = Depends(require_right("rbac:roles:write")),
    repo: RbacRepository = Depends(get_repository),
):
    return await admin.update_role(repo, actor, role_id, role_update.model_dump(exclude_unset=True))


# ============================================================================
# Admin: Groups
# ============================================================================

@router.get("/groups", response_model=List[GroupResponse])
async def list_groups(
    org_id: Optional[str] = None,
    group_status: Optional[Status] = None,
    actor: Actor = Depends(require_right("rbac:groups:read")),
    repo: RbacRepository = Depends(get_repository),
):
    return await admin.list_groups(repo, org_id=org_id, status=group_status)


@router.post("/groups", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
    group: GroupCreate,
    actor: Actor = Depends(require_right("rbac:groups:write")),
    repo: RbacRepository = Depends(get_repository),
):
    """Create a global or org-scoped group."""
    return await admin.create_group(repo, actor, **group.model_dump())


@router.get("/groups/{group_id}", response_model=GroupResponse)
async def get_group(
    group_id: str,
    actor: Actor = Depends(require_right("rbac:groups:read")),
    repo: RbacRepository = Depends(get_repository),
):
    return await admin.get_group(repo, group_id)


@router.patch("/groups/{group_id}", response_model=GroupResponse)
async def update_group(
    group_id: str,
    group_update: GroupUpdate,
    actor: Actor = Depends(require_right("rbac:groups:write")),
    repo: RbacRepository = Depends(get_repository),
):
    return await admin.update_group(repo, actor, group_id, group_update.model_dump(exclude_unset=True))


# ============================================================================
# Admin: Group Members
# ============================================================================

@router.get("/groups/{group_id}/members", response_model=List[GroupMemberResponse])
async def list_group_members(
    group_id: str,
    actor: Actor = Depends(require_right("rbac:groups:read")),
    repo: RbacRepository = Depends(get_repository),
):
    return await admin.list_group_members(repo, group_id)


@router.post("/groups/{group_id}/members", response_model=GroupMemberLink, status_code=status.HTTP_201_CREATED)
async def add_group_member(
    group_id: str,
    body: AddGroupMember,
    actor: Actor = Depends(require_right("rbac:groups:write")),
    repo: RbacRepository = Depends(get_repository),
):
    """Add a user to a group. Org groups require active org membership."""
    return await admin.add_group_member(repo, actor, group_id, body.user_id)


@router.post("/groups/{group_id}/members/bulk", response_model=BulkAddResponse, status_code=status.HTTP_201_CREATED)
async def add_group_members_bulk(
    group_id: str,
    body: AddGroupMembersBulk,
    actor: Actor = Depends(require_right("rbac:groups:write")),
    repo: RbacRepository = Depends(get_repository),
):
    """Add many users at once; all-or-nothing on membership, duplicates skipped."""
    inserted_count = await admin.add_group_members_bulk(repo, actor, group_id, body.user_ids)
    return {"success": True, "inserted_count": inserted_count}


@router.post("/groups/{group_id}/members/bulk-remove", response_model=BulkRemoveResponse)
async def remove_group_members_bulk(
    group_id: str,
    body: RemoveGroupMembersBulk,
    actor: Actor = Depends(require_right("rbac:groups:write")),
    repo: RbacRepository = Depends(get_repository),
):
    deleted_count = await admin.remove_group_members_bulk(repo, actor, group_id, body.member_ids)
    return {"success": True, "deleted_count": deleted_count}


@router.delete("/groups/{group_id}/members/{member_id}", response_model=SuccessResponse)
async def remove_group_member(
    group_id: str,
    member_id: str,
    actor: Actor = Depends(require_right("rbac:groups:write")),
    repo: RbacRepository = Depends(get_repository),
):
    await admin.remove_group_member(repo, actor, group_id, member_id)
    return {"success": True}


# ============================================================================
# Admin: Group Roles
# ============================================================================

@router.get("/groups/{group_id}/roles", response_model=List[GroupRoleResponse])
async def list_group_roles(
    group_id: str,
    actor: Actor = Depends(require_right("rbac:groups:read")),
    repo: RbacRepository = Depends(get_repository),
):
    return await admin.list_group_roles(repo, group_id)


@router.post("/groups/{group_id}/roles", response_model=GroupRoleLink, status_code=status.HTTP_201_CREATED)
async def add_group_role(
    group_id: str,
    body: AssignRole,
    actor: Actor = Depends(require_right("rbac:groups:write")),
    repo: RbacRepository = Depends(get_repository),
):
    """Link a role to a group, enforcing the global/org scoping rules."""
    return await admin.add_group_role(repo, actor, group_id, body.role_id)


@router.delete("/groups/{group_id}/roles/{group_role_id}", response_model=SuccessResponse)
async def remove_group_role(
    group_id: str,
    group_role_id: str,
    actor: Actor = Depends(require_right("rbac:groups:write")),
    repo: RbacRepository = Depends(get_repository),
):
    await admin.remove_group_role(repo, actor, group_id, group_role_id)
    return {"success": True}


# ============================================================================
# Admin: User Roles
# ============================================================================

@router.get("/users/{user_id}/roles", response_model=List[UserRoleResponse])
async def list_user_roles(
    user_id: str,
    actor: Actor = Depends(require_right("rbac:roles:read")),
    repo: RbacRepository = Depends(get_repository),
):
    return await admin.list_user_roles(repo, user_id)


@router.post("/users/{user_id}/roles", response_model=UserRoleLink, status_code=status.HTTP_201_CREATED)
async def add_user_role(
    user_id: str,
    body: AssignRole,
    actor: Actor = Depends(require_right("rbac:roles:write")),
    repo: RbacRepository = Depends(get_repository),
):
    return await admin.add_user_role(repo, actor, user_id, body.role_id)


@router.delete("/users/{user_id}/roles/{user_role_id}", response_model=SuccessResponse)
async def remove_user_role(
    user_id: str,
    user_role_id: str,
    actor: Actor = Depends(require_right("rbac:roles:write")),
    repo: RbacRepository = Depends(get_repository),
):
    await admin.remove_user_role(repo, actor, user_id, user_role_id)
    return {"success": True}


# ============================================================================
# Admin: Grants
# ============================================================================

@router.get("/grants", response_model=List[GrantResponse])
async def list_grants(
    subject_type: Optional[SubjectType] = None,
    subject_id: Optional[str] = None,
    scope_type: Optional[ScopeType] = None,
    scope_id: Optional[str] = None,
    right: Optional[str] = None,
    actor: Actor = Depends(require_right("rbac:grants:read")),
    repo: RbacRepository = Depends(get_repository),
):
    """List grants with optional filtering."""
    return await admin.list_grants(
        repo,
        subject_type=subject_type,
        subject_id=subject_id,
        scope_type=scope_type,
        scope_id=scope_id,
        right=right,
    )


@router.post("/grants", response_model=GrantResponse, status_code=status.HTTP_201_CREATED)
async def create_grant(
    grant: GrantCreate,
    actor: Actor = Depends(require_right("rbac:grants:write")),
    repo: RbacRepository = Depends(get_repository),
):
    """Attach a right pattern (allow or deny) to a role, user or group."""
    return await admin.create_grant(repo, actor, **grant.model_dump())


@router.delete("/grants/{grant_id}", response_model=SuccessResponse)
async def delete_grant(
    grant_id: str,
    actor: Actor = Depends(require_right("rbac:grants:write")),
    repo: RbacRepository = Depends(get_repository),
):
    await admin.delete_grant(repo, actor, grant_id)
    return {"success": True}


# ============================================================================
# Admin: Audit Log
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = 0,
    limit: int = 50,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    actor: Actor = Depends(require_right("rbac:audit:read")),
    repo: RbacRepository = Depends(get_repository),
):
    """Page through administrative changes, newest first."""
    return await admin.list_audit_logs(
        repo,
        skip=skip,
        limit=min(max(limit, 1), 200),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
    )
