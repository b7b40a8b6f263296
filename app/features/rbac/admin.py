"""
RBAC administration operations.

Create and update roles and groups, link users, groups and roles, and
attach grants. Every operation:
1. validates its input and the scope invariants (``validation``)
2. applies the change
3. records an audit event in the same transaction
4. commits

Routes call these functions and let RbacError subclasses propagate to the
exception handlers in ``app.main``.
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from app.core.errors import RbacConflictError, RbacNotFoundError, RbacValidationError
from app.features.rbac.audit import Actor, record_audit_event, snapshot
from app.features.rbac.models import (
    AuditLog,
    Effect,
    Grant,
    Group,
    GroupMember,
    GroupRole,
    Role,
    ScopeType,
    Status,
    SubjectType,
    UserRole,
)
from app.features.rbac.repository import RbacRepository
from app.features.rbac.validation import (
    ensure_active,
    normalize_id,
    validate_grant_scope,
    validate_group_member,
    validate_group_members_bulk,
    validate_group_role_scope,
    validate_scope,
)
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def _status(value: Union[Status, str, None]) -> Status:
    return Status.DISABLED if value in (Status.DISABLED, "disabled") else Status.ACTIVE


def _text(value: Optional[str]) -> str:
    return str(value or "").strip()


def _unique_ids(values: Optional[Iterable[Any]]) -> List[str]:
    ids = [normalize_id(value) for value in (values or [])]
    return list(dict.fromkeys(value for value in ids if value))


async def _require_org(repo: RbacRepository, org_id: Optional[str]) -> None:
    if org_id is not None and not await repo.organization_exists(org_id):
        raise RbacNotFoundError("Organization not found")


async def _require_role(repo: RbacRepository, role_id: str) -> Role:
    role = await repo.get_role(role_id)
    if role is None:
        raise RbacNotFoundError("Role not found")
    return role


async def _require_group(repo: RbacRepository, group_id: str) -> Group:
    group = await repo.get_group(group_id)
    if group is None:
        raise RbacNotFoundError("Group not found")
    return group


async def _insert_one(repo: RbacRepository, row: Any, conflict_message: str) -> None:
    """Flush a single new row, turning a unique violation into a conflict."""
    db = repo.session
    try:
        async with db.begin_nested():
            db.add(row)
    except IntegrityError:
        log.info(f"Conflict inserting {type(row).__name__}: {conflict_message}")
        raise RbacConflictError(conflict_message)


async def _ensure_role_key_free(
    repo: RbacRepository, key: str, is_global: bool, org_id: Optional[str], role_id: Optional[str] = None
) -> None:
    existing = await repo.find_role_by_key(key, is_global, org_id)
    if existing is not None and existing.id != role_id:
        scope = "global roles" if is_global else f"org {org_id}"
        raise RbacConflictError(f"Role key {key!r} already exists in {scope}")


def _scope_change(
    entity: Union[Role, Group], changes: Dict[str, Any], label: str
) -> Optional[Tuple[bool, Optional[str]]]:
    """
    New ``(is_global, org_id)`` requested by ``changes``, or None when the scope stays.

    ``is_global`` takes ``org_id`` from the same patch. An ``org_id`` on its
    own moves an org-scoped entity to another org and is rejected for a
    global one.
    """
    if changes.get("is_global") is not None:
        is_global = bool(changes["is_global"])
        return is_global, validate_scope(is_global, changes.get("org_id"), entity=label)
    if changes.get("org_id") is not None:
        return entity.is_global, validate_scope(entity.is_global, changes["org_id"], entity=label)
    return None


async def _check_group_links_for_scope(
    repo: RbacRepository, group: Group, is_global: bool, org_id: Optional[str]
) -> None:
    """Every role already linked to ``group`` must fit the group's new scope."""
    result = await repo.session.execute(
        select(Role).join(GroupRole, GroupRole.role_id == Role.id).where(GroupRole.group_id == group.id)
    )
    proposed = Group(is_global=is_global, org_id=org_id)
    for role in result.scalars().all():
        validate_group_role_scope(proposed, role)


async def _check_role_links_for_scope(
    repo: RbacRepository, role: Role, is_global: bool, org_id: Optional[str]
) -> None:
    """Every group already holding ``role`` must accept it in its new scope."""
    result = await repo.session.execute(
        select(Group).join(GroupRole, GroupRole.group_id == Group.id).where(GroupRole.role_id == role.id)
    )
    proposed = Role(is_global=is_global, org_id=org_id)
    for group in result.scalars().all():
        validate_group_role_scope(group, proposed)


# ============================================================================
# Roles
# ============================================================================

async def list_roles(
    repo: RbacRepository,
    org_id: Optional[str] = None,
    status: Optional[Status] = None,
) -> List[Role]:
    """List roles, newest first, optionally narrowed to one org or status."""
    stmt = select(Role)
    if org_id:
        stmt = stmt.where(Role.org_id == org_id)
    if status:
        stmt = stmt.where(Role.status == status)
    result = await repo.session.execute(stmt.order_by(Role.created_at.desc(), Role.id.desc()))
    return list(result.scalars().all())


async def get_role(repo: RbacRepository, role_id: str) -> Role:
    return await _require_role(repo, role_id)


async def create_role(
    repo: RbacRepository,
    actor: Actor,
    key: str,
    name: str,
    description: Optional[str] = None,
    status: Optional[Status] = None,
    is_global: bool = True,
    org_id: Optional[str] = None,
) -> Role:
    """
    Create a global or org-scoped role.

    ``key`` is stored trimmed and lower-cased and must be unique within its scope.

    Raises:
        RbacValidationError: missing key/name or broken scope invariant
        RbacNotFoundError: ``org_id`` names no organization
        RbacConflictError: key already used in the scope
    """
    key = _text(key).lower()
    name = _text(name)
    if not key or not name:
        raise RbacValidationError("key and name are required")
    org_id = validate_scope(is_global, org_id, entity="role")
    await _require_org(repo, org_id)
    await _ensure_role_key_free(repo, key, is_global, org_id)

    role = Role(
        key=key,
        name=name,
        description=_text(description),
        status=_status(status),
        is_global=is_global,
        org_id=org_id,
    )
    await _insert_one(repo, role, f"Role key {key!r} already exists")

    await record_audit_event(
        repo.session, actor,
        action="admin.rbac.role.create",
        entity_type="RbacRole",
        entity_id=role.id,
        after=snapshot(role),
    )
    await repo.session.commit()
    await repo.session.refresh(role)
    return role


async def update_role(repo: RbacRepository, actor: Actor, role_id: str, changes: Dict[str, Any]) -> Role:
    """
    Apply a partial update to a role.

    Recognized keys: ``name``, ``description``, ``status``, ``is_global``,
    ``org_id``. A scope change is validated before anything is applied: the
    key must stay unique in the new scope and every group holding the role
    must still accept it.
    """
    role = await _require_role(repo, role_id)
    before = snapshot(role)

    scope = _scope_change(role, changes, "role")
    if scope is not None:
        is_global, org_id = scope
        await _require_org(repo, org_id)
        await _ensure_role_key_free(repo, role.key, is_global, org_id, role_id=role.id)
        await _check_role_links_for_scope(repo, role, is_global, org_id)

    if "name" in changes and changes["name"] is not None:
        name = _text(changes["name"])
        if not name:
            raise RbacValidationError("name cannot be empty")
        role.name = name
    if "description" in changes:
        role.description = _text(changes["description"])
    if "status" in changes and changes["status"] is not None:
        role.status = _status(changes["status"])

    if scope is not None:
        role.is_global, role.org_id = scope

    await repo.session.flush()
    await record_audit_event(
        repo.session, actor,
        action="admin.rbac.role.update",
        entity_type="RbacRole",
        entity_id=role.id,
        before=before,
        after=snapshot(role),
    )
    await repo.session.commit()
    await repo.session.refresh(role)
    return role


# ============================================================================
# Groups
# ============================================================================

async def list_groups(
    repo: RbacRepository,
    org_id: Optional[str] = None,
    status: Optional[Status] = None,
) -> List[Group]:
    stmt = select(Group)
    if org_id:
        stmt = stmt.where(Group.org_id == org_id)
    if status:
        stmt = stmt.where(Group.status == status)
    result = await repo.session.execute(stmt.order_by(Group.created_at.desc(), Group.id.desc()))
    return list(result.scalars().all())


async def get_group(repo: RbacRepository, group_id: str) -> Group:
    return await _require_group(repo, group_id)


async def create_group(
    repo: RbacRepository,
    actor: Actor,
    name: str,
    description: Optional[str] = None,
    status: Optional[Status] = None,
    is_global: bool = True,
    org_id: Optional[str] = None,
) -> Group:
    """Create a global or org-scoped group."""
    name = _text(name)
    if not name:
        raise RbacValidationError("name is required")
    org_id = validate_scope(is_global, org_id, entity="group")
    await _require_org(repo, org_id)

    group = Group(
        name=name,
        description=_text(description),
        status=_status(status),
        is_global=is_global,
        org_id=org_id,
    )
    repo.session.add(group)
    await repo.session.flush()

    await record_audit_event(
        repo.session, actor,
        action="admin.rbac.group.create",
        entity_type="RbacGroup",
        entity_id=group.id,
        after=snapshot(group),
    )
    await repo.session.commit()
    await repo.session.refresh(group)
    return group


async def update_group(repo: RbacRepository, actor: Actor, group_id: str, changes: Dict[str, Any]) -> Group:
    """Apply a partial update to a group; same keys and scope checks as ``update_role``."""
    group = await _require_group(repo, group_id)
    before = snapshot(group)

    scope = _scope_change(group, changes, "group")
    if scope is not None:
        is_global, org_id = scope
        await _require_org(repo, org_id)
        await _check_group_links_for_scope(repo, group, is_global, org_id)

    if "name" in changes and changes["name"] is not None:
        name = _text(changes["name"])
        if not name:
            raise RbacValidationError("name cannot be empty")
        group.name = name
    if "description" in changes:
        group.description = _text(changes["description"])
    if "status" in changes and changes["status"] is not None:
        group.status = _status(changes["status"])

    if scope is not None:
        group.is_global, group.org_id = scope

    await repo.session.flush()
    await record_audit_event(
        repo.session, actor,
        action="admin.rbac.group.update",
        entity_type="RbacGroup",
        entity_id=group.id,
        before=before,
        after=snapshot(group),
    )
    await repo.session.commit()
    await repo.session.refresh(group)
    return group


# ============================================================================
# Group Members
# ============================================================================

async def list_group_members(repo: RbacRepository, group_id: str) -> List[Dict[str, Any]]:
    """Members of a group with their email and name when the user row exists."""
    stmt = (
        select(GroupMember, User)
        .outerjoin(User, User.id == GroupMember.user_id)
        .where(GroupMember.group_id == group_id)
        .order_by(GroupMember.created_at, GroupMember.id)
    )
    result = await repo.session.execute(stmt)
    return [
        {
            "id": member.id,
            "user_id": member.user_id,
            "email": user.email if user else None,
            "name": user.name if user else "",
            "created_at": member.created_at,
        }
        for member, user in result.all()
    ]


async def add_group_member(repo: RbacRepository, actor: Actor, group_id: str, user_id: str) -> GroupMember:
    """
    Add one user to a group.

    Org-scoped groups only accept active members of their organization.
    """
    user_id = normalize_id(user_id)
    if not user_id:
        raise RbacValidationError("userId is required")
    group = await _require_group(repo, group_id)
    ensure_active(group, "Group")
    await validate_group_member(repo.session, group, user_id)

    member = GroupMember(group_id=group.id, user_id=user_id)
    await _insert_one(repo, member, "User is already a member of the group")

    await record_audit_event(
        repo.session, actor,
        action="admin.rbac.group_member.add",
        entity_type="RbacGroup",
        entity_id=group.id,
        after={"group_id": group.id, "user_id": user_id},
    )
    await repo.session.commit()
    await repo.session.refresh(member)
    return member


async def add_group_members_bulk(
    repo: RbacRepository, actor: Actor, group_id: str, user_ids: Optional[Iterable[str]]
) -> int:
    """
    Add many users to a group at once.

    The batch is validated as a whole: if any user is not an active member
    of the group's organization nothing is written. Users already in the
    group are skipped.

    Returns:
        Number of rows actually inserted
    """
    ids = _unique_ids(user_ids)
    if not ids:
        raise RbacValidationError("userIds is required")
    group = await _require_group(repo, group_id)
    ensure_active(group, "Group")
    await validate_group_members_bulk(repo.session, group, ids)

    db = repo.session
    inserted_count = 0
    for user_id in ids:
        try:
            async with db.begin_nested():
                db.add(GroupMember(group_id=group.id, user_id=user_id))
        except IntegrityError:
            log.debug(f"User {user_id} already in group {group.id}")
            continue
        inserted_count += 1

    await record_audit_event(
        db, actor,
        action="admin.rbac.group_member.bulk_add",
        entity_type="RbacGroup",
        entity_id=group.id,
        after={"group_id": group.id, "user_ids": ids},
        meta={"inserted_count": inserted_count},
    )
    await db.commit()
    return inserted_count


async def remove_group_member(repo: RbacRepository, actor: Actor, group_id: str, member_id: str) -> None:
    result = await repo.session.execute(
        select(GroupMember).where(GroupMember.id == member_id, GroupMember.group_id == group_id)
    )
    member = result.scalars().first()
    if member is None:
        raise RbacNotFoundError("Member not found")

    before = snapshot(member)
    await repo.session.delete(member)
    await record_audit_event(
        repo.session, actor,
        action="admin.rbac.group_member.remove",
        entity_type="RbacGroup",
        entity_id=group_id,
        before=before,
    )
    await repo.session.commit()


async def remove_group_members_bulk(
    repo: RbacRepository, actor: Actor, group_id: str, member_ids: Optional[Iterable[str]]
) -> int:
    """Delete membership links by id; ids from other groups are ignored. Returns the deleted count."""
    ids = _unique_ids(member_ids)
    if not ids:
        raise RbacValidationError("memberIds is required")

    result = await repo.session.execute(
        delete(GroupMember).where(GroupMember.group_id == group_id, GroupMember.id.in_(ids))
    )
    deleted_count = result.rowcount or 0

    await record_audit_event(
        repo.session, actor,
        action="admin.rbac.group_member.bulk_remove",
        entity_type="RbacGroup",
        entity_id=group_id,
        after={"group_id": group_id, "member_ids": ids},
        meta={"deleted_count": deleted_count},
    )
    await repo.session.commit()
    return deleted_count


# ============================================================================
# Group Roles
# ============================================================================

async def list_group_roles(repo: RbacRepository, group_id: str) -> List[Dict[str, Any]]:
    """Roles linked to a group; fields are None for links whose role is gone."""
    stmt = (
        select(GroupRole, Role)
        .outerjoin(Role, Role.id == GroupRole.role_id)
        .where(GroupRole.group_id == group_id)
        .order_by(GroupRole.created_at, GroupRole.id)
    )
    result = await repo.session.execute(stmt)
    return [
        {
            "id": link.id,
            "role_id": link.role_id,
            "key": role.key if role else None,
            "name": role.name if role else None,
            "status": role.status if role else None,
            "is_global": role.is_global if role else None,
            "org_id": role.org_id if role else None,
            "created_at": link.created_at,
        }
        for link, role in result.all()
    ]


async def add_group_role(repo: RbacRepository, actor: Actor, group_id: str, role_id: str) -> GroupRole:
    """
    Link a role to a group.

    Both must be active; a global group only takes global roles and an org
    group only takes global roles or roles of its own organization.
    """
    role_id = normalize_id(role_id)
    if not role_id:
        raise RbacValidationError("roleId is required")
    group = await _require_group(repo, group_id)
    ensure_active(group, "Group")
    role = await _require_role(repo, role_id)
    ensure_active(role, "Role")
    validate_group_role_scope(group, role)

    link = GroupRole(group_id=group.id, role_id=role.id)
    await _insert_one(repo, link, "Role is already linked to the group")

    await record_audit_event(
        repo.session, actor,
        action="admin.rbac.group_role.add",
        entity_type="RbacGroup",
        entity_id=group.id,
        after={"group_id": group.id, "role_id": role.id},
    )
    await repo.session.commit()
    await repo.session.refresh(link)
    return link


async def remove_group_role(repo: RbacRepository, actor: Actor, group_id: str, group_role_id: str) -> None:
    result = await repo.session.execute(
        select(GroupRole).where(GroupRole.id == group_role_id, GroupRole.group_id == group_id)
    )
    link = result.scalars().first()
    if link is None:
        raise RbacNotFoundError("Group role link not found")

    before = snapshot(link)
    await repo.session.delete(link)
    await record_audit_event(
        repo.session, actor,
        action="admin.rbac.group_role.remove",
        entity_type="RbacGroup",
        entity_id=group_id,
        before=before,
    )
    await repo.session.commit()


# ============================================================================
# User Roles
# ============================================================================

async def list_user_roles(repo: RbacRepository, user_id: str) -> List[Dict[str, Any]]:
    stmt = (
        select(UserRole, Role)
        .outerjoin(Role, Role.id == UserRole.role_id)
        .where(UserRole.user_id == user_id)
        .order_by(UserRole.created_at, UserRole.id)
    )
    result = await repo.session.execute(stmt)
    return [
        {
            "id": link.id,
            "role_id": link.role_id,
            "key": role.key if role else None,
            "name": role.name if role else None,
            "status": role.status if role else None,
            "created_at": link.created_at,
        }
        for link, role in result.all()
    ]


async def add_user_role(repo: RbacRepository, actor: Actor, user_id: str, role_id: str) -> UserRole:
    """Assign a role directly to a user. The role must exist."""
    user_id = normalize_id(user_id)
    role_id = normalize_id(role_id)
    if not user_id or not role_id:
        raise RbacValidationError("userId and roleId are required")
    role = await _require_role(repo, role_id)

    link = UserRole(user_id=user_id, role_id=role.id)
    await _insert_one(repo, link, "Role is already assigned to the user")

    await record_audit_event(
        repo.session, actor,
        action="admin.rbac.user_role.add",
        entity_type="User",
        entity_id=user_id,
        after={"role_id": role.id},
    )
    await repo.session.commit()
    await repo.session.refresh(link)
    return link


async def remove_user_role(repo: RbacRepository, actor: Actor, user_id: str, user_role_id: str) -> None:
    result = await repo.session.execute(
        select(UserRole).where(UserRole.id == user_role_id, UserRole.user_id == user_id)
    )
    link = result.scalars().first()
    if link is None:
        raise RbacNotFoundError("User role link not found")

    before = snapshot(link)
    await repo.session.delete(link)
    await record_audit_event(
        repo.session, actor,
        action="admin.rbac.user_role.remove",
        entity_type="User",
        entity_id=user_id,
        before=before,
    )
    await repo.session.commit()


# ============================================================================
# Grants
# ============================================================================

async def list_grants(
    repo: RbacRepository,
    subject_type: Optional[SubjectType] = None,
    subject_id: Optional[str] = None,
    scope_type: Optional[ScopeType] = None,
    scope_id: Optional[str] = None,
    right: Optional[str] = None,
) -> List[Grant]:
    """List grants, newest first, filtered on any combination of fields."""
    stmt = select(Grant)
    if subject_type:
        stmt = stmt.where(Grant.subject_type == subject_type)
    if subject_id:
        stmt = stmt.where(Grant.subject_id == subject_id)
    if scope_type:
        stmt = stmt.where(Grant.scope_type == scope_type)
    if scope_id:
        stmt = stmt.where(Grant.scope_id == scope_id)
    if right:
        stmt = stmt.where(Grant.right == right.strip())
    result = await repo.session.execute(stmt.order_by(Grant.created_at.desc(), Grant.id.desc()))
    return list(result.scalars().all())


async def create_grant(
    repo: RbacRepository,
    actor: Actor,
    subject_type: Union[SubjectType, str],
    subject_id: str,
    scope_type: Union[ScopeType, str],
    right: str,
    scope_id: Optional[str] = None,
    effect: Union[Effect, str, None] = None,
) -> Grant:
    """
    Attach a right pattern to a subject.

    Any effect other than ``deny`` is stored as ``allow``. Role and group
    subjects must exist, and an org scope must name a real organization.

    Raises:
        RbacValidationError: missing fields or invalid subject/scope type
        RbacNotFoundError: unknown subject role/group or organization
        RbacConflictError: identical grant already exists
    """
    try:
        subject_type = SubjectType(subject_type)
    except ValueError:
        raise RbacValidationError(f"Invalid subjectType: {subject_type!r}")
    subject_id = normalize_id(subject_id)
    right = _text(right)
    if not subject_id or not right:
        raise RbacValidationError("subjectType, subjectId, scopeType, right are required")
    scope_id = validate_grant_scope(scope_type, scope_id)
    scope_type = ScopeType.ORG if scope_id is not None else ScopeType.GLOBAL
    await _require_org(repo, scope_id)

    if subject_type == SubjectType.ROLE:
        await _require_role(repo, subject_id)
    elif subject_type == SubjectType.GROUP:
        await _require_group(repo, subject_id)

    # NULL scope ids never collide in the unique index, so global duplicates are caught here
    existing = await repo.session.execute(
        select(Grant.id).where(
            Grant.subject_type == subject_type,
            Grant.subject_id == subject_id,
            Grant.scope_type == scope_type,
            Grant.scope_id.is_(None) if scope_id is None else Grant.scope_id == scope_id,
            Grant.right == right,
        )
    )
    if existing.first() is not None:
        raise RbacConflictError("Grant already exists")

    grant = Grant(
        subject_type=subject_type,
        subject_id=subject_id,
        scope_type=scope_type,
        scope_id=scope_id,
        right=right,
        effect=Effect.DENY if effect in (Effect.DENY, "deny") else Effect.ALLOW,
        created_by_actor_type=actor.actor_type,
        created_by_actor_id=actor.actor_id,
    )
    await _insert_one(repo, grant, "Grant already exists")

    await record_audit_event(
        repo.session, actor,
        action="admin.rbac.grant.create",
        entity_type="RbacGrant",
        entity_id=grant.id,
        after=snapshot(grant),
    )
    await repo.session.commit()
    await repo.session.refresh(grant)
    return grant


async def delete_grant(repo: RbacRepository, actor: Actor, grant_id: str) -> None:
    grant = await repo.get_grant(grant_id)
    if grant is None:
        raise RbacNotFoundError("Grant not found")

    before = snapshot(grant)
    await repo.session.delete(grant)
    await record_audit_event(
        repo.session, actor,
        action="admin.rbac.grant.delete",
        entity_type="RbacGrant",
        entity_id=grant_id,
        before=before,
    )
    await repo.session.commit()


# ============================================================================
# Audit Log
# ============================================================================

async def list_audit_logs(
    repo: RbacRepository,
    skip: int = 0,
    limit: int = 50,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    actor_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Page through audit events, newest first."""
    stmt = select(AuditLog)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(AuditLog.entity_id == entity_id)
    if actor_id:
        stmt = stmt.where(AuditLog.actor_id == actor_id)

    total = await repo.session.scalar(select(func.count()).select_from(stmt.subquery()))
    result = await repo.session.execute(
        stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    )
    return {"items": list(result.scalars().all()), "total": total or 0, "skip": skip, "limit": limit}
