"""
Write-path invariants for roles, groups, links and grants.

Every check raises RbacValidationError and leaves the database untouched.
Org-membership of group members is verified here once, when the link is
created; later removal from the organization does not revoke the link.
"""
from typing import Iterable, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import RbacValidationError
from app.features.organizations import membership
from app.features.rbac.models import Group, Role, ScopeType, Status
from app.utils import get_logger


log = get_logger(__name__)


def normalize_id(value: Optional[str]) -> Optional[str]:
    """Trim an identifier; blank becomes ``None``."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def validate_scope(is_global: bool, org_id: Optional[str], entity: str = "role") -> Optional[str]:
    """
    Enforce the global/org exclusivity of roles and groups.

    Returns:
        The org id to store (``None`` for global entities)

    Raises:
        RbacValidationError: global entity with an org id, or org entity without one
    """
    org_id = normalize_id(org_id)
    if is_global and org_id is not None:
        raise RbacValidationError(f"Global {entity}s cannot have an orgId")
    if not is_global and org_id is None:
        raise RbacValidationError(f"orgId is required for org-scoped {entity}s")
    return org_id


def validate_grant_scope(scope_type: Union[ScopeType, str], scope_id: Optional[str]) -> Optional[str]:
    """
    Enforce ``org => scope_id`` and ``global => no scope_id``.

    A global grant silently drops any scope id it was given.
    """
    try:
        scope_type = ScopeType(scope_type)
    except ValueError:
        raise RbacValidationError(f"Invalid scopeType: {scope_type!r}")
    scope_id = normalize_id(scope_id)
    if scope_type == ScopeType.ORG:
        if scope_id is None:
            raise RbacValidationError("scopeId is required when scopeType=org")
        return scope_id
    return None


def ensure_active(entity: Union[Role, Group], label: str) -> None:
    """Reject links to disabled roles or groups."""
    if entity.status != Status.ACTIVE:
        raise RbacValidationError(f"{label} is not active")


def validate_group_role_scope(group: Group, role: Role) -> None:
    """
    Scoping rules for group -> role links:
    - a global group may only hold global roles
    - an org group may hold global roles and roles of its own org
    """
    if role.is_global:
        return
    if group.is_global:
        raise RbacValidationError("Global groups cannot include org-scoped roles")
    if not group.org_id or not role.org_id or group.org_id != role.org_id:
        raise RbacValidationError("Org-scoped roles must match the group orgId")


async def validate_group_member(db: AsyncSession, group: Group, user_id: str) -> None:
    """Require active org membership before adding ``user_id`` to an org group."""
    if group.is_global:
        return
    if not await membership.is_active_member(db, group.org_id, user_id):
        log.info(f"Rejected group member {user_id} for group {group.id}: not an active member of org {group.org_id}")
        raise RbacValidationError("User is not an active member of the group org")


async def validate_group_members_bulk(db: AsyncSession, group: Group, user_ids: Iterable[str]) -> None:
    """
    Batch form of ``validate_group_member``.

    The whole batch is rejected when any user fails, and the failing ids are
    reported in ``details["denied_user_ids"]`` in input order.
    """
    if group.is_global:
        return
    ids: List[str] = list(user_ids)
    allowed = await membership.active_member_ids(db, group.org_id, ids)
    denied = [uid for uid in ids if uid not in allowed]
    if denied:
        log.info(f"Rejected bulk add to group {group.id}: {len(denied)} users outside org {group.org_id}")
        raise RbacValidationError(
            "Some users are not active members of the group org",
            details={"denied_user_ids": denied},
        )
