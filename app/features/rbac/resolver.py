"""
Scope and membership resolution.

Given a user and the organization a decision is made for, work out which
roles and groups apply and therefore which subjects may carry grants:

1. roles linked directly to the user
2. groups the user belongs to, kept when active and in scope
3. roles linked to those groups
4. roles kept when active and in scope

"In scope" means global, or scoped to exactly the organization under test.
A purely global decision (no organization) only keeps global roles and
groups. Missing or disabled rows contribute nothing; they are never errors.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from app.features.rbac.models import Group, Role, Status, SubjectType
from app.features.rbac.repository import RbacRepository, Subject
from app.utils import get_logger


log = get_logger(__name__)


def in_scope(entity: Union[Role, Group], org_id: Optional[str]) -> bool:
    """Check whether a role or group applies to a decision for ``org_id``."""
    if entity.is_global:
        return True
    return org_id is not None and entity.org_id is not None and entity.org_id == org_id


@dataclass
class ResolvedScope:
    """Roles, groups and grant subjects applicable to one user in one scope."""

    user_id: str
    org_id: Optional[str]
    roles: Dict[str, Role] = field(default_factory=dict)
    groups: Dict[str, Group] = field(default_factory=dict)
    direct_role_ids: List[str] = field(default_factory=list)
    # role id -> ids of the eligible groups that link to it
    group_role_sources: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def group_ids(self) -> List[str]:
        return list(self.groups)

    @property
    def subjects(self) -> List[Subject]:
        """Subjects whose grants take part in the decision."""
        subjects: List[Subject] = [(SubjectType.USER, self.user_id)]
        subjects.extend((SubjectType.ROLE, role_id) for role_id in self.roles)
        subjects.extend((SubjectType.GROUP, group_id) for group_id in self.groups)
        return subjects

    def is_direct_role(self, role_id: str) -> bool:
        return role_id in self.direct_role_ids

    def context(self) -> Dict[str, Any]:
        """Serializable summary for explain output."""
        roles: List[Dict[str, Any]] = []
        for role_id in self.direct_role_ids:
            role = self.roles[role_id]
            roles.append({"role_id": role_id, "key": role.key, "source": "user"})
        for role_id, group_ids in self.group_role_sources.items():
            role = self.roles[role_id]
            for group_id in group_ids:
                roles.append({"role_id": role_id, "key": role.key, "source": "group", "group_id": group_id})
        return {
            "scope": "org" if self.org_id else "global",
            "org_id": self.org_id,
            "roles": roles,
            "groups": [
                {"id": group.id, "name": group.name, "is_global": group.is_global, "org_id": group.org_id}
                for group in self.groups.values()
            ],
        }


async def resolve_subjects(repo: RbacRepository, user_id: str, org_id: Optional[str] = None) -> ResolvedScope:
    """
    Resolve the roles, groups and grant subjects for ``user_id``.

    Args:
        repo: Data access for RBAC tables
        user_id: User the decision is about
        org_id: Organization under test, or None for a global-only decision

    Returns:
        ResolvedScope; empty apart from the user subject when nothing applies
    """
    scope = ResolvedScope(user_id=user_id, org_id=org_id)

    direct_role_ids = list(dict.fromkeys(await repo.role_ids_for_user(user_id)))
    candidate_group_ids = list(dict.fromkeys(await repo.group_ids_for_user(user_id)))

    for group in await repo.get_groups(candidate_group_ids):
        if group.status != Status.ACTIVE or not in_scope(group, org_id):
            continue
        scope.groups[group.id] = group

    group_links = await repo.group_role_links(scope.group_ids)
    group_sources: Dict[str, List[str]] = {}
    for link in group_links:
        group_sources.setdefault(link.role_id, []).append(link.group_id)

    candidate_role_ids = set(direct_role_ids) | set(group_sources)
    for role in await repo.get_roles(candidate_role_ids):
        if role.status != Status.ACTIVE or not in_scope(role, org_id):
            continue
        scope.roles[role.id] = role

    scope.direct_role_ids = [role_id for role_id in direct_role_ids if role_id in scope.roles]
    scope.group_role_sources = {
        role_id: group_ids
        for role_id, group_ids in group_sources.items()
        if role_id in scope.roles
    }

    log.debug(
        f"Resolved user {user_id} in {org_id or 'global'}: "
        f"{len(scope.roles)} roles, {len(scope.groups)} groups"
    )
    return scope
