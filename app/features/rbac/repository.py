"""RBAC data access."""

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.organizations import membership
from app.features.rbac.models import (
    Grant,
    Group,
    GroupMember,
    GroupRole,
    Role,
    ScopeType,
    SubjectType,
    UserRole,
)
from app.utils import get_logger


log = get_logger(__name__)

Subject = Tuple[SubjectType, str]


class RbacRepository:
    """Repository for roles, groups, links and grants.

    The decision path only reads through this class, so it can be swapped
    for a fake in tests or backed by another store.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the repository."""
        self.session = session

    # ------------------------------------------------------------------
    # Single rows
    # ------------------------------------------------------------------

    async def get_role(self, role_id: str) -> Optional[Role]:
        """Get a role by id."""
        return await self.session.get(Role, role_id)

    async def get_group(self, group_id: str) -> Optional[Group]:
        """Get a group by id."""
        return await self.session.get(Group, group_id)

    async def get_grant(self, grant_id: str) -> Optional[Grant]:
        """Get a grant by id."""
        return await self.session.get(Grant, grant_id)

    async def organization_exists(self, org_id: str) -> bool:
        """Check that ``org_id`` names a real organization."""
        return await membership.organization_exists(self.session, org_id)

    async def find_role_by_key(self, key: str, is_global: bool, org_id: Optional[str]) -> Optional[Role]:
        """Find a role with ``key`` in the given scope."""
        stmt = select(Role).where(Role.key == key, Role.is_global == is_global)
        if is_global:
            stmt = stmt.where(Role.org_id.is_(None))
        else:
            stmt = stmt.where(Role.org_id == org_id)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    # ------------------------------------------------------------------
    # Bulk reads used by the resolver
    # ------------------------------------------------------------------

    async def get_roles(self, role_ids: Iterable[str]) -> List[Role]:
        """Load the roles that exist among ``role_ids``."""
        ids = sorted(set(role_ids))
        if not ids:
            return []
        result = await self.session.execute(select(Role).where(Role.id.in_(ids)))
        return list(result.scalars().all())

    async def get_groups(self, group_ids: Iterable[str]) -> List[Group]:
        """Load the groups that exist among ``group_ids``."""
        ids = sorted(set(group_ids))
        if not ids:
            return []
        result = await self.session.execute(select(Group).where(Group.id.in_(ids)))
        return list(result.scalars().all())

    async def role_ids_for_user(self, user_id: str) -> List[str]:
        """Role ids linked directly to ``user_id``."""
        result = await self.session.execute(
            select(UserRole.role_id).where(UserRole.user_id == user_id)
        )
        return list(result.scalars().all())

    async def group_ids_for_user(self, user_id: str) -> List[str]:
        """Ids of the groups ``user_id`` belongs to."""
        result = await self.session.execute(
            select(GroupMember.group_id).where(GroupMember.user_id == user_id)
        )
        return list(result.scalars().all())

    async def group_role_links(self, group_ids: Iterable[str]) -> List[GroupRole]:
        """Group -> role links for ``group_ids``."""
        ids = sorted(set(group_ids))
        if not ids:
            return []
        result = await self.session.execute(
            select(GroupRole).where(GroupRole.group_id.in_(ids))
        )
        return list(result.scalars().all())

    async def grants_for_subjects(
        self, subjects: Sequence[Subject], org_id: Optional[str]
    ) -> List[Grant]:
        """Grants attached to ``subjects`` that apply in the decision scope.

        Global grants always apply; org grants only when ``org_id`` matches
        their ``scope_id``.
        """
        if not subjects:
            return []

        by_type: Dict[SubjectType, List[str]] = {}
        for subject_type, subject_id in subjects:
            by_type.setdefault(subject_type, []).append(subject_id)

        subject_clause = or_(
            *(
                and_(Grant.subject_type == subject_type, Grant.subject_id.in_(sorted(set(ids))))
                for subject_type, ids in by_type.items()
            )
        )
        if org_id:
            scope_clause = or_(
                Grant.scope_type == ScopeType.GLOBAL,
                and_(Grant.scope_type == ScopeType.ORG, Grant.scope_id == org_id),
            )
        else:
            scope_clause = Grant.scope_type == ScopeType.GLOBAL

        stmt = select(Grant).where(subject_clause, scope_clause).order_by(Grant.created_at, Grant.id)
        result = await self.session.execute(stmt)
        grants = list(result.scalars().all())
        log.debug(f"Loaded {len(grants)} grants for {len(subjects)} subjects (org={org_id})")
        return grants
