"""
Organization membership lookups.

Answers "is user X an active member of org Y" for the RBAC write path and
the self-service endpoints.
"""
from typing import Iterable, List, Set
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.organizations.models import Organization, OrganizationMember, MembershipStatus


async def organization_exists(db: AsyncSession, org_id: str) -> bool:
    """Check that an organization row exists for ``org_id``."""
    result = await db.execute(select(Organization.id).where(Organization.id == org_id))
    return result.first() is not None


async def is_active_member(db: AsyncSession, org_id: str, user_id: str) -> bool:
    """Check whether ``user_id`` is currently an active member of ``org_id``."""
    stmt = select(OrganizationMember.id).where(
        OrganizationMember.org_id == org_id,
        OrganizationMember.user_id == user_id,
        OrganizationMember.status == MembershipStatus.ACTIVE,
    )
    result = await db.execute(stmt)
    return result.first() is not None


async def active_member_ids(db: AsyncSession, org_id: str, user_ids: Iterable[str]) -> Set[str]:
    """Return the subset of ``user_ids`` that are active members of ``org_id``."""
    ids = list(user_ids)
    if not ids:
        return set()
    stmt = select(OrganizationMember.user_id).where(
        OrganizationMember.org_id == org_id,
        OrganizationMember.status == MembershipStatus.ACTIVE,
        OrganizationMember.user_id.in_(ids),
    )
    result = await db.execute(stmt)
    return set(result.scalars().all())


async def active_org_ids(db: AsyncSession, user_id: str) -> List[str]:
    """Return ids of the organizations where ``user_id`` is an active member."""
    stmt = (
        select(OrganizationMember.org_id)
        .where(
            OrganizationMember.user_id == user_id,
            OrganizationMember.status == MembershipStatus.ACTIVE,
        )
        .order_by(OrganizationMember.created_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
