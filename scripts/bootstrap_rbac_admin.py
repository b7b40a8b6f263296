"""
Bootstrap script for the RBAC admin role.

Run this script once after deployment to create:
- The global ``admin`` role
- Allow grants for the admin panel and RBAC administration rights
- Optionally, an assignment of that role to an existing user

Running it again changes nothing.

Usage:
    python -m scripts.bootstrap_rbac_admin [user_id]
"""
import asyncio
import sys
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.rbac.audit import SYSTEM_ACTOR, record_audit_event, snapshot
from app.features.rbac.models import Effect, Grant, Role, ScopeType, Status, SubjectType, UserRole
from app.utils import get_logger


log = get_logger(__name__)


ADMIN_ROLE_KEY = "admin"

ADMIN_RIGHTS = [
    "admin_panel__*",
    "rbac:*",
]


async def ensure_admin_role(db: AsyncSession) -> Role:
    """Get or create the global admin role."""
    stmt = select(Role).where(Role.key == ADMIN_ROLE_KEY, Role.is_global == True)  # noqa: E712
    result = await db.execute(stmt)
    existing = result.scalars().first()
    if existing:
        log.info(f"Role '{ADMIN_ROLE_KEY}' already exists, skipping")
        return existing

    role = Role(
        key=ADMIN_ROLE_KEY,
        name="Admin",
        description="Admin panel access with full RBAC administration",
        status=Status.ACTIVE,
        is_global=True,
        org_id=None,
    )
    db.add(role)
    await db.flush()
    await record_audit_event(
        db, SYSTEM_ACTOR,
        action="bootstrap.rbac.role.create",
        entity_type="RbacRole",
        entity_id=role.id,
        after=snapshot(role),
    )
    log.info(f"Created role '{ADMIN_ROLE_KEY}' ({role.id})")
    return role


async def ensure_admin_grants(db: AsyncSession, role: Role) -> int:
    """Create the missing admin grants. Returns how many were created."""
    created = 0
    for right in ADMIN_RIGHTS:
        stmt = select(Grant.id).where(
            Grant.subject_type == SubjectType.ROLE,
            Grant.subject_id == role.id,
            Grant.scope_type == ScopeType.GLOBAL,
            Grant.right == right,
        )
        if (await db.execute(stmt)).first():
            log.debug(f"Grant '{right}' already exists, skipping")
            continue

        grant = Grant(
            subject_type=SubjectType.ROLE,
            subject_id=role.id,
            scope_type=ScopeType.GLOBAL,
            scope_id=None,
            right=right,
            effect=Effect.ALLOW,
            created_by_actor_type=SYSTEM_ACTOR.actor_type,
            created_by_actor_id=SYSTEM_ACTOR.actor_id,
        )
        db.add(grant)
        await db.flush()
        await record_audit_event(
            db, SYSTEM_ACTOR,
            action="bootstrap.rbac.grant.create",
            entity_type="RbacGrant",
            entity_id=grant.id,
            after=snapshot(grant),
        )
        log.info(f"Created grant '{right}'")
        created += 1
    return created


async def ensure_user_role(db: AsyncSession, role: Role, user_id: str) -> bool:
    """Assign ``role`` to ``user_id`` unless already assigned."""
    stmt = select(UserRole.id).where(UserRole.user_id == user_id, UserRole.role_id == role.id)
    if (await db.execute(stmt)).first():
        log.info(f"User {user_id} already has role '{role.key}'")
        return False

    db.add(UserRole(user_id=user_id, role_id=role.id))
    await record_audit_event(
        db, SYSTEM_ACTOR,
        action="bootstrap.rbac.user_role.add",
        entity_type="User",
        entity_id=user_id,
        after={"role_id": role.id},
    )
    log.info(f"Assigned role '{role.key}' to user {user_id}")
    return True


async def main(user_id: Optional[str] = None):
    """Create tables, the admin role and its grants, and optionally assign it."""
    log.info("Starting RBAC bootstrap...")
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            role = await ensure_admin_role(db)
            created = await ensure_admin_grants(db, role)
            if user_id:
                await ensure_user_role(db, role, user_id)
            await db.commit()
        except Exception as e:
            log.error(f"Error bootstrapping RBAC: {e}", exc_info=True)
            await db.rollback()
            raise

    log.info(f"RBAC bootstrap completed: role {role.id}, {created} new grants")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
