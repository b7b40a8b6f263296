"""
Audit logging for RBAC administration.

Every mutating admin operation records one AuditLog row in the same
transaction as the change, with JSON snapshots of the row before and after.
Decisions themselves are never audited.
"""
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.rbac.models import AuditLog
from app.utils import get_logger


log = get_logger(__name__)


@dataclass
class Actor:
    """Who performed an admin action, plus request context."""
    actor_type: str
    actor_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


SYSTEM_ACTOR = Actor(actor_type="system", actor_id="system")


def _json_value(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def snapshot(entity: Any) -> Optional[Dict[str, Any]]:
    """
    Column values of an ORM row as a JSON-safe dict.

    Attributes not loaded yet (server-side defaults right after a flush) are
    left out instead of triggering a lazy load.
    """
    if entity is None:
        return None
    state = inspect(entity)
    unloaded = state.unloaded
    return {
        column.key: _json_value(getattr(entity, column.key))
        for column in state.mapper.column_attrs
        if column.key not in unloaded
    }


async def record_audit_event(
    db: AsyncSession,
    actor: Actor,
    action: str,
    entity_type: str,
    entity_id: Optional[str] = None,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Add an audit log entry to the current transaction.

    The caller commits; a rolled back change leaves no audit row behind.

    Args:
        db: Database session
        actor: Who performed the action
        action: Dotted action name (e.g., "admin.rbac.role.create")
        entity_type: Type of entity changed (e.g., "RbacRole")
        entity_id: ID of the entity
        before: Snapshot before the change, None on create
        after: Snapshot after the change, None on delete
        meta: Additional details

    Returns:
        The pending AuditLog object
    """
    audit_log = AuditLog(
        actor_type=actor.actor_type,
        actor_id=actor.actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        before=before,
        after=after,
        meta=meta,
        ip_address=actor.ip_address,
        user_agent=actor.user_agent,
    )
    db.add(audit_log)
    await db.flush()

    log.info(
        f"Audit: actor={actor.actor_type}:{actor.actor_id} action={action} entity={entity_type}:{entity_id}"
    )
    return audit_log
