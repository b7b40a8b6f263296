"""
Role, Group, link and Grant models for global/org-scoped RBAC.

This module implements the storage side of the access-control engine:
- Roles and Groups, each either global or scoped to one organization
- User -> Role, Group -> Role and Group -> User links
- Grants: a right pattern with an allow/deny effect attached to a subject
- Audit log rows for every administrative change

Links hold plain id columns without foreign keys to the RBAC tables, so a
link may outlive the Role or Group it points at. Resolution skips such
orphans instead of failing.
"""
import enum
from typing import Any, Dict
from sqlalchemy import String, Text, Boolean, JSON, Enum as SQLEnum, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


def _enum_column(enum_cls: type) -> SQLEnum:
    # Store enum values ("active"), not member names ("ACTIVE")
    return SQLEnum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


# ============================================================================
# Enums
# ============================================================================

class Status(str, enum.Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class SubjectType(str, enum.Enum):
    ROLE = "role"
    USER = "user"
    GROUP = "group"


class ScopeType(str, enum.Enum):
    GLOBAL = "global"
    ORG = "org"


class Effect(str, enum.Enum):
    ALLOW = "allow"
    DENY = "deny"


# ============================================================================
# Core Models
# ============================================================================

class Role(Base, TimestampMixin):
    """
    Named bundle of grants.

    Invariant: ``is_global`` roles have no ``org_id``; org roles always have one.
    ``key`` is unique among global roles and per organization among org roles.
    """
    __tablename__ = "rbac_roles"
    __table_args__ = (
        Index("ix_rbac_roles_scope_key", "is_global", "org_id", "key"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    key: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[Status] = mapped_column(_enum_column(Status), nullable=False, default=Status.ACTIVE, index=True)

    is_global: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    org_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, key={self.key!r}, org_id={self.org_id})>"


class Group(Base, TimestampMixin):
    """
    Named collection of users sharing role assignments.

    Same global/org invariant as Role.
    """
    __tablename__ = "rbac_groups"
    __table_args__ = (
        Index("ix_rbac_groups_scope_name", "is_global", "org_id", "name"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[Status] = mapped_column(_enum_column(Status), nullable=False, default=Status.ACTIVE, index=True)

    is_global: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    org_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<Group(id={self.id}, name={self.name!r}, org_id={self.org_id})>"


class UserRole(Base, TimestampMixin):
    """Direct assignment of a role to a user."""
    __tablename__ = "rbac_user_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "role_id", name="uq_rbac_user_roles_user_role"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    user_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    role_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<UserRole(user_id={self.user_id}, role_id={self.role_id})>"


class GroupMember(Base, TimestampMixin):
    """
    Membership of a user in a group.

    For org-scoped groups the user had to be an active org member when the
    link was created. The link is not revoked if they later leave the org.
    """
    __tablename__ = "rbac_group_members"
    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_rbac_group_members_group_user"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    group_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<GroupMember(group_id={self.group_id}, user_id={self.user_id})>"


class GroupRole(Base, TimestampMixin):
    """Assignment of a role to a group."""
    __tablename__ = "rbac_group_roles"
    __table_args__ = (
        UniqueConstraint("group_id", "role_id", name="uq_rbac_group_roles_group_role"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    group_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    role_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<GroupRole(group_id={self.group_id}, role_id={self.role_id})>"


class Grant(Base, TimestampMixin):
    """
    A right pattern with an effect, attached to a subject within a scope.

    Examples:
    - role R, global, "admin_panel__users:read", allow
    - user U, org O, "backoffice:*", deny
    """
    __tablename__ = "rbac_grants"
    __table_args__ = (
        UniqueConstraint(
            "subject_type", "subject_id", "scope_type", "scope_id", "right",
            name="uq_rbac_grants_subject_scope_right",
        ),
        Index("ix_rbac_grants_subject", "subject_type", "subject_id"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    subject_type: Mapped[SubjectType] = mapped_column(_enum_column(SubjectType), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(26), nullable=False)

    scope_type: Mapped[ScopeType] = mapped_column(_enum_column(ScopeType), nullable=False, index=True)
    scope_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    right: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    effect: Mapped[Effect] = mapped_column(_enum_column(Effect), nullable=False, default=Effect.ALLOW)

    created_by_actor_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_by_actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Grant(id={self.id}, {self.subject_type.value}:{self.subject_id}, "
            f"{self.scope_type.value}:{self.scope_id}, {self.right!r}, {self.effect.value})>"
        )


class AuditLog(Base, TimestampMixin):
    """
    Audit log for RBAC administration.

    Tracks who changed what, with before/after snapshots.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    # Action details
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    before: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    after: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    meta: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Request context
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, actor={self.actor_type}:{self.actor_id}, action={self.action})>"
