"""
Organization and organization membership models.

Organizations are managed elsewhere; the access-control engine reads them
to decide whether an org scope is real and whether a user is an active
member when linking them to an org-scoped group.
"""
import enum
from sqlalchemy import String, Boolean, Enum as SQLEnum, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class MembershipStatus(str, enum.Enum):
    """Status of a user's membership in an organization."""
    ACTIVE = "active"
    REMOVED = "removed"


class Organization(Base, TimestampMixin):
    """Organization (tenant) that org-scoped roles, groups and grants point at."""
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r})>"


class OrganizationMember(Base, TimestampMixin):
    """
    Membership of a user in an organization.

    Removing a user from an organization flips ``status`` to ``removed``;
    the row is kept for history.
    """
    __tablename__ = "organization_members"
    __table_args__ = (
        UniqueConstraint("org_id", "user_id", name="uq_organization_members_org_user"),
        Index("ix_organization_members_user_status", "user_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    org_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="member")
    status: Mapped[MembershipStatus] = mapped_column(
        SQLEnum(MembershipStatus, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        default=MembershipStatus.ACTIVE,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<OrganizationMember(org_id={self.org_id}, user_id={self.user_id}, status={self.status})>"
