"""
Pydantic schemas for the RBAC API.

Request and response models for roles, groups, links, grants, decisions
and audit logs.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.rbac.models import Effect, ScopeType, Status, SubjectType


# ============================================================================
# Role Schemas
# ============================================================================

class RoleBase(BaseModel):
    """Base role schema."""
    name: str = Field(..., min_length=1, max_length=150, description="Display name")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")


class RoleCreate(RoleBase):
    """Schema for creating a new role."""
    key: str = Field(..., min_length=1, max_length=100, description="Key, unique within the role scope")
    status: Status = Status.ACTIVE
    is_global: bool = Field(True, description="Global role (no org) or scoped to org_id")
    org_id: Optional[str] = Field(None, description="Organization ID (required for org-scoped roles)")

    @field_validator('key')
    @classmethod
    def key_lowercase(cls, v: str) -> str:
        """Keys are stored lower-cased."""
        return v.strip().lower()


class RoleUpdate(BaseModel):
    """Schema for updating a role."""
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    description: Optional[str] = Field(None, max_length=1000)
    status: Optional[Status] = None
    is_global: Optional[bool] = None
    org_id: Optional[str] = None


class RoleResponse(RoleBase):
    """Schema for role response."""
    id: str
    key: str
    status: Status
    is_global: bool
    org_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Group Schemas
# ============================================================================

class GroupBase(BaseModel):
    """Base group schema."""
    name: str = Field(..., min_length=1, max_length=150, description="Group name")
    description: Optional[str] = Field(None, max_length=1000, description="Group description")


class GroupCreate(GroupBase):
    """Schema for creating a new group."""
    status: Status = Status.ACTIVE
    is_global: bool = Field(True, description="Global group (no org) or scoped to org_id")
    org_id: Optional[str] = Field(None, description="Organization ID (required for org-scoped groups)")


class GroupUpdate(BaseModel):
    """Schema for updating a group."""
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    description: Optional[str] = Field(None, max_length=1000)
    status: Optional[Status] = None
    is_global: Optional[bool] = None
    org_id: Optional[str] = None


class GroupResponse(GroupBase):
    """Schema for group response."""
    id: str
    status: Status
    is_global: bool
    org_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Link Schemas
# ============================================================================

class AddGroupMember(BaseModel):
    """Schema for adding a user to a group."""
    user_id: str = Field(..., min_length=1, description="User ID")


class AddGroupMembersBulk(BaseModel):
    """Schema for adding many users to a group."""
    user_ids: List[str] = Field(..., description="User IDs; duplicates are ignored")


class RemoveGroupMembersBulk(BaseModel):
    """Schema for removing many membership links from a group."""
    member_ids: List[str] = Field(..., description="Group member link IDs")


class AssignRole(BaseModel):
    """Schema for linking a role to a user or group."""
    role_id: str = Field(..., min_length=1, description="Role ID")


class GroupMemberResponse(BaseModel):
    id: str
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = ""
    created_at: datetime


class GroupMemberLink(BaseModel):
    id: str
    group_id: str
    user_id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GroupRoleResponse(BaseModel):
    id: str
    role_id: str
    key: Optional[str] = None
    name: Optional[str] = None
    status: Optional[Status] = None
    is_global: Optional[bool] = None
    org_id: Optional[str] = None
    created_at: datetime


class GroupRoleLink(BaseModel):
    id: str
    group_id: str
    role_id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserRoleResponse(BaseModel):
    id: str
    role_id: str
    key: Optional[str] = None
    name: Optional[str] = None
    status: Optional[Status] = None
    created_at: datetime


class UserRoleLink(BaseModel):
    id: str
    user_id: str
    role_id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BulkAddResponse(BaseModel):
    success: bool = True
    inserted_count: int


class BulkRemoveResponse(BaseModel):
    success: bool = True
    deleted_count: int


class SuccessResponse(BaseModel):
    success: bool = True


# ============================================================================
# Grant Schemas
# ============================================================================

class GrantCreate(BaseModel):
    """Schema for attaching a right pattern to a subject."""
    subject_type: SubjectType
    subject_id: str = Field(..., min_length=1)
    scope_type: ScopeType
    scope_id: Optional[str] = Field(None, description="Organization ID (required when scope_type=org)")
    right: str = Field(..., min_length=1, max_length=255, description="Right or wildcard pattern, e.g. 'backoffice:*'")
    effect: Effect = Effect.ALLOW


class GrantResponse(BaseModel):
    """Schema for grant response."""
    id: str
    subject_type: SubjectType
    subject_id: str
    scope_type: ScopeType
    scope_id: Optional[str]
    right: str
    effect: Effect
    created_by_actor_type: Optional[str] = None
    created_by_actor_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Decision Schemas
# ============================================================================

class RightCheckRequest(BaseModel):
    """Schema for checking a right for the calling user."""
    right: str = Field(..., description="Required right, e.g. 'backoffice:dashboard:access'")
    org_id: Optional[str] = Field(None, description="Organization to decide for (global-only when omitted)")


class RightTestRequest(RightCheckRequest):
    """Schema for testing a right for any user (admin)."""
    user_id: str = Field(..., description="User the decision is about")


class RightCheckResponse(BaseModel):
    """Schema for a right check."""
    allowed: bool
    reason: str
    decision_layer: Optional[str] = None


class DecisionResponse(RightCheckResponse):
    """Full decision with explain output."""
    explain: List[Dict[str, Any]] = []
    context: Optional[Dict[str, Any]] = None


class EffectiveRightsResponse(BaseModel):
    """Everything that applies to the caller in a scope."""
    user_id: str
    org_id: Optional[str]
    grants: List[Dict[str, Any]] = []
    layers: Dict[str, List[str]] = {}
    context: Dict[str, Any] = {}


class RightsResponse(BaseModel):
    rights: List[str]


class MyOrgsResponse(BaseModel):
    org_ids: List[str]


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    actor_type: str
    actor_id: Optional[str]
    action: str
    entity_type: str
    entity_id: Optional[str]
    before: Optional[Dict[str, Any]]
    after: Optional[Dict[str, Any]]
    meta: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    skip: int
    limit: int
