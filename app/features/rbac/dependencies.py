"""
FastAPI dependencies for the RBAC API.

Implements:
- repository injection
- actor resolution (bearer user or basic-auth super admin)
- route protection through the decision engine itself
"""
import secrets
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.features.rbac.audit import Actor
from app.features.rbac.repository import RbacRepository
from app.features.rbac.service import check_right
from app.features.users.dependencies import get_current_user, get_user_from_token, security
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

basic_security = HTTPBasic(auto_error=False)


async def get_repository(db: AsyncSession = Depends(get_db)) -> RbacRepository:
    return RbacRepository(db)


def _request_actor(request: Request, actor_type: str, actor_id: Optional[str]) -> Actor:
    return Actor(
        actor_type=actor_type,
        actor_id=actor_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def is_super_admin(credentials: Optional[HTTPBasicCredentials]) -> bool:
    """Check basic credentials against ADMIN_USERNAME/ADMIN_PASSWORD; always False when unset."""
    if credentials is None or not config.ADMIN_USERNAME or not config.ADMIN_PASSWORD:
        return False
    username_ok = secrets.compare_digest(credentials.username.encode(), config.ADMIN_USERNAME.encode())
    password_ok = secrets.compare_digest(credentials.password.encode(), config.ADMIN_PASSWORD.encode())
    return username_ok and password_ok


async def get_actor(
    request: Request,
    user: User = Depends(get_current_user),
) -> Actor:
    """Actor for self-service endpoints: always the bearer user."""
    return _request_actor(request, "user", user.id)


def require_right(right: str):
    """
    FastAPI dependency to require a right on the admin surface.

    Passes for the basic-auth super admin, for users flagged ``is_admin``,
    and for users the engine allows ``right`` globally. Org-scoped grants of
    admin rights never open the admin surface: admin operations can reach
    global entities and any org, so only a global decision authorizes them.

    Usage:
        @router.post("/roles")
        async def create_role(actor: Actor = Depends(require_right("rbac:roles:write"))):
            ...

    Returns:
        Dependency function that returns the acting Actor

    Raises:
        HTTPException: 401 without credentials, 403 when the decision is a denial
    """
    async def right_dependency(
        request: Request,
        basic_credentials: Optional[HTTPBasicCredentials] = Depends(basic_security),
        bearer_credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
        repo: RbacRepository = Depends(get_repository),
    ) -> Actor:
        if is_super_admin(basic_credentials):
            return _request_actor(request, "basic_auth", basic_credentials.username)
        if basic_credentials is not None:
            log.info(f"Rejected basic credentials for {basic_credentials.username!r} on {right}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid credentials",
                headers={"WWW-Authenticate": "Basic"},
            )

        user = await get_user_from_token(bearer_credentials, repo.session)
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not authenticated",
                headers={"WWW-Authenticate": "Bearer"},
            )

        if user.is_admin:
            log.debug(f"User {user.id} is admin - granted {right}")
            return _request_actor(request, "user", user.id)

        decision = await check_right(repo, user_id=user.id, org_id=None, right=right)
        if not decision.allowed:
            log.info(f"User {user.id} denied {right}: {decision.reason.value}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {right} ({decision.reason.value})",
            )
        return _request_actor(request, "user", user.id)

    return right_dependency
