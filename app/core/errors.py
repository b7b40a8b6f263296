"""
Domain errors for the access-control engine.

Routes never build HTTP errors for these by hand: the handlers registered
in ``app.main`` translate them to status codes.

- RbacValidationError -> 400 (malformed input, scope invariant violations)
- RbacNotFoundError   -> 404 (referenced role/group/grant/link is missing)
- RbacConflictError   -> 409 (unique key collision on a single-row write)
"""
from typing import Any, Dict, Optional


class RbacError(Exception):
    """Base class for all access-control errors."""

    status_code: int = 500
    code: str = "ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.details}


class RbacValidationError(RbacError):
    """Input is missing, malformed, or breaks a scope invariant."""

    status_code = 400
    code = "VALIDATION"


class RbacNotFoundError(RbacError):
    """A referenced entity does not exist."""

    status_code = 404
    code = "NOT_FOUND"


class RbacConflictError(RbacError):
    """A single-row write collided with a unique constraint."""

    status_code = 409
    code = "CONFLICT"
