"""
Catalog of the rights this deployment knows about.

The catalog only feeds selection UIs. Grants may name rights that are not
listed here and the engine evaluates them all the same.
"""
from typing import List


DEFAULT_RIGHTS = [
    # RBAC administration
    "rbac:roles:read",
    "rbac:roles:write",
    "rbac:groups:read",
    "rbac:groups:write",
    "rbac:grants:read",
    "rbac:grants:write",
    "rbac:audit:read",
    "rbac:test",

    # Experiments
    "experiments:*",
    "experiments:read",
    "experiments:events:write",
    "experiments:admin",

    # File manager
    "file_manager:*",
    "file_manager:access",
    "file_manager:drives:read",
    "file_manager:files:read",
    "file_manager:files:upload",
    "file_manager:files:download",
    "file_manager:files:update",
    "file_manager:files:delete",
    "file_manager:files:share",

    # Back office
    "backoffice:*",
    "backoffice:dashboard:access",

    # Admin panel
    "admin_panel__login",
    "admin_panel__dashboard",
    "admin_panel__users:read",
    "admin_panel__users:write",
    "admin_panel__rbac:read",
    "admin_panel__rbac:write",
    "admin_panel__organizations:read",
    "admin_panel__organizations:write",
    "admin_panel__notifications:read",
    "admin_panel__notifications:write",

    "*",
]


def list_rights() -> List[str]:
    """Return the catalog sorted and without duplicates."""
    return sorted(set(DEFAULT_RIGHTS))
