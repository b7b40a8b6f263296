"""
Access-control feature module.

Decides rights for users from grants attached to users, roles and groups,
in global or organization scope, and manages those entities.
"""
