"""Authorization gate: permission and role checks.

Both assume ``authenticate`` already ran. A request with no resolved
identity gets a 401, distinct from the 403 of a failed check.
"""

from fastapi import status

from schoolgate.middleware.authentication import unauthorized
from schoolgate.middleware.pipeline import ALLOW, Check, Decision, Reject, SecurityContext

ANY = "any"
ALL = "all"


def _permission_message(required: list[str], mode: str) -> str:
    if len(required) == 1:
        return f"Insufficient permissions. Required: {required[0]}"
    qualifier = "one of" if mode == ANY else "all of"
    return f"Insufficient permissions. Required {qualifier}: {', '.join(required)}"


def require_permissions(*permissions: str, mode: str = ALL) -> Check:
    """Check that the identity's role grants ``permissions``.

    ``mode="all"`` needs every permission, ``mode="any"`` at least one.
    The rejection names the missing permissions.
    """
    if mode not in (ANY, ALL):
        raise ValueError(f"Unknown permission mode: {mode}")
    if not permissions:
        raise ValueError("At least one permission is required")
    required = list(permissions)

    async def check_permissions(ctx: SecurityContext) -> Decision:
        if ctx.user is None:
            return unauthorized("Authentication required")

        catalog = ctx.policy.permissions
        role = ctx.user.role
        granted = (
            catalog.has_any(role, required) if mode == ANY else catalog.has_all(role, required)
        )
        if granted:
            return ALLOW

        missing = catalog.missing(role, required)
        await ctx.audit.log_authorization_denied(
            ctx.user.id, role, required, missing, ctx.request_metadata()
        )
        return Reject(
            status.HTTP_403_FORBIDDEN,
            {
                "message": _permission_message(required, mode),
                "missingPermissions": missing,
            },
        )

    return check_permissions


def require_permission(permission: str) -> Check:
    return require_permissions(permission)


def require_any_permission(*permissions: str) -> Check:
    return require_permissions(*permissions, mode=ANY)


def require_roles(*roles: str) -> Check:
    """Coarse check: the identity's role must be one of ``roles``."""
    allowed = frozenset(str(getattr(r, "value", r)) for r in roles)

    async def check_roles(ctx: SecurityContext) -> Decision:
        if ctx.user is None:
            return unauthorized("Authentication required")
        if ctx.user.role in allowed:
            return ALLOW

        await ctx.audit.log_authorization_denied(
            ctx.user.id, ctx.user.role, sorted(allowed), [], ctx.request_metadata()
        )
        return Reject(
            status.HTTP_403_FORBIDDEN,
            {"message": f"User role {ctx.user.role} is not authorized to access this route"},
        )

    return check_roles
