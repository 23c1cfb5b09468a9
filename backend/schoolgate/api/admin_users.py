"""Administrative identity management: creation and lockout reset."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status

from schoolgate.api.deps import auth_service_for, protected, rejected
from schoolgate.middleware.authorization import require_permission
from schoolgate.middleware.pipeline import SecurityContext
from schoolgate.schemas.users import UnlockResponse, UserCreate, UserSummary
from schoolgate.services.auth import AuthError
from schoolgate.services.password_policy import validate_password
from schoolgate.services.permissions import Role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/users", tags=["admin-users"])

# Permission needed, on top of users.create, to create each elevated role
_ROLE_GRANT_PERMISSIONS = {
    Role.ADMIN: "users.manage_admins",
    Role.SUPERADMIN: "users.manage_superadmins",
}


@router.post("", response_model=UserSummary, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate,
    ctx: SecurityContext = Depends(protected(require_permission("users.create"), csrf=True)),
) -> UserSummary:
    """Create an identity.

    Admins may create teachers, students and parents; creating an admin or
    superadmin takes the matching management permission.
    """
    actor = ctx.user
    catalog = ctx.policy.permissions

    grant = _ROLE_GRANT_PERMISSIONS.get(body.role)
    if grant is not None and not catalog.has_permission(actor.role, grant):
        await ctx.audit.log_authorization_denied(
            actor.id, actor.role, [grant], [grant], ctx.request_metadata()
        )
        raise rejected(
            status.HTTP_403_FORBIDDEN,
            f"User role {actor.role} cannot create {body.role.value} accounts",
            missingPermissions=[grant],
        )

    result = validate_password(body.password, ctx.policy.password)
    if not result.is_valid:
        await ctx.audit.log_password_validation_failed(
            None, body.email, result.violated_rules, ctx.request_metadata()
        )
        raise rejected(
            status.HTTP_400_BAD_REQUEST,
            "Password does not meet security requirements",
            errors=result.errors,
        )

    try:
        user = await auth_service_for(ctx).create_user(
            email=body.email,
            password=body.password,
            role=body.role.value,
            name=body.name,
        )
    except AuthError as e:
        raise rejected(status.HTTP_409_CONFLICT, str(e)) from e

    await ctx.audit.log_user_created(user.id, user.role, actor.id, ctx.request_metadata())
    return UserSummary.model_validate(user)


@router.post("/{user_id}/unlock", response_model=UnlockResponse)
async def unlock_user(
    user_id: UUID,
    ctx: SecurityContext = Depends(protected(require_permission("users.update"), csrf=True)),
) -> UnlockResponse:
    """Clear an account's failure counter and any active lockout."""
    user = await auth_service_for(ctx).get_user_by_id(user_id)
    if user is None:
        raise rejected(status.HTTP_404_NOT_FOUND, "User not found")

    was_locked = await ctx.services.lockout.unlock(
        ctx.db, user, ctx.user.id, ctx.request_metadata()
    )
    return UnlockResponse(
        message="Account unlocked" if was_locked else "Account was not locked",
        user_id=user.id,
        was_locked=was_locked,
    )
