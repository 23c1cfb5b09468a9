"""Authentication API endpoints."""

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolgate.api.deps import (
    AUTHENTICATED,
    AUTHENTICATED_CSRF,
    auth_service_for,
    rejected,
    revocation_store_for,
)
from schoolgate.core.database import get_db
from schoolgate.middleware.account_lockout import check_account_lockout
from schoolgate.middleware.authentication import TOKEN_REVOKED, USER_NOT_FOUND
from schoolgate.middleware.pipeline import (
    Reject,
    SecurityContext,
    SecurityPipeline,
    SecurityRejected,
    build_context,
)
from schoolgate.middleware.rate_limit import (
    check_failed_login_identity_limit,
    check_failed_login_ip_limit,
    check_login_rate_limit,
    record_failed_login,
)
from schoolgate.models.revoked_token import RevocationReason
from schoolgate.schemas.auth import (
    ChangePasswordRequest,
    CsrfTokenResponse,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    TokenResponse,
    UserResponse,
)
from schoolgate.services.auth import (
    AuthError,
    AuthService,
    InvalidCredentialsError,
    InvalidTokenError,
    TokenError,
    TokenExpiredError,
    UserInactiveError,
    validate_refresh_token,
)
from schoolgate.services.csrf import generate_csrf_token
from schoolgate.services.password_policy import validate_password
from schoolgate.services.token_revocation import TokenAlreadyRevokedError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

# Order matters: limiters first, then the lockout pre-check, which also
# resolves the identity the credential check compares against.
LOGIN_PIPELINE = SecurityPipeline(
    check_login_rate_limit,
    check_failed_login_ip_limit,
    check_failed_login_identity_limit,
    check_account_lockout,
)


@router.get("/csrf-token", response_model=CsrfTokenResponse)
async def get_csrf_token(request: Request, response: Response) -> CsrfTokenResponse:
    """Issue a double-submit CSRF token.

    The same value is set as a cookie and returned in the body; state-changing
    requests must echo it in the header (or body field).
    """
    csrf = request.app.state.security.policy.csrf
    token = generate_csrf_token()
    response.set_cookie(
        csrf.cookie_name,
        token,
        httponly=False,
        secure=csrf.cookie_secure,
        samesite="strict",
    )
    return CsrfTokenResponse(csrf_token=token)


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """Authenticate and get JWT tokens.

    Rate limiters and the lockout pre-check run before the password is
    compared. A failed comparison counts against both failed-login windows
    and the account's lockout counter.
    """
    ctx = build_context(request, db)
    ctx.login_identifier = body.email
    decision = await LOGIN_PIPELINE.run(ctx)
    if isinstance(decision, Reject):
        raise SecurityRejected(decision)

    services = ctx.services
    auth_service = AuthService(db, services.clock)
    metadata = {**ctx.request_metadata(), "email": body.email}
    user = ctx.login_user
    user_id = user.id if user is not None else None

    try:
        user = auth_service.check_credentials(user, body.password)
    except UserInactiveError as e:
        logger.info(f"Login refused for deactivated account {user_id}")
        raise rejected(status.HTTP_401_UNAUTHORIZED, "User account is deactivated") from e
    except InvalidCredentialsError as e:
        await record_failed_login(ctx)
        if user is not None:
            await services.lockout.record_failure(db, user, metadata)
        await services.audit.log_login_failed(body.email, user_id, ctx.request_metadata())
        raise rejected(status.HTTP_401_UNAUTHORIZED, "Invalid credentials") from e

    await services.lockout.record_success(db, user, metadata)
    await auth_service.record_login(user)
    logger.info(f"User logged in: {user.id}")
    return TokenResponse(**auth_service.create_tokens(user, services.policy.tokens))


@router.post("/refresh", response_model=TokenResponse)
async def refresh_tokens(
    body: RefreshRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """Exchange a refresh token for a new pair (token rotation).

    The presented refresh token is revoked, so each one works exactly once.
    """
    ctx = build_context(request, db)
    policy = ctx.policy

    try:
        payload = validate_refresh_token(body.refresh_token, policy.tokens)
    except TokenExpiredError as e:
        raise rejected(status.HTTP_401_UNAUTHORIZED, "Refresh token has expired") from e
    except TokenError as e:
        raise rejected(status.HTTP_401_UNAUTHORIZED, "Invalid refresh token") from e

    store = revocation_store_for(ctx)
    if await store.is_revoked(body.refresh_token):
        await ctx.audit.log_revoked_token_use(
            None, {**ctx.request_metadata(), "jti": payload.get("jti"), "kind": "refresh"}
        )
        raise rejected(status.HTTP_401_UNAUTHORIZED, TOKEN_REVOKED, error="TOKEN_REVOKED")

    auth_service = auth_service_for(ctx)
    try:
        user = await auth_service.validate_token_user(payload)
    except UserInactiveError as e:
        raise rejected(status.HTTP_401_UNAUTHORIZED, "User account is deactivated") from e
    except InvalidTokenError as e:
        raise rejected(status.HTTP_401_UNAUTHORIZED, "Invalid refresh token") from e
    if user is None:
        raise rejected(status.HTTP_401_UNAUTHORIZED, USER_NOT_FOUND)

    try:
        await store.revoke(
            body.refresh_token,
            user.id,
            RevocationReason.TOKEN_ROTATION,
            metadata=ctx.request_metadata(),
        )
    except TokenAlreadyRevokedError as e:
        # Lost a race with a concurrent refresh of the same token
        raise rejected(status.HTTP_401_UNAUTHORIZED, TOKEN_REVOKED, error="TOKEN_REVOKED") from e

    return TokenResponse(**auth_service.create_tokens(user, policy.tokens))


@router.post("/logout", response_model=MessageResponse)
async def logout(
    body: LogoutRequest | None = None,
    ctx: SecurityContext = Depends(AUTHENTICATED_CSRF),
) -> MessageResponse:
    """Log out the current user.

    Revokes the presented access token and, when supplied, the refresh
    token, so neither can be used for the rest of its lifetime.
    """
    user = ctx.user
    store = revocation_store_for(ctx)
    metadata = ctx.request_metadata()

    try:
        await store.revoke(ctx.token, user.id, RevocationReason.LOGOUT, metadata=metadata)
    except TokenAlreadyRevokedError:
        logger.info(f"Access token for user {user.id} was already revoked")

    refresh_token = body.refresh_token if body is not None else None
    if refresh_token:
        try:
            claims = validate_refresh_token(refresh_token, ctx.policy.tokens)
        except TokenError as e:
            logger.info(f"Ignoring unusable refresh token on logout for user {user.id}: {e}")
            claims = None
        if claims is not None and claims.get("sub") != str(user.id):
            logger.warning(f"User {user.id} tried to revoke another user's refresh token")
            claims = None
        if claims is not None:
            try:
                await store.revoke(
                    refresh_token, user.id, RevocationReason.LOGOUT, metadata=metadata
                )
            except TokenAlreadyRevokedError:
                pass

    logger.info(f"User logged out: {user.id}")
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    ctx: SecurityContext = Depends(AUTHENTICATED),
) -> UserResponse:
    """Get the current user's information and permissions."""
    user = ctx.user
    response = UserResponse.model_validate(user)
    response.permissions = list(ctx.policy.permissions.permissions_for(user.role))
    return response


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    body: ChangePasswordRequest,
    ctx: SecurityContext = Depends(AUTHENTICATED_CSRF),
) -> MessageResponse:
    """Change the current user's password.

    Invalidates all existing tokens by incrementing password_version.
    The user must log in again afterwards.
    """
    user = ctx.user
    result = validate_password(body.new_password, ctx.policy.password)
    if not result.is_valid:
        await ctx.audit.log_password_validation_failed(
            user.id, user.email, result.violated_rules, ctx.request_metadata()
        )
        raise rejected(
            status.HTTP_400_BAD_REQUEST,
            "New password does not meet security requirements",
            errors=result.errors,
        )

    try:
        await auth_service_for(ctx).change_password(
            user=user,
            current_password=body.current_password,
            new_password=body.new_password,
        )
    except InvalidCredentialsError as e:
        raise rejected(status.HTTP_400_BAD_REQUEST, "Current password is incorrect") from e
    except AuthError as e:
        raise rejected(
            status.HTTP_400_BAD_REQUEST,
            "New password must be different from current password",
        ) from e

    await ctx.audit.log_password_change(user.id, ctx.request_metadata())
    return MessageResponse(message="Password changed successfully. Please log in again.")
