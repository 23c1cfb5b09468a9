"""Authentication gate and token revocation check.

``authenticate`` verifies the bearer token and resolves the identity it
names. It deliberately ignores revocation; ``check_token_revocation`` runs
right after it so the two concerns can be composed and tested apart.
"""

import logging

from fastapi import status

from schoolgate.middleware.pipeline import ALLOW, Decision, Reject, SecurityContext
from schoolgate.services.auth import (
    AuthService,
    InvalidTokenError,
    TokenError,
    UserInactiveError,
    validate_access_token,
)
from schoolgate.services.token_revocation import TokenRevocationStore

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "
_CHALLENGE = {"WWW-Authenticate": "Bearer"}


def unauthorized(message: str, **extra) -> Reject:
    return Reject(status.HTTP_401_UNAUTHORIZED, {"message": message, **extra}, dict(_CHALLENGE))


NOT_AUTHORIZED = "Not authorized to access this route"
INVALID_TOKEN = "Invalid or expired token"
USER_NOT_FOUND = "User not found"
TOKEN_REVOKED = "Token has been revoked"


def extract_bearer_token(header: str | None) -> str | None:
    """Token from an ``Authorization: Bearer <token>`` header, or None."""
    if not header or not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX) :].strip()
    if not token or " " in token:
        return None
    return token


async def _fail(ctx: SecurityContext, reason: str, message: str) -> Reject:
    await ctx.audit.log_authentication_failure(reason, ctx.request_metadata())
    return unauthorized(message)


async def authenticate(ctx: SecurityContext) -> Decision:
    token = extract_bearer_token(ctx.request.headers.get("Authorization"))
    if token is None:
        return await _fail(ctx, "missing_or_malformed_header", NOT_AUTHORIZED)

    try:
        claims = validate_access_token(token, ctx.policy.tokens)
    except TokenError as e:
        # Reason goes to the log, never to the client
        logger.info(f"Bearer token rejected from {ctx.client_ip}: {e}")
        return await _fail(ctx, "invalid_token", INVALID_TOKEN)

    auth_service = AuthService(ctx.db, ctx.services.clock)
    try:
        user = await auth_service.validate_token_user(claims)
    except UserInactiveError:
        return await _fail(ctx, "user_inactive", "User account is deactivated")
    except InvalidTokenError as e:
        logger.info(f"Bearer token rejected from {ctx.client_ip}: {e}")
        return await _fail(ctx, "stale_token", INVALID_TOKEN)

    if user is None:
        return await _fail(ctx, "user_not_found", USER_NOT_FOUND)

    ctx.user = user
    ctx.token = token
    ctx.claims = claims
    return ALLOW


async def check_token_revocation(ctx: SecurityContext) -> Decision:
    """Refuse a token that was revoked before its natural expiry."""
    if ctx.token is None:
        # Nothing authenticated upstream: fail closed
        return unauthorized(NOT_AUTHORIZED)

    store = TokenRevocationStore(ctx.db, ctx.audit, ctx.services.clock)
    if await store.is_revoked(ctx.token):
        user_id = ctx.user.id if ctx.user is not None else None
        logger.warning(f"Revoked token presented by user {user_id} from {ctx.client_ip}")
        await ctx.audit.log_revoked_token_use(
            user_id, {**ctx.request_metadata(), "jti": (ctx.claims or {}).get("jti")}
        )
        return unauthorized(TOKEN_REVOKED, error="TOKEN_REVOKED")
    return ALLOW
