"""Shared route dependencies: guard pipelines and service accessors."""

from fastapi import status

from schoolgate.middleware.authentication import authenticate, check_token_revocation, unauthorized
from schoolgate.middleware.csrf import check_csrf
from schoolgate.middleware.pipeline import (
    Check,
    Reject,
    SecurityContext,
    SecurityRejected,
    security_guard,
)
from schoolgate.services.auth import AuthService
from schoolgate.services.token_revocation import TokenRevocationStore


def rejected(status_code: int, message: str, **extra) -> SecurityRejected:
    """Build the exception a route raises to refuse a request.

    Renders through the same handler as pipeline rejections, so every
    refusal has the ``{"message": ...}`` shape.
    """
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return SecurityRejected(unauthorized(message, **extra))
    return SecurityRejected(Reject(status_code, {"message": message, **extra}))


def protected(*checks: Check, csrf: bool = False):
    """Guard for authenticated routes.

    Runs the CSRF guard first when ``csrf`` is set, then authentication,
    the revocation check and finally ``checks``.
    """
    pipeline: list[Check] = [check_csrf] if csrf else []
    pipeline += [authenticate, check_token_revocation, *checks]
    return security_guard(*pipeline)


AUTHENTICATED = protected()
AUTHENTICATED_CSRF = protected(csrf=True)


def auth_service_for(ctx: SecurityContext) -> AuthService:
    return AuthService(ctx.db, ctx.services.clock)


def revocation_store_for(ctx: SecurityContext) -> TokenRevocationStore:
    return TokenRevocationStore(ctx.db, ctx.audit, ctx.services.clock)
