"""Revoked-token administration for admins."""

import logging
import math
from uuid import UUID

import jwt
from fastapi import APIRouter, Depends, Query, status
from jwt.exceptions import PyJWTError

from schoolgate.api.deps import auth_service_for, protected, rejected, revocation_store_for
from schoolgate.middleware.authorization import require_roles
from schoolgate.middleware.pipeline import SecurityContext
from schoolgate.models.revoked_token import RevocationReason
from schoolgate.schemas.tokens import (
    CleanupResponse,
    Pagination,
    RevocationStatsResponse,
    RevokedTokenListResponse,
    RevokedTokenResponse,
    RevokeTokenRequest,
    RevokeTokenResponse,
)
from schoolgate.services.permissions import Role
from schoolgate.services.token_revocation import (
    TokenAlreadyRevokedError,
    UnparseableTokenError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/tokens", tags=["admin-tokens"])

_admins = require_roles(Role.ADMIN, Role.SUPERADMIN)
ADMIN = protected(_admins)
ADMIN_CSRF = protected(_admins, csrf=True)


def _token_subject(token: str) -> UUID | None:
    """Subject claim of a token, read without verifying it."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
        return UUID(str(claims.get("sub")))
    except (PyJWTError, ValueError):
        return None


@router.get("/blacklist", response_model=RevokedTokenListResponse)
async def list_revoked_tokens(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: UUID | None = None,
    reason: RevocationReason | None = None,
    ctx: SecurityContext = Depends(ADMIN),
) -> RevokedTokenListResponse:
    """List revocation records, newest first."""
    items, total = await revocation_store_for(ctx).list_revoked(
        page=page,
        page_size=limit,
        user_id=user_id,
        reason=reason.value if reason else None,
    )
    return RevokedTokenListResponse(
        tokens=[RevokedTokenResponse.model_validate(item) for item in items],
        pagination=Pagination(
            page=page, limit=limit, total=total, pages=math.ceil(total / limit)
        ),
    )


@router.post(
    "/blacklist",
    response_model=RevokeTokenResponse,
    status_code=status.HTTP_201_CREATED,
)
async def revoke_token(
    body: RevokeTokenRequest,
    ctx: SecurityContext = Depends(ADMIN_CSRF),
) -> RevokeTokenResponse:
    """Revoke a token ahead of its expiry."""
    owner_id = body.user_id or _token_subject(body.token)
    if owner_id is None:
        raise rejected(status.HTTP_400_BAD_REQUEST, "Token owner could not be determined")
    if await auth_service_for(ctx).get_user_by_id(owner_id) is None:
        raise rejected(status.HTTP_404_NOT_FOUND, "Token owner not found")

    try:
        record_id = await revocation_store_for(ctx).revoke(
            body.token,
            owner_id,
            body.reason,
            revoked_by=ctx.user.id,
            metadata=ctx.request_metadata(),
        )
    except UnparseableTokenError as e:
        raise rejected(status.HTTP_400_BAD_REQUEST, str(e)) from e
    except TokenAlreadyRevokedError as e:
        raise rejected(status.HTTP_409_CONFLICT, str(e)) from e

    return RevokeTokenResponse(message="Token revoked successfully", id=record_id)


@router.delete("/blacklist/{record_id}", response_model=CleanupResponse)
async def remove_revoked_token(
    record_id: UUID,
    ctx: SecurityContext = Depends(ADMIN_CSRF),
) -> CleanupResponse:
    """Remove a revocation record, making its token usable again."""
    removed = await revocation_store_for(ctx).remove(record_id, removed_by=ctx.user.id)
    if not removed:
        raise rejected(status.HTTP_404_NOT_FOUND, "Revocation record not found")
    return CleanupResponse(message="Token removed from revocation list", deleted_count=1)


@router.get("/stats", response_model=RevocationStatsResponse)
async def revocation_stats(
    ctx: SecurityContext = Depends(ADMIN),
) -> RevocationStatsResponse:
    return RevocationStatsResponse(**await revocation_store_for(ctx).stats())


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_revoked_tokens(
    ctx: SecurityContext = Depends(ADMIN_CSRF),
) -> CleanupResponse:
    """Sweep records whose tokens have expired."""
    deleted = await revocation_store_for(ctx).sweep()
    await ctx.audit.log_token_cleanup(deleted, ctx.user.id)
    return CleanupResponse(message="Cleanup completed successfully", deleted_count=deleted)
