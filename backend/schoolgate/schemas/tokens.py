"""Pydantic schemas for revoked-token administration and audit retention."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from schoolgate.models.revoked_token import RevocationReason


class RevokeTokenRequest(BaseModel):
    """Request to revoke a token manually."""

    token: str = Field(..., min_length=1)
    user_id: UUID | None = Field(
        None,
        description="Owner of the token. Defaults to the token's subject claim.",
    )
    reason: RevocationReason = RevocationReason.MANUAL


class RevokedTokenResponse(BaseModel):
    """A revocation record. The token itself is only shown truncated."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    token_preview: str
    user_id: UUID
    reason: str
    revoked_by: UUID | None
    expires_at: datetime
    created_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class RevokedTokenListResponse(BaseModel):
    tokens: list[RevokedTokenResponse]
    pagination: Pagination


class RevokeTokenResponse(BaseModel):
    message: str
    id: UUID


class RevocationStatsResponse(BaseModel):
    total: int
    active: int
    expired: int
    last_24h: int
    by_reason: dict[str, int]


class CleanupResponse(BaseModel):
    message: str
    deleted_count: int


class AuditCleanupResponse(BaseModel):
    message: str
    archived: bool
    affected: int
    retention_days: int
