"""Revoked bearer tokens - rejected until their natural expiry."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from schoolgate.models.base import BaseModel, TZDateTime


class RevocationReason(str, Enum):
    LOGOUT = "logout"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    MANUAL = "manual"
    TOKEN_ROTATION = "token_rotation"


class RevokedToken(BaseModel):
    """A token string that must be refused before it expires.

    The unique constraint on ``token`` is the atomic insert-if-absent
    guard: a second revocation of the same token fails with an
    IntegrityError instead of silently succeeding.
    """

    __tablename__ = "revoked_tokens"

    token: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    expires_at: Mapped[datetime] = mapped_column(TZDateTime, nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    revoked_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (Index("ix_revoked_tokens_reason_created", "reason", "created_at"),)

    @property
    def token_preview(self) -> str:
        return f"{self.token[:20]}..."

    def __repr__(self) -> str:
        return f"<RevokedToken {self.token_preview} ({self.reason})>"
