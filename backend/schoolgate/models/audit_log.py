"""Audit trail entries and their retention archive."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from schoolgate.core.database import Base
from schoolgate.models.base import BaseModel, TZDateTime


class AuditLog(BaseModel):
    """Append-only security event.

    Rows are only removed by the retention job, which writes its own
    summary entry. ``details`` maps to the ``metadata`` column (the name
    ``metadata`` is reserved on declarative classes).
    """

    __tablename__ = "audit_logs"

    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    __table_args__ = (Index("ix_audit_logs_action_created", "action_type", "created_at"),)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action_type}: {self.description[:50]}>"

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "action_type": self.action_type,
            "description": self.description,
            "target_id": self.target_id,
            "metadata": self.details,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class AuditLogArchive(Base):
    """Archived copy of an audit entry, keyed by the original id."""

    __tablename__ = "audit_logs_archive"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(TZDateTime, nullable=False, index=True)
    archived_at: Mapped[datetime] = mapped_column(TZDateTime, nullable=False)
