"""Pydantic schemas for administrative user management."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from schoolgate.schemas.auth import EMAIL_PATTERN
from schoolgate.services.permissions import Role


class UserCreate(BaseModel):
    """Request to create an identity."""

    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    name: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)
    role: Role = Role.STUDENT

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    name: str
    role: str
    is_active: bool
    created_at: datetime


class UnlockResponse(BaseModel):
    message: str
    user_id: UUID
    was_locked: bool
