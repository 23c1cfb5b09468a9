"""Identity record, including the account lockout fields."""

from datetime import datetime

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from schoolgate.models.base import BaseModel, TZDateTime


class User(BaseModel):
    """A SchoolGate identity, keyed for login by email.

    ``lockout_until`` is only ever set together with a nonzero
    ``failed_login_attempts``; the lockout tracker clears both along with
    ``last_failed_login_at``. ``password_version`` is embedded in issued
    tokens and bumped on password change to invalidate them all.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    password_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Account lockout
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_failed_login_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)
    lockout_until: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)

    last_login_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"
