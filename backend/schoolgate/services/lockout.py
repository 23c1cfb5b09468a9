"""Account lockout tracker.

Per-identity failure counter with an escalating suspension window, stored
on the User row. States are Unlocked (``lockout_until`` is None) and
Locked(until).

- A failed credential check bumps the counter and, when it reaches a
  threshold in the escalation table, (re)locks the account for the
  largest matching duration.
- The pre-check runs before credentials are compared. While locked it
  rejects without touching the counter; once the window has passed it
  resets the counter and lets the attempt through.
- A successful login or an administrative unlock resets the counter the
  same way. Every reset clears ``lockout_until`` and
  ``last_failed_login_at`` along with it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from schoolgate.core.clock import Clock, utc_now
from schoolgate.core.policy import LockoutPolicy, remaining_minutes
from schoolgate.models.user import User
from schoolgate.services.audit import AuditService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockoutStatus:
    lockout_until: datetime
    remaining_minutes: int

    @property
    def message(self) -> str:
        return (
            "Account is locked due to too many failed login attempts. "
            f"Try again in {self.remaining_minutes} minutes."
        )


class AccountLockoutTracker:
    def __init__(self, policy: LockoutPolicy, audit: AuditService, clock: Clock = utc_now):
        self.policy = policy
        self.audit = audit
        self.clock = clock

    def status(self, user: User) -> LockoutStatus | None:
        """Current lockout, or None when the account may attempt a login."""
        now = self.clock()
        if user.lockout_until is None or user.lockout_until <= now:
            return None
        seconds = (user.lockout_until - now).total_seconds()
        return LockoutStatus(user.lockout_until, remaining_minutes(seconds))

    async def precheck(
        self, session: AsyncSession, user: User | None, metadata: dict[str, Any]
    ) -> LockoutStatus | None:
        """Gate a login attempt before credential verification.

        Unknown identities pass; the credential check handles them.
        """
        if user is None:
            return None

        locked = self.status(user)
        if locked is not None:
            logger.warning(
                f"Blocked login for locked account {user.id} "
                f"({locked.remaining_minutes} min remaining)"
            )
            await self.audit.log_lockout_blocked(
                user.id, user.email, locked.remaining_minutes, metadata
            )
            return locked

        if user.lockout_until is not None:
            previous_attempts = user.failed_login_attempts
            self._reset(user)
            await session.commit()
            logger.info(
                f"Lockout expired for account {user.id} after {previous_attempts} failed attempts"
            )
            await self.audit.log_lockout_expired(user.id, user.email)

        return None

    async def record_failure(
        self, session: AsyncSession, user: User, metadata: dict[str, Any]
    ) -> LockoutStatus | None:
        """Count a failed credential check. Returns the lockout if one was applied."""
        now = self.clock()
        user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
        user.last_failed_login_at = now

        duration = self.policy.duration_for(user.failed_login_attempts)
        if duration is None:
            await session.commit()
            return None

        user.lockout_until = now + duration
        await session.commit()

        minutes = int(duration.total_seconds() // 60)
        logger.warning(
            f"Account {user.id} locked for {minutes} minutes "
            f"after {user.failed_login_attempts} failed attempts"
        )
        await self.audit.log_lockout_applied(
            user.id,
            user.email,
            user.failed_login_attempts,
            user.lockout_until,
            minutes,
            metadata,
        )
        return LockoutStatus(user.lockout_until, minutes)

    def _has_been_locked(self, user: User) -> bool:
        return user.lockout_until is not None or (
            self.policy.duration_for(user.failed_login_attempts or 0) is not None
        )

    def _reset(self, user: User) -> None:
        user.failed_login_attempts = 0
        user.lockout_until = None
        user.last_failed_login_at = None

    async def record_success(
        self, session: AsyncSession, user: User, metadata: dict[str, Any]
    ) -> bool:
        """Reset counters after a successful login. Returns True if the account had been locked."""
        was_locked = self._has_been_locked(user)
        previous_attempts = user.failed_login_attempts
        self._reset(user)
        await session.commit()

        if was_locked:
            await self.audit.log_unlock(
                user.id,
                user.email,
                reason="successful_login",
                metadata={**metadata, "previous_failed_attempts": previous_attempts},
            )
        return was_locked

    async def unlock(
        self,
        session: AsyncSession,
        user: User,
        unlocked_by: UUID | None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Administrative reset. Returns True if the account had been locked."""
        was_locked = self._has_been_locked(user)
        previous_attempts = user.failed_login_attempts
        self._reset(user)
        await session.commit()

        if was_locked:
            logger.info(f"Account {user.id} unlocked by {unlocked_by}")
            await self.audit.log_unlock(
                user.id,
                user.email,
                reason="administrative",
                unlocked_by=unlocked_by,
                metadata={**(metadata or {}), "previous_failed_attempts": previous_attempts},
            )
        return was_locked
