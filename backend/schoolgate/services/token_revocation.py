"""Token revocation store.

Holds bearer tokens that must be refused before their natural expiry
(logout, rotation, forced termination). A record is only useful while the
token would otherwise still verify, so each one carries the token's own
``exp`` and is swept once that has passed.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import jwt
from jwt.exceptions import PyJWTError
from sqlalchemy import delete, func, insert, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolgate.core.clock import Clock, utc_now
from schoolgate.models.revoked_token import RevocationReason, RevokedToken
from schoolgate.services.audit import AuditService

logger = logging.getLogger(__name__)


class TokenRevocationError(Exception):
    """Base revocation error."""


class TokenAlreadyRevokedError(TokenRevocationError):
    """The token already has a revocation record."""


class UnparseableTokenError(TokenRevocationError):
    """The token carries no readable expiry."""


def read_token_expiry(token: str) -> datetime:
    """Read ``exp`` from a token without verifying it.

    Revocation must work for tokens signed with a rotated key too, so the
    signature is not checked here.
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except PyJWTError as e:
        raise UnparseableTokenError("Invalid token format") from e

    exp = claims.get("exp")
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        raise UnparseableTokenError("Token has no expiry claim")
    try:
        return datetime.fromtimestamp(exp, tz=UTC)
    except (OverflowError, OSError, ValueError) as e:
        raise UnparseableTokenError("Token expiry is out of range") from e


class TokenRevocationStore:
    """Revoke / IsRevoked / Sweep over the ``revoked_tokens`` table."""

    def __init__(self, session: AsyncSession, audit: AuditService, clock: Clock = utc_now):
        self.session = session
        self.audit = audit
        self.clock = clock

    async def revoke(
        self,
        token: str,
        user_id: UUID,
        reason: RevocationReason | str,
        revoked_by: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> UUID:
        """Insert a revocation record and return its id.

        Raises UnparseableTokenError when the token has no readable expiry
        and TokenAlreadyRevokedError when the token is already revoked.
        """
        reason = RevocationReason(reason)
        expires_at = read_token_expiry(token)
        record_id = uuid4()

        inserted = await self._insert_if_absent(
            {
                "id": record_id,
                "token": token,
                "user_id": user_id,
                "expires_at": expires_at,
                "reason": reason.value,
                "revoked_by": revoked_by,
                "created_at": self.clock(),
                "updated_at": self.clock(),
            }
        )
        if not inserted:
            raise TokenAlreadyRevokedError("Token is already revoked")
        await self.session.commit()

        logger.info(f"Revoked token {record_id} for user {user_id} ({reason.value})")
        await self.audit.log_token_revoked(record_id, user_id, reason.value, revoked_by, metadata)
        return record_id

    async def _insert_if_absent(self, values: dict[str, Any]) -> bool:
        """Atomic insert guarded by the unique token constraint."""
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(RevokedToken).on_conflict_do_nothing(
                index_elements=["token"]
            )
        elif dialect == "sqlite":
            stmt = sqlite.insert(RevokedToken).on_conflict_do_nothing(index_elements=["token"])
        else:
            try:
                await self.session.execute(insert(RevokedToken).values(**values))
            except IntegrityError:
                await self.session.rollback()
                if await self.is_revoked(values["token"]):
                    return False
                raise
            return True

        result = await self.session.execute(
            stmt.values(**values).returning(RevokedToken.id)
        )
        return result.scalar_one_or_none() is not None

    async def is_revoked(self, token: str) -> bool:
        result = await self.session.execute(
            select(RevokedToken.id).where(RevokedToken.token == token)
        )
        return result.scalar_one_or_none() is not None

    async def sweep(self) -> int:
        """Delete records whose expiry is strictly in the past."""
        now = self.clock()
        result = await self.session.execute(
            delete(RevokedToken).where(RevokedToken.expires_at < now)
        )
        await self.session.commit()
        deleted = result.rowcount or 0
        if deleted:
            logger.info(f"Swept {deleted} expired revocation records")
        return deleted

    async def get(self, record_id: UUID) -> RevokedToken | None:
        return await self.session.get(RevokedToken, record_id)

    async def remove(self, record_id: UUID, removed_by: UUID | None = None) -> bool:
        """Delete a revocation record, making its token usable again."""
        result = await self.session.execute(
            delete(RevokedToken).where(RevokedToken.id == record_id)
        )
        await self.session.commit()
        if not result.rowcount:
            return False
        logger.warning(f"Revocation record {record_id} removed by {removed_by}")
        await self.audit.log_token_unrevoked(record_id, removed_by)
        return True

    async def list_revoked(
        self,
        page: int = 1,
        page_size: int = 20,
        user_id: UUID | None = None,
        reason: str | None = None,
    ) -> tuple[list[RevokedToken], int]:
        query = select(RevokedToken)
        count_query = select(func.count(RevokedToken.id))
        if user_id is not None:
            query = query.where(RevokedToken.user_id == user_id)
            count_query = count_query.where(RevokedToken.user_id == user_id)
        if reason is not None:
            query = query.where(RevokedToken.reason == reason)
            count_query = count_query.where(RevokedToken.reason == reason)

        total = (await self.session.execute(count_query)).scalar() or 0
        result = await self.session.execute(
            query.order_by(RevokedToken.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def stats(self) -> dict[str, Any]:
        now = self.clock()
        total = (await self.session.execute(select(func.count(RevokedToken.id)))).scalar() or 0
        expired = (
            await self.session.execute(
                select(func.count(RevokedToken.id)).where(RevokedToken.expires_at < now)
            )
        ).scalar() or 0
        recent = (
            await self.session.execute(
                select(func.count(RevokedToken.id)).where(
                    RevokedToken.created_at >= now - timedelta(hours=24)
                )
            )
        ).scalar() or 0
        by_reason_rows = await self.session.execute(
            select(RevokedToken.reason, func.count(RevokedToken.id)).group_by(RevokedToken.reason)
        )
        return {
            "total": total,
            "active": total - expired,
            "expired": expired,
            "last_24h": recent,
            "by_reason": {reason: count for reason, count in by_reason_rows.all()},
        }
