"""Audit retention - purge or archive old audit entries on a schedule."""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, insert, literal, select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolgate.core.clock import Clock, utc_now
from schoolgate.core.logging import get_logger
from schoolgate.models.audit_log import AuditLog, AuditLogArchive
from schoolgate.models.base import TZDateTime
from schoolgate.services.audit import AuditService

logger = get_logger("audit_retention")

CLEANUP_INTERVAL_SECONDS = 86400
STARTUP_DELAY_SECONDS = 60
DEFAULT_RETENTION_DAYS = 90

# Table column names (the details attribute is stored as "metadata")
_ARCHIVE_COLUMNS = (
    "id",
    "actor_id",
    "action_type",
    "description",
    "target_id",
    "metadata",
    "created_at",
)


async def purge_audit_logs(
    db: AsyncSession, cutoff: datetime, now: datetime, archive: bool = False
) -> int:
    """Remove entries created before ``cutoff``, copying them to the archive first if asked.

    Copy and delete share one transaction. Returns the number of entries
    removed from ``audit_logs``.
    """
    old = AuditLog.created_at < cutoff

    if archive:
        source = AuditLog.__table__
        target = AuditLogArchive.__table__
        await db.execute(
            insert(target).from_select(
                [*(target.c[name] for name in _ARCHIVE_COLUMNS), target.c.archived_at],
                select(
                    *(source.c[name] for name in _ARCHIVE_COLUMNS),
                    literal(now, TZDateTime()),
                ).where(source.c.created_at < cutoff),
            )
        )

    result = await db.execute(delete(AuditLog).where(old))
    await db.commit()
    return result.rowcount or 0


class AuditRetentionService:
    """Background service that keeps the audit trail within its retention period."""

    def __init__(
        self,
        session_factory: Callable,
        audit: AuditService,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        archive: bool = False,
        interval_seconds: int = CLEANUP_INTERVAL_SECONDS,
        clock: Clock = utc_now,
    ):
        self._session_factory = session_factory
        self._audit = audit
        self._retention_days = max(1, retention_days)
        self._archive = archive
        self._interval_seconds = interval_seconds
        self._clock = clock
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def retention_days(self) -> int:
        return self._retention_days

    @retention_days.setter
    def retention_days(self, value: int) -> None:
        """Set retention period in days (minimum 1 day)."""
        self._retention_days = max(1, value)
        logger.info(f"Audit retention period set to {self._retention_days} days")

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Audit retention service is already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._cleanup_loop())
        logger.info(
            f"Audit retention service started (retention: {self._retention_days} days, "
            f"archive: {self._archive}, interval: {self._interval_seconds}s)"
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Audit retention service stopped")

    async def _cleanup_loop(self) -> None:
        await asyncio.sleep(STARTUP_DELAY_SECONDS)
        while self._running:
            try:
                await self.run_cleanup_now()
            except Exception as e:
                logger.error(f"Error in audit retention cleanup: {e}")
            await asyncio.sleep(self._interval_seconds)

    async def run_cleanup_now(
        self, archive: bool | None = None, actor_id: UUID | None = None
    ) -> int:
        """Run one purge (or archival) pass and record a summary entry.

        A failure is audited as ``audit.cleanup_failed`` and re-raised.
        """
        archive = self._archive if archive is None else archive
        now = self._clock()
        cutoff = now - timedelta(days=self._retention_days)

        async with self._session_factory() as db:
            try:
                affected = await purge_audit_logs(db, cutoff, now, archive=archive)
            except Exception as e:
                await db.rollback()
                logger.exception(f"Audit retention run failed: {e}")
                await self._audit.log_retention_failure(e, actor_id)
                raise

        if affected:
            logger.info(
                f"Audit retention: {'archived' if archive else 'deleted'} {affected} entries "
                f"older than {self._retention_days} days"
            )
        await self._audit.log_retention_run(
            archive, affected, self._retention_days, cutoff, actor_id
        )
        return affected
