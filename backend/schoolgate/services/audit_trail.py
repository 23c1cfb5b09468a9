"""Audit trail writer - detached, batched, best-effort persistence.

Callers enqueue an entry and return immediately; a background task writes
batches through its own session. A failed write is re-queued a bounded
number of times and otherwise dropped to the fallback logger. Nothing here
raises into the caller.
"""

import asyncio
import logging
import threading
import uuid
from collections.abc import Callable
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from schoolgate.core.clock import Clock, utc_now
from schoolgate.models.audit_log import AuditLog

logger = logging.getLogger(__name__)

# Receives entries that could not be persisted
fallback_logger = logging.getLogger("schoolgate.audit.fallback")


class AuditTrail:
    """Queue + batch flusher for audit entries."""

    _instance: Optional["AuditTrail"] = None
    _instance_lock: threading.Lock = threading.Lock()

    BATCH_SIZE = 100
    BATCH_INTERVAL_MS = 100
    MAX_PENDING = BATCH_SIZE * 10
    MAX_WRITE_ATTEMPTS = 3

    def __init__(
        self,
        session_factory: Callable | None = None,
        clock: Clock = utc_now,
        batch_interval_ms: int | None = None,
    ):
        self._pending: list[dict[str, Any]] = []
        self._lock = asyncio.Lock()
        self._flush_task: asyncio.Task | None = None
        self._session_factory = session_factory
        self._clock = clock
        self._closed = False
        self._batch_interval_ms = batch_interval_ms or self.BATCH_INTERVAL_MS

    @classmethod
    def get_instance(cls) -> "AuditTrail":
        """Get or create the process-wide writer (thread-safe)."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def set_session_factory(self, factory: Callable) -> None:
        self._session_factory = factory

    def start(self) -> None:
        """Re-enable the background flusher after a previous close()."""
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def append(
        self,
        action_type: str,
        description: str,
        actor_id: uuid.UUID | None = None,
        target_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Queue one entry. Returns the queued entry, or None if it was dropped."""
        entry = {
            "id": uuid.uuid4(),
            "actor_id": actor_id,
            "action_type": action_type,
            "description": description,
            "target_id": target_id,
            "metadata": metadata,
            "created_at": self._clock(),
            "attempts": 0,
        }
        async with self._lock:
            if len(self._pending) >= self.MAX_PENDING:
                self._log_dropped(entry)
                return None
            self._pending.append(entry)
            if self._flush_task is None and not self._closed:
                self._flush_task = asyncio.create_task(self._flush_after_interval())
        return entry

    async def flush(self) -> int:
        """Write everything queued so far. Returns the number of rows written."""
        async with self._lock:
            batch = self._pending[:]
            self._pending.clear()
        if not batch:
            return 0
        return await self._write(batch)

    async def close(self) -> None:
        """Stop the background flusher and drain the queue."""
        self._closed = True
        task = self._flush_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._flush_task = None
        await self.flush()

    async def _flush_after_interval(self) -> None:
        try:
            await asyncio.sleep(self._batch_interval_ms / 1000)
            await self.flush()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            fallback_logger.error(f"Unhandled error in audit flush task: {e}")
        finally:
            async with self._lock:
                self._flush_task = None
                if self._pending and not self._closed:
                    self._flush_task = asyncio.create_task(self._flush_after_interval())

    async def _write(self, batch: list[dict[str, Any]]) -> int:
        if self._session_factory is None:
            fallback_logger.error(
                f"No session factory configured; {len(batch)} audit entries not persisted"
            )
            for entry in batch:
                self._log_dropped(entry)
            return 0

        try:
            async with self._session_factory() as db:
                try:
                    for entry in batch:
                        db.add(
                            AuditLog(
                                id=entry["id"],
                                actor_id=entry["actor_id"],
                                action_type=entry["action_type"],
                                description=entry["description"],
                                target_id=entry["target_id"],
                                details=entry["metadata"],
                                created_at=entry["created_at"],
                                updated_at=entry["created_at"],
                            )
                        )
                    await db.commit()
                except SQLAlchemyError:
                    await db.rollback()
                    raise
        except Exception as e:
            fallback_logger.error(f"Failed to write {len(batch)} audit entries: {e}")
            await self._requeue(batch)
            return 0

        logger.debug(f"Flushed {len(batch)} audit entries")
        return len(batch)

    async def _requeue(self, batch: list[dict[str, Any]]) -> None:
        retry = []
        for entry in batch:
            entry["attempts"] += 1
            if entry["attempts"] >= self.MAX_WRITE_ATTEMPTS:
                self._log_dropped(entry)
            else:
                retry.append(entry)

        async with self._lock:
            available = max(0, self.MAX_PENDING - len(self._pending))
            for entry in retry[available:]:
                self._log_dropped(entry)
            # Older entries go back in front to keep chronological order
            self._pending = retry[:available] + self._pending

    def _log_dropped(self, entry: dict[str, Any]) -> None:
        fallback_logger.error(
            f"Dropped audit entry {entry['action_type']}: {entry['description']} "
            f"(actor={entry['actor_id']}, target={entry['target_id']}, "
            f"metadata={entry['metadata']})"
        )
