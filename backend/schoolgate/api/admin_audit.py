"""Audit trail maintenance."""

import logging

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.exc import SQLAlchemyError

from schoolgate.api.deps import protected, rejected
from schoolgate.middleware.authorization import require_permissions
from schoolgate.middleware.pipeline import SecurityContext
from schoolgate.schemas.tokens import AuditCleanupResponse
from schoolgate.services.audit_retention import AuditRetentionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/audit", tags=["admin-audit"])


def get_retention_service(request: Request) -> AuditRetentionService:
    return request.app.state.audit_retention


@router.post("/cleanup", response_model=AuditCleanupResponse)
async def cleanup_audit_logs(
    archive: bool = Query(False, description="Move old entries to the archive table"),
    ctx: SecurityContext = Depends(
        protected(require_permissions("audit.read", "system.configure"), csrf=True)
    ),
    retention: AuditRetentionService = Depends(get_retention_service),
) -> AuditCleanupResponse:
    """Purge (or archive) audit entries older than the retention period."""
    try:
        affected = await retention.run_cleanup_now(archive=archive, actor_id=ctx.user.id)
    except SQLAlchemyError as e:
        raise rejected(status.HTTP_500_INTERNAL_SERVER_ERROR, "Audit cleanup failed") from e

    verb = "Archived" if archive else "Deleted"
    return AuditCleanupResponse(
        message=f"{verb} {affected} audit entries",
        archived=archive,
        affected=affected,
        retention_days=retention.retention_days,
    )
