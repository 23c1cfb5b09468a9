"""Security Audit Logging Service.

Every security decision worth reviewing later lands here: lockouts,
rate-limit and CSRF rejections, password policy failures, token
revocations, authorization denials and retention runs.

Writes go through AuditTrail and are fire-and-forget: a failing database
never turns into a failed (or succeeded) security check.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from schoolgate.services.audit_trail import AuditTrail

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = ("password", "secret", "token", "api_key")


class AuditAction(str, Enum):
    """Security audit action types."""

    # Account lockout
    ACCOUNT_LOCKOUT_CHECK = "account.lockout_check"
    ACCOUNT_LOCKOUT = "account.lockout"
    ACCOUNT_LOCKOUT_EXPIRED = "account.lockout_expired"
    ACCOUNT_UNLOCK = "account.unlock"

    # Request throttling and forgery
    RATE_LIMIT_VIOLATION = "rate_limit.violation"
    CSRF_VALIDATION_FAILED = "csrf.validation_failed"

    # Passwords
    PASSWORD_VALIDATION_FAILED = "password.validation_failed"
    PASSWORD_CHANGE = "password.change"

    # Token revocation
    TOKEN_REVOKE = "token.revoke"
    TOKEN_UNREVOKE = "token.unrevoke"
    TOKEN_REVOKED_USE = "token.revoked_use"
    TOKEN_CLEANUP = "token.cleanup"

    # Authentication / authorization
    AUTH_FAILED = "auth.failed"
    AUTH_LOGIN_FAILED = "auth.login_failed"
    AUTHZ_DENIED = "authz.denied"
    USER_CREATE = "user.create"

    # Retention
    AUDIT_CLEANUP = "audit.cleanup"
    AUDIT_ARCHIVE = "audit.archive"
    AUDIT_CLEANUP_FAILED = "audit.cleanup_failed"


def sanitize_metadata(details: dict[str, Any]) -> dict[str, Any]:
    """Redact secrets and coerce values to JSON-safe types.

    Keys mentioning a password, secret, token or api key keep only whether
    a value was present.
    """
    sanitized: dict[str, Any] = {}
    for key, value in details.items():
        key_lower = key.lower()
        if any(s in key_lower for s in SENSITIVE_KEYS):
            sanitized[key] = "[REDACTED - set]" if value is not None else "[REDACTED - unset]"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_metadata(value)
        else:
            sanitized[key] = _json_safe(value)
    return sanitized


def _json_safe(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_safe(v) for v in value]
    return value


class AuditService:
    """Builds audit entries and hands them to the trail."""

    def __init__(self, trail: AuditTrail | None = None):
        self.trail = trail or AuditTrail.get_instance()

    async def log(
        self,
        action: AuditAction,
        description: str,
        actor_id: UUID | None = None,
        target_id: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an event. Never raises."""
        try:
            await self.trail.append(
                action_type=action.value,
                description=description,
                actor_id=actor_id,
                target_id=str(target_id) if target_id is not None else None,
                metadata=sanitize_metadata(metadata) if metadata else None,
            )
        except Exception as e:
            logging.getLogger("schoolgate.audit.fallback").error(
                f"Could not record audit event {action.value}: {description} ({e})"
            )

    # Convenience methods for common audit events

    async def log_lockout_blocked(
        self, user_id: UUID, email: str, remaining_minutes: int, metadata: dict[str, Any]
    ) -> None:
        await self.log(
            AuditAction.ACCOUNT_LOCKOUT_CHECK,
            f"Login attempt blocked for locked account {email}",
            actor_id=user_id,
            target_id=user_id,
            metadata={**metadata, "remaining_minutes": remaining_minutes},
        )

    async def log_lockout_applied(
        self,
        user_id: UUID,
        email: str,
        failed_attempts: int,
        lockout_until: datetime,
        duration_minutes: int,
        metadata: dict[str, Any],
    ) -> None:
        await self.log(
            AuditAction.ACCOUNT_LOCKOUT,
            f"Account {email} locked for {duration_minutes} minutes "
            f"after {failed_attempts} failed login attempts",
            actor_id=user_id,
            target_id=user_id,
            metadata={
                **metadata,
                "failed_attempts": failed_attempts,
                "lockout_until": lockout_until,
                "lockout_duration_minutes": duration_minutes,
            },
        )

    async def log_lockout_expired(self, user_id: UUID, email: str) -> None:
        await self.log(
            AuditAction.ACCOUNT_LOCKOUT_EXPIRED,
            f"Lockout expired for account {email}",
            actor_id=user_id,
            target_id=user_id,
        )

    async def log_unlock(
        self,
        user_id: UUID,
        email: str,
        reason: str,
        unlocked_by: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.log(
            AuditAction.ACCOUNT_UNLOCK,
            f"Account {email} unlocked ({reason})",
            actor_id=unlocked_by or user_id,
            target_id=user_id,
            metadata={**(metadata or {}), "reason": reason},
        )

    async def log_rate_limit_violation(
        self, limiter: str, ip: str, identifier: str | None, metadata: dict[str, Any]
    ) -> None:
        await self.log(
            AuditAction.RATE_LIMIT_VIOLATION,
            f"Rate limit '{limiter}' exceeded by {ip}",
            target_id=identifier,
            metadata={**metadata, "limiter": limiter, "identifier": identifier},
        )

    async def log_csrf_failure(
        self, reason: str, user_id: UUID | None, metadata: dict[str, Any]
    ) -> None:
        await self.log(
            AuditAction.CSRF_VALIDATION_FAILED,
            f"CSRF validation failed: {reason}",
            actor_id=user_id,
            metadata={**metadata, "reason": reason},
        )

    async def log_password_validation_failed(
        self,
        user_id: UUID | None,
        email: str | None,
        violated_rules: list[str],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.log(
            AuditAction.PASSWORD_VALIDATION_FAILED,
            f"Password validation failed for {email or 'unknown user'}",
            actor_id=user_id,
            target_id=user_id,
            metadata={**(metadata or {}), "rules": violated_rules},
        )

    async def log_password_change(self, user_id: UUID, metadata: dict[str, Any]) -> None:
        await self.log(
            AuditAction.PASSWORD_CHANGE,
            "Password changed; outstanding sessions invalidated",
            actor_id=user_id,
            target_id=user_id,
            metadata=metadata,
        )

    async def log_token_revoked(
        self,
        record_id: UUID,
        user_id: UUID,
        reason: str,
        revoked_by: UUID | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.log(
            AuditAction.TOKEN_REVOKE,
            f"Token revoked ({reason})",
            actor_id=revoked_by or user_id,
            target_id=record_id,
            metadata={**(metadata or {}), "reason": reason, "owner_id": user_id},
        )

    async def log_token_unrevoked(self, record_id: UUID, removed_by: UUID | None) -> None:
        await self.log(
            AuditAction.TOKEN_UNREVOKE,
            "Revocation record removed",
            actor_id=removed_by,
            target_id=record_id,
        )

    async def log_revoked_token_use(self, user_id: UUID | None, metadata: dict[str, Any]) -> None:
        await self.log(
            AuditAction.TOKEN_REVOKED_USE,
            "Request presented a revoked token",
            actor_id=user_id,
            metadata=metadata,
        )

    async def log_token_cleanup(self, deleted: int, actor_id: UUID | None = None) -> None:
        await self.log(
            AuditAction.TOKEN_CLEANUP,
            f"Removed {deleted} expired revocation records",
            actor_id=actor_id,
            metadata={"deleted_count": deleted},
        )

    async def log_authentication_failure(self, reason: str, metadata: dict[str, Any]) -> None:
        await self.log(
            AuditAction.AUTH_FAILED,
            f"Authentication failed: {reason}",
            metadata={**metadata, "reason": reason},
        )

    async def log_login_failed(
        self, email: str, user_id: UUID | None, metadata: dict[str, Any]
    ) -> None:
        await self.log(
            AuditAction.AUTH_LOGIN_FAILED,
            f"Failed login for {email}",
            actor_id=user_id,
            target_id=user_id,
            metadata={**metadata, "email": email, "known_account": user_id is not None},
        )

    async def log_authorization_denied(
        self,
        user_id: UUID,
        role: str,
        required: list[str],
        missing: list[str],
        metadata: dict[str, Any],
    ) -> None:
        await self.log(
            AuditAction.AUTHZ_DENIED,
            f"Access denied for role {role}",
            actor_id=user_id,
            metadata={**metadata, "role": role, "required": required, "missing": missing},
        )

    async def log_user_created(
        self, user_id: UUID, role: str, created_by: UUID, metadata: dict[str, Any]
    ) -> None:
        await self.log(
            AuditAction.USER_CREATE,
            f"Created {role} account",
            actor_id=created_by,
            target_id=user_id,
            metadata={**metadata, "role": role},
        )

    async def log_retention_run(
        self,
        archived: bool,
        affected: int,
        retention_days: int,
        cutoff: datetime,
        actor_id: UUID | None = None,
    ) -> None:
        verb = "Archived" if archived else "Deleted"
        await self.log(
            AuditAction.AUDIT_ARCHIVE if archived else AuditAction.AUDIT_CLEANUP,
            f"{verb} {affected} audit entries older than {retention_days} days",
            actor_id=actor_id,
            metadata={"affected": affected, "retention_days": retention_days, "cutoff": cutoff},
        )

    async def log_retention_failure(self, error: Exception, actor_id: UUID | None = None) -> None:
        await self.log(
            AuditAction.AUDIT_CLEANUP_FAILED,
            f"Audit retention run failed: {type(error).__name__}",
            actor_id=actor_id,
            metadata={"error": str(error)},
        )
