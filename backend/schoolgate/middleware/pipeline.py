"""Ordered security checks with explicit Allow / Reject decisions.

A check is an async callable taking the per-request SecurityContext and
returning ALLOW or a Reject. SecurityPipeline runs its checks in order and
stops at the first Reject, so a later check never sees a request an
earlier one refused.

At the FastAPI seam, ``security_guard(...)`` turns a Reject into a
SecurityRejected exception, rendered by ``security_rejected_handler``.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolgate.core.clock import Clock
from schoolgate.core.database import get_db
from schoolgate.core.policy import SecurityPolicy
from schoolgate.core.request_utils import get_client_ip, get_user_agent
from schoolgate.models.user import User
from schoolgate.services.audit import AuditService
from schoolgate.services.lockout import AccountLockoutTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allow:
    pass


ALLOW = Allow()


@dataclass(frozen=True)
class Reject:
    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def message(self) -> str:
        return str(self.body.get("message", ""))

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.body, headers=self.headers)


Decision = Allow | Reject

INTERNAL_ERROR = Reject(status.HTTP_500_INTERNAL_SERVER_ERROR, {"message": "Internal server error"})


@dataclass
class SecurityServices:
    """Process-wide collaborators shared by every check (``app.state.security``)."""

    policy: SecurityPolicy
    audit: AuditService
    rate_limiter: Any
    lockout: AccountLockoutTracker
    clock: Clock


@dataclass
class SecurityContext:
    """Everything the checks of one request read and populate."""

    request: Request
    db: AsyncSession
    services: SecurityServices
    client_ip: str
    user_agent: str
    user: User | None = None
    token: str | None = None
    claims: dict[str, Any] | None = None
    login_identifier: str | None = None
    login_user: User | None = None
    _body: dict[str, Any] | None = None

    @property
    def policy(self) -> SecurityPolicy:
        return self.services.policy

    @property
    def audit(self) -> AuditService:
        return self.services.audit

    def request_metadata(self) -> dict[str, Any]:
        return {
            "ip": self.client_ip,
            "user_agent": self.user_agent,
            "method": self.request.method,
            "endpoint": self.request.url.path,
        }

    async def json_body(self) -> dict[str, Any]:
        """Request body as a dict; empty for missing or non-object JSON."""
        if self._body is None:
            self._body = {}
            raw = await self.request.body()
            if raw:
                try:
                    parsed = await self.request.json()
                except ValueError:
                    parsed = None
                if isinstance(parsed, dict):
                    self._body = parsed
        return self._body


Check = Callable[[SecurityContext], Awaitable[Decision]]


class SecurityRejected(Exception):
    """Carries a Reject out of a FastAPI dependency."""

    def __init__(self, rejection: Reject):
        super().__init__(rejection.message)
        self.rejection = rejection


class SecurityPipeline:
    def __init__(self, *checks: Check):
        self.checks = checks

    async def run(self, ctx: SecurityContext) -> Decision:
        for check in self.checks:
            name = getattr(check, "__name__", repr(check))
            try:
                decision = await check(ctx)
            except SQLAlchemyError:
                # Identity or token data unavailable: no safe decision possible
                logger.exception(
                    f"Database error in security check {name} "
                    f"for {ctx.request.method} {ctx.request.url.path}"
                )
                return INTERNAL_ERROR
            if isinstance(decision, Reject):
                logger.warning(
                    f"Rejected {ctx.request.method} {ctx.request.url.path} "
                    f"from {ctx.client_ip} with {decision.status_code} at {name}"
                )
                return decision
        return ALLOW


def get_security_services(request: Request) -> SecurityServices:
    return request.app.state.security


def build_context(request: Request, db: AsyncSession) -> SecurityContext:
    services = get_security_services(request)
    return SecurityContext(
        request=request,
        db=db,
        services=services,
        client_ip=get_client_ip(request, services.policy.trusted_proxies),
        user_agent=get_user_agent(request),
    )


def security_guard(*checks: Check) -> Callable[..., Awaitable[SecurityContext]]:
    """FastAPI dependency running ``checks`` in order.

    Returns the populated SecurityContext on Allow; raises SecurityRejected
    on Reject.
    """
    pipeline = SecurityPipeline(*checks)

    async def guard(request: Request, db: AsyncSession = Depends(get_db)) -> SecurityContext:
        ctx = build_context(request, db)
        decision = await pipeline.run(ctx)
        if isinstance(decision, Reject):
            raise SecurityRejected(decision)
        return ctx

    return guard


async def security_rejected_handler(request: Request, exc: SecurityRejected) -> JSONResponse:
    return exc.rejection.to_response()
