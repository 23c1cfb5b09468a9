"""SchoolGate Backend - FastAPI Application Factory."""

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from schoolgate.api.auth import router as auth_router
from schoolgate.api.health import router as health_router
from schoolgate.api.router import api_router
from schoolgate.core import SecurityPolicy, async_session_maker, settings, setup_logging
from schoolgate.core.background import cancel_tasks, start_task, token_sweep_loop
from schoolgate.core.clock import Clock, utc_now
from schoolgate.core.config import Settings
from schoolgate.core.logging import get_logger
from schoolgate.middleware import rate_limit_cleanup_loop
from schoolgate.middleware.pipeline import (
    SecurityRejected,
    SecurityServices,
    security_rejected_handler,
)
from schoolgate.middleware.rate_limit import RateLimiter

# Import all models to ensure they're registered with Base for Alembic
from schoolgate.models import AuditLog, AuditLogArchive, RevokedToken, User  # noqa: F401
from schoolgate.services.audit import AuditService
from schoolgate.services.audit_retention import AuditRetentionService
from schoolgate.services.audit_trail import AuditTrail
from schoolgate.services.lockout import AccountLockoutTracker

logger = get_logger("main")


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"message": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception(f"Database error handling {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Internal server error"},
    )


def create_app(
    policy: SecurityPolicy | None = None,
    session_factory: Callable | None = None,
    audit_trail: AuditTrail | None = None,
    rate_limiter: RateLimiter | None = None,
    clock: Clock | None = None,
    start_background_tasks: bool = True,
    config: Settings = settings,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Every collaborator can be injected; by default the policy comes from
    settings and the process-wide audit trail and rate limiter are used.
    """
    clock = clock or utc_now
    policy = policy or SecurityPolicy.from_settings(config)
    session_factory = session_factory or async_session_maker

    if audit_trail is None:
        audit_trail = AuditTrail.get_instance()
        audit_trail.set_session_factory(session_factory)
    if rate_limiter is None:
        rate_limiter = RateLimiter.get_instance() if clock is utc_now else RateLimiter(clock)

    audit = AuditService(audit_trail)
    services = SecurityServices(
        policy=policy,
        audit=audit,
        rate_limiter=rate_limiter,
        lockout=AccountLockoutTracker(policy.lockout, audit, clock),
        clock=clock,
    )
    retention = AuditRetentionService(
        session_factory,
        audit,
        retention_days=policy.audit_retention_days,
        archive=config.audit_archive_on_cleanup,
        interval_seconds=config.audit_retention_interval_seconds,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        setup_logging(
            level=config.log_level,
            format_type="structured" if not config.debug else "dev",
        )
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        for warning in config.check_security_configuration():
            logger.warning(f"SECURITY: {warning}")

        audit_trail.start()
        tasks = []
        if start_background_tasks:
            await retention.start()
            tasks.append(
                start_task(
                    token_sweep_loop(
                        session_factory, audit, clock, config.token_sweep_interval_seconds
                    ),
                    "token-sweep",
                )
            )
            tasks.append(start_task(rate_limit_cleanup_loop(rate_limiter), "rate-limit-cleanup"))

        yield

        logger.info("Shutting down...")
        await cancel_tasks(tasks)
        await retention.stop()
        await audit_trail.close()

    app = FastAPI(
        title=config.app_name,
        description="Security control plane for the SchoolGate school management API",
        version=config.app_version,
        lifespan=lifespan,
        docs_url="/docs" if config.debug else None,
        redoc_url="/redoc" if config.debug else None,
        openapi_url="/openapi.json" if config.debug else None,
    )

    app.state.security = services
    app.state.session_factory = session_factory
    app.state.audit_retention = retention

    app.add_exception_handler(SecurityRejected, security_rejected_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)

    # CORS must be outermost so rejections carry CORS headers too
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "Accept",
            policy.csrf.header_name,
        ],
    )

    if config.enable_metrics:
        from prometheus_fastapi_instrumentator import Instrumentator

        Instrumentator(
            excluded_handlers=["/health", "/metrics"],
        ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    app.include_router(health_router)  # Health at root level
    app.include_router(auth_router)  # Auth at root level (/auth)
    app.include_router(api_router)  # Admin API at /api

    return app


# Application instance
app = create_app()
