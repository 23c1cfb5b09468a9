"""SchoolGate API Router - aggregates all API routes."""

from fastapi import APIRouter

from schoolgate.api import admin_audit, admin_tokens, admin_users

# Admin routes are prefixed with /api; /auth and /health mount at the root
api_router = APIRouter(prefix="/api")

api_router.include_router(admin_users.router)
api_router.include_router(admin_tokens.router)
api_router.include_router(admin_audit.router)
