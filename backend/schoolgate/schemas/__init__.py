# SchoolGate Pydantic Schemas
from schoolgate.schemas.auth import (
    ChangePasswordRequest,
    CsrfTokenResponse,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    TokenResponse,
    UserResponse,
)
from schoolgate.schemas.tokens import (
    AuditCleanupResponse,
    CleanupResponse,
    Pagination,
    RevocationStatsResponse,
    RevokedTokenListResponse,
    RevokedTokenResponse,
    RevokeTokenRequest,
    RevokeTokenResponse,
)
from schoolgate.schemas.users import UnlockResponse, UserCreate, UserSummary

__all__ = [
    # Auth
    "ChangePasswordRequest",
    "CsrfTokenResponse",
    "LoginRequest",
    "LogoutRequest",
    "MessageResponse",
    "RefreshRequest",
    "TokenResponse",
    "UserResponse",
    # Token administration and retention
    "AuditCleanupResponse",
    "CleanupResponse",
    "Pagination",
    "RevocationStatsResponse",
    "RevokedTokenListResponse",
    "RevokedTokenResponse",
    "RevokeTokenRequest",
    "RevokeTokenResponse",
    # Users
    "UnlockResponse",
    "UserCreate",
    "UserSummary",
]
