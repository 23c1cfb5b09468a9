"""Security checks composed into per-route pipelines."""

from schoolgate.middleware.account_lockout import check_account_lockout
from schoolgate.middleware.authentication import authenticate, check_token_revocation
from schoolgate.middleware.authorization import (
    require_any_permission,
    require_permission,
    require_permissions,
    require_roles,
)
from schoolgate.middleware.csrf import check_csrf
from schoolgate.middleware.pipeline import (
    ALLOW,
    Allow,
    Reject,
    SecurityContext,
    SecurityPipeline,
    SecurityRejected,
    SecurityServices,
    security_guard,
)
from schoolgate.middleware.rate_limit import (
    RateLimiter,
    check_failed_login_identity_limit,
    check_failed_login_ip_limit,
    check_login_rate_limit,
)
from schoolgate.middleware.rate_limit_cleanup import rate_limit_cleanup_loop

__all__ = [
    "ALLOW",
    "Allow",
    "RateLimiter",
    "Reject",
    "SecurityContext",
    "SecurityPipeline",
    "SecurityRejected",
    "SecurityServices",
    "authenticate",
    "check_account_lockout",
    "check_csrf",
    "check_failed_login_identity_limit",
    "check_failed_login_ip_limit",
    "check_login_rate_limit",
    "check_token_revocation",
    "rate_limit_cleanup_loop",
    "require_any_permission",
    "require_permission",
    "require_permissions",
    "require_roles",
    "security_guard",
]
