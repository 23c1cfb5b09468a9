"""CSRF guard for state-changing requests (double-submit cookie)."""

import logging

from fastapi import status

from schoolgate.middleware.pipeline import ALLOW, Decision, Reject, SecurityContext
from schoolgate.services.auth import TokenError, validate_access_token
from schoolgate.services.csrf import csrf_tokens_match

logger = logging.getLogger(__name__)

CSRF_FAILED = Reject(status.HTTP_403_FORBIDDEN, {"message": "CSRF token validation failed"})


def _identity_hint(ctx: SecurityContext) -> str | None:
    """Subject of a valid bearer token, for the audit entry only."""
    if ctx.user is not None:
        return str(ctx.user.id)
    header = ctx.request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    try:
        return validate_access_token(header[7:], ctx.policy.tokens).get("sub")
    except TokenError:
        return None


async def check_csrf(ctx: SecurityContext) -> Decision:
    """Cookie token must equal the header (or body field) token."""
    csrf = ctx.policy.csrf
    if ctx.request.method.upper() not in csrf.protected_methods:
        return ALLOW

    cookie_token = ctx.request.cookies.get(csrf.cookie_name)
    submitted = ctx.request.headers.get(csrf.header_name)
    if not submitted:
        body_value = (await ctx.json_body()).get(csrf.body_field)
        submitted = body_value if isinstance(body_value, str) else None

    if csrf_tokens_match(submitted, cookie_token):
        return ALLOW

    if not cookie_token:
        reason = "missing_cookie"
    elif not submitted:
        reason = "missing_token"
    else:
        reason = "token_mismatch"

    user_hint = _identity_hint(ctx)
    logger.warning(
        f"CSRF validation failed ({reason}) for {ctx.request.method} "
        f"{ctx.request.url.path} from {ctx.client_ip}"
    )
    await ctx.audit.log_csrf_failure(
        reason,
        ctx.user.id if ctx.user is not None else None,
        {
            **ctx.request_metadata(),
            "outcome": "failure",
            "subject": user_hint,
            "cookie_present": cookie_token is not None,
            "header_present": submitted is not None,
        },
    )
    return CSRF_FAILED
