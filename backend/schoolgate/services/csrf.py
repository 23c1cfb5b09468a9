"""Double-submit CSRF token helpers."""

import hmac
import secrets

CSRF_TOKEN_BYTES = 32


def generate_csrf_token() -> str:
    return secrets.token_hex(CSRF_TOKEN_BYTES)


def csrf_tokens_match(submitted: str | None, cookie: str | None) -> bool:
    """Constant-time comparison; absent or empty on either side never matches."""
    if not submitted or not cookie:
        return False
    return hmac.compare_digest(submitted.encode(), cookie.encode())
