"""Immutable security policy built once at startup.

Thresholds live here rather than in module globals so an app instance (or a
test) can run with an alternate policy: ``create_app(policy=...)``.
"""

import math
from dataclasses import dataclass, field
from datetime import timedelta

from schoolgate.core.config import Settings, parse_lockout_thresholds
from schoolgate.services.permissions import DEFAULT_CATALOG, PermissionCatalog

DEFAULT_COMMON_PASSWORDS = frozenset(
    {
        "password",
        "password123",
        "123456",
        "123456789",
        "qwerty",
        "abc123",
        "password1",
        "admin",
        "letmein",
        "welcome",
        "monkey",
        "1234567890",
        "password1234",
        "qwerty123",
        "admin123",
        "root",
        "user",
        "guest",
        "test",
        "demo",
    }
)


@dataclass(frozen=True)
class LockoutPolicy:
    """Escalation table: (failed attempts, lockout minutes), ascending."""

    thresholds: tuple[tuple[int, int], ...] = ((3, 5), (5, 15), (10, 60), (15, 1440))

    def __post_init__(self):
        if not self.thresholds:
            raise ValueError("Lockout policy needs at least one threshold")
        object.__setattr__(self, "thresholds", tuple(sorted(self.thresholds)))

    def duration_for(self, failed_attempts: int) -> timedelta | None:
        """Lockout for the largest threshold not above ``failed_attempts``."""
        minutes = None
        for attempts, duration in self.thresholds:
            if failed_attempts >= attempts:
                minutes = duration
            else:
                break
        return timedelta(minutes=minutes) if minutes is not None else None


@dataclass(frozen=True)
class RateLimitRule:
    """Fixed window: at most ``max_requests`` per ``window_minutes``."""

    name: str
    max_requests: int
    window_minutes: int
    message: str

    @property
    def window_seconds(self) -> int:
        return self.window_minutes * 60


def describe_window(minutes: int) -> str:
    if minutes % 60 == 0:
        hours = minutes // 60
        return "1 hour" if hours == 1 else f"{hours} hours"
    return "1 minute" if minutes == 1 else f"{minutes} minutes"


def _login_rule(max_requests: int, window_minutes: int) -> RateLimitRule:
    return RateLimitRule(
        "login_ip",
        max_requests,
        window_minutes,
        "Too many login attempts from this IP, please try again after "
        f"{describe_window(window_minutes)}.",
    )


def _failed_ip_rule(max_requests: int, window_minutes: int) -> RateLimitRule:
    return RateLimitRule(
        "failed_login_ip",
        max_requests,
        window_minutes,
        "Too many failed login attempts from this IP, please try again after "
        f"{describe_window(window_minutes)}.",
    )


def _identity_rule(max_requests: int, window_minutes: int) -> RateLimitRule:
    return RateLimitRule(
        "failed_login_identity",
        max_requests,
        window_minutes,
        "Too many failed login attempts for this account, please try again after "
        f"{describe_window(window_minutes)}.",
    )


@dataclass(frozen=True)
class RateLimitPolicy:
    login_ip: RateLimitRule = field(default_factory=lambda: _login_rule(5, 15))
    failed_login_ip: RateLimitRule = field(default_factory=lambda: _failed_ip_rule(10, 60))
    failed_login_identity: RateLimitRule = field(default_factory=lambda: _identity_rule(3, 5))

    @classmethod
    def build(
        cls,
        login: tuple[int, int] = (5, 15),
        failed_login: tuple[int, int] = (10, 60),
        identity: tuple[int, int] = (3, 5),
    ) -> "RateLimitPolicy":
        """Build from (max requests, window minutes) pairs."""
        return cls(
            login_ip=_login_rule(*login),
            failed_login_ip=_failed_ip_rule(*failed_login),
            failed_login_identity=_identity_rule(*identity),
        )

    @property
    def rules(self) -> tuple[RateLimitRule, ...]:
        return (self.login_ip, self.failed_login_ip, self.failed_login_identity)


@dataclass(frozen=True)
class PasswordPolicy:
    min_length: int = 8
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_numbers: bool = True
    require_special_chars: bool = True
    special_chars: str = "!@#$%^&*"
    blacklist_common: bool = True
    common_passwords: frozenset[str] = DEFAULT_COMMON_PASSWORDS
    prevent_sequential_chars: bool = True
    max_sequential_chars: int = 3
    prevent_repeated_chars: bool = True
    max_repeated_chars: int = 3


@dataclass(frozen=True)
class CsrfPolicy:
    cookie_name: str = "csrfToken"
    header_name: str = "X-CSRF-Token"
    body_field: str = "csrfToken"
    cookie_secure: bool = False
    protected_methods: frozenset[str] = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass(frozen=True)
class TokenPolicy:
    secret_key: str
    algorithm: str = "HS256"
    access_token_minutes: int = 15
    refresh_token_days: int = 7


@dataclass(frozen=True)
class SecurityPolicy:
    tokens: TokenPolicy
    lockout: LockoutPolicy = field(default_factory=LockoutPolicy)
    rate_limits: RateLimitPolicy = field(default_factory=RateLimitPolicy)
    password: PasswordPolicy = field(default_factory=PasswordPolicy)
    csrf: CsrfPolicy = field(default_factory=CsrfPolicy)
    permissions: PermissionCatalog = DEFAULT_CATALOG
    audit_retention_days: int = 90
    trusted_proxies: frozenset[str] = frozenset()

    @classmethod
    def from_settings(cls, config: Settings) -> "SecurityPolicy":
        return cls(
            tokens=TokenPolicy(
                secret_key=config.effective_jwt_secret_key,
                algorithm=config.jwt_algorithm,
                access_token_minutes=config.jwt_access_token_expire_minutes,
                refresh_token_days=config.jwt_refresh_token_expire_days,
            ),
            lockout=LockoutPolicy(thresholds=tuple(parse_lockout_thresholds(config.lockout_thresholds))),
            rate_limits=RateLimitPolicy.build(
                login=(config.rate_limit_login_max, config.rate_limit_login_window_minutes),
                failed_login=(
                    config.rate_limit_failed_login_max,
                    config.rate_limit_failed_login_window_minutes,
                ),
                identity=(
                    config.rate_limit_identity_max,
                    config.rate_limit_identity_window_minutes,
                ),
            ),
            password=PasswordPolicy(
                min_length=config.password_min_length,
                require_uppercase=config.password_require_uppercase,
                require_lowercase=config.password_require_lowercase,
                require_numbers=config.password_require_numbers,
                require_special_chars=config.password_require_special_chars,
                blacklist_common=config.password_blacklist_common,
                prevent_sequential_chars=config.password_prevent_sequential_chars,
                max_sequential_chars=config.password_max_sequential_chars,
                prevent_repeated_chars=config.password_prevent_repeated_chars,
                max_repeated_chars=config.password_max_repeated_chars,
            ),
            csrf=CsrfPolicy(
                cookie_name=config.csrf_cookie_name,
                header_name=config.csrf_header_name,
                body_field=config.csrf_body_field,
                cookie_secure=config.csrf_cookie_secure,
            ),
            audit_retention_days=max(1, config.audit_retention_days),
            trusted_proxies=config.trusted_proxy_ip_set,
        )


def remaining_minutes(seconds: float) -> int:
    """Whole minutes left, rounded up: 61s -> 2."""
    return max(1, math.ceil(seconds / 60))
