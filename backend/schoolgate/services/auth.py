"""Credential comparison and bearer token issue/verification."""

import logging
import secrets
from datetime import timedelta
from typing import Any
from uuid import UUID

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from jwt.exceptions import PyJWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolgate.core.clock import Clock, utc_now
from schoolgate.core.policy import TokenPolicy
from schoolgate.models.user import User

logger = logging.getLogger(__name__)

# Argon2id: 64 MiB memory, 3 iterations, parallelism 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"

_dummy_hash: str | None = None


class AuthError(Exception):
    """Base authentication error."""


class InvalidCredentialsError(AuthError):
    """Unknown email or wrong password."""


class UserInactiveError(AuthError):
    """User account is deactivated."""


class TokenError(AuthError):
    """Bearer token error."""


class TokenExpiredError(TokenError):
    """Bearer token has expired."""


class InvalidTokenError(TokenError):
    """Bearer token is malformed, tampered with, or stale."""


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash in constant time."""
    try:
        return ph.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def _burn_verification(password: str) -> None:
    """Spend a hash verification so unknown emails cost as much as known ones."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = hash_password(secrets.token_hex(16))
    verify_password(password, _dummy_hash)


def _encode(
    user: User,
    token_type: str,
    lifetime: timedelta,
    policy: TokenPolicy,
    clock: Clock,
) -> str:
    now = clock()
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role,
        "type": token_type,
        "pv": user.password_version,
        "iat": now,
        "exp": now + lifetime,
        # Unique per token so revocation of one never hits a sibling issued the same second
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(payload, policy.secret_key, algorithm=policy.algorithm)


def create_access_token(user: User, policy: TokenPolicy, clock: Clock = utc_now) -> str:
    """Create a short-lived access token."""
    return _encode(
        user, ACCESS_TOKEN, timedelta(minutes=policy.access_token_minutes), policy, clock
    )


def create_refresh_token(user: User, policy: TokenPolicy, clock: Clock = utc_now) -> str:
    """Create a long-lived refresh token."""
    return _encode(user, REFRESH_TOKEN, timedelta(days=policy.refresh_token_days), policy, clock)


def decode_token(token: str, policy: TokenPolicy) -> dict[str, Any]:
    """Verify signature and expiry, returning the claims."""
    try:
        return jwt.decode(
            token,
            policy.secret_key,
            algorithms=[policy.algorithm],
            options={"require": ["exp", "sub", "type"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenExpiredError("Token has expired") from e
    except PyJWTError as e:
        raise InvalidTokenError(f"Invalid token: {e}") from e


def validate_access_token(token: str, policy: TokenPolicy) -> dict[str, Any]:
    payload = decode_token(token, policy)
    if payload.get("type") != ACCESS_TOKEN:
        raise InvalidTokenError("Not an access token")
    return payload


def validate_refresh_token(token: str, policy: TokenPolicy) -> dict[str, Any]:
    payload = decode_token(token, policy)
    if payload.get("type") != REFRESH_TOKEN:
        raise InvalidTokenError("Not a refresh token")
    return payload


class AuthService:
    """Identity lookups and credential checks."""

    def __init__(self, session: AsyncSession, clock: Clock = utc_now):
        self.session = session
        self.clock = clock

    async def get_user_by_email(self, email: str) -> User | None:
        result = await self.session.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: UUID) -> User | None:
        return await self.session.get(User, user_id)

    async def create_user(self, email: str, password: str, role: str, name: str = "") -> User:
        """Create an identity. Password policy is the caller's concern."""
        if await self.get_user_by_email(email) is not None:
            raise AuthError("A user with this email already exists")

        user = User(
            email=email.lower(),
            name=name,
            password_hash=hash_password(password),
            role=role,
        )
        self.session.add(user)
        await self.session.commit()
        await self.session.refresh(user)

        logger.info(f"Created user {user.id} with role {role}")
        return user

    def check_credentials(self, user: User | None, password: str) -> User:
        """Compare a password against an already-resolved identity.

        Raises InvalidCredentialsError for both an unknown identity and a
        wrong password so responses cannot be used to enumerate accounts.
        The active flag is only checked after the password matches.
        """
        if user is None:
            _burn_verification(password)
            raise InvalidCredentialsError("Invalid credentials")

        if not verify_password(password, user.password_hash):
            raise InvalidCredentialsError("Invalid credentials")

        if not user.is_active:
            raise UserInactiveError("User account is deactivated")

        return user

    async def record_login(self, user: User) -> None:
        user.last_login_at = self.clock()
        await self.session.commit()

    async def change_password(self, user: User, current_password: str, new_password: str) -> None:
        """Change a password and invalidate every outstanding token."""
        if not verify_password(current_password, user.password_hash):
            raise InvalidCredentialsError("Current password is incorrect")
        if verify_password(new_password, user.password_hash):
            raise AuthError("New password must be different from the current password")

        user.password_hash = hash_password(new_password)
        user.password_version += 1
        await self.session.commit()

        logger.info(f"Password changed for user {user.id}")

    async def validate_token_user(self, payload: dict[str, Any]) -> User | None:
        """Resolve the identity a verified token refers to.

        Returns None when the identity no longer exists. Raises
        InvalidTokenError when the token predates a password change.
        """
        try:
            user_id = UUID(str(payload.get("sub")))
        except ValueError as e:
            raise InvalidTokenError("Token subject is not a user id") from e

        user = await self.get_user_by_id(user_id)
        if user is None:
            return None

        if not user.is_active:
            raise UserInactiveError("User account is deactivated")

        if user.password_version != payload.get("pv"):
            raise InvalidTokenError("Token invalidated by password change")

        return user

    def create_tokens(self, user: User, policy: TokenPolicy) -> dict[str, Any]:
        return {
            "access_token": create_access_token(user, policy, self.clock),
            "refresh_token": create_refresh_token(user, policy, self.clock),
            "token_type": "bearer",
            "expires_in": policy.access_token_minutes * 60,
        }
