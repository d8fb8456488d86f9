"""
Security utilities for authentication.

This module provides:
- Password hashing with Argon2id
- Password strength validation
- Signed, expiring bearer tokens (TokenAuth)
- Opaque token generation and SHA-256 hashing for stored credentials
  (password reset and remember tokens)
"""

import hashlib
import logging
import re
import secrets
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from argon2 import PasswordHasher
from argon2.exceptions import (
    InvalidHashError,
    VerificationError,
    VerifyMismatchError,
)
from jose import JWTError, jwt

from tessera.core.config import Settings
from tessera.core.context import get_user_id
from tessera.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


# =============================================================================
# Password Hashing with Argon2id
# =============================================================================

pwd_hasher = PasswordHasher(
    time_cost=2,
    memory_cost=65536,  # 64 MB
    parallelism=4,
    hash_len=32,
    salt_len=16,
)


def configure_password_hasher(settings: Settings) -> None:
    """Rebuild the module hasher from settings (cheaper parameters in tests)."""
    global pwd_hasher
    pwd_hasher = PasswordHasher(
        time_cost=settings.argon2_time_cost,
        memory_cost=settings.argon2_memory_cost,
        parallelism=settings.argon2_parallelism,
        hash_len=32,
        salt_len=16,
    )


def hash_password(password: str) -> str:
    """
    Hash a password using Argon2id.

    Args:
        password: Plain text password to hash

    Returns:
        Argon2id hash string (includes algorithm, parameters, salt, and hash)
    """
    return pwd_hasher.hash(password)


def verify_password(password: str, hashed_password: str | None) -> bool:
    """
    Verify a password against an Argon2id hash.

    Returns:
        True if password matches hash, False otherwise (including a missing
        or malformed hash)
    """
    if not hashed_password:
        return False
    try:
        pwd_hasher.verify(hashed_password, password)
        return True
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def is_password_hash(value: str) -> bool:
    """Check whether a value already looks like an Argon2 hash."""
    return value.startswith("$argon2")


PASSWORD_SPECIAL_CHARS = "@$!%*?&#"


def validate_password_strength(password: str) -> tuple[bool, str | None]:
    """
    Validate password strength.

    Requirements:
    - Minimum 8 characters
    - At least 1 lowercase letter, 1 uppercase letter and 1 digit
    - At least 1 special character from ``@$!%*?&#``

    Returns:
        Tuple of (is_valid, error_message)
    """
    if len(password) < 8:
        return False, "Password must be at least 8 characters long"

    if (
        not re.search(r"[a-z]", password)
        or not re.search(r"[A-Z]", password)
        or not re.search(r"\d", password)
        or not re.search(r"[@$!%*?&#]", password)
    ):
        return False, (
            "Password must contain at least one uppercase letter, one lowercase "
            f"letter, one number, and one special character ({PASSWORD_SPECIAL_CHARS})"
        )

    return True, None


# =============================================================================
# Opaque Tokens
# =============================================================================
# Reset and remember tokens are random strings handed to the client once.
# Remember tokens are stored as SHA-256 hashes.
# =============================================================================


def generate_opaque_token(nbytes: int = 32) -> str:
    """Return a random hex token (64 characters for the default size)."""
    return secrets.token_hex(nbytes)


def hash_token(token: str) -> str:
    """Hash an opaque token using SHA-256."""
    return hashlib.sha256(token.encode()).hexdigest()


# =============================================================================
# Bearer Tokens
# =============================================================================
# Lifecycle: Issued -> Valid (until exp) -> Expired, or Tampered at any time.
# There is no revocation list; logout is client-side.
# =============================================================================

SUPPORTED_ALGORITHMS = ("HS256", "HS384", "HS512")
MIN_SECRET_LENGTH = 32


@dataclass(frozen=True)
class Principal:
    """Authenticated identity decoded from a verified token."""

    user_id: int
    email: str | None = None
    role: str | None = None
    status: str | None = None
    issued_at: int | None = None
    expires_at: int | None = None
    claims: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "Principal":
        """
        Build a principal from decoded claims.

        Raises:
            ValueError: If the claims carry no usable user id
        """
        raw_id = claims.get("user_id", claims.get("sub"))
        if raw_id is None:
            raise ValueError("token carries no user id")
        return cls(
            user_id=int(raw_id),
            email=claims.get("email"),
            role=claims.get("role"),
            status=claims.get("status"),
            issued_at=claims.get("iat"),
            expires_at=claims.get("exp"),
            claims=dict(claims),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "role": self.role,
            "status": self.status,
            "iat": self.issued_at,
            "exp": self.expires_at,
        }


class TokenAuth:
    """
    Issues and verifies signed, expiring bearer tokens.

    Algorithm and secret are process-wide configuration. Verification never
    raises for an invalid token; it returns ``None`` so the auth middleware
    can turn it into a 401.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        default_ttl: int = 3600,
        extended_ttl: int = 604800,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret or len(secret) < MIN_SECRET_LENGTH:
            raise ConfigurationError(
                f"Token signing secret must be at least {MIN_SECRET_LENGTH} characters"
            )
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ConfigurationError(f"Unsupported token algorithm: {algorithm}")
        self._secret = secret
        self.algorithm = algorithm
        self.default_ttl = default_ttl
        self.extended_ttl = extended_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenAuth":
        return cls(
            secret=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            default_ttl=settings.jwt_expiration,
            extended_ttl=settings.jwt_refresh_expiration,
        )

    def generate_token(self, claims: dict[str, Any], ttl: int | None = None) -> str:
        """
        Sign a claims payload.

        Args:
            claims: Claims to embed (``user_id``, ``email``, ``role``, ``status``)
            ttl: Lifetime in seconds, defaults to ``default_ttl``

        Returns:
            Encoded token string
        """
        now = int(self._clock())
        lifetime = self.default_ttl if ttl is None else ttl
        to_encode = dict(claims)
        if "user_id" in to_encode and "sub" not in to_encode:
            to_encode["sub"] = str(to_encode["user_id"])
        to_encode.update(
            {
                "iat": now,
                "exp": now + lifetime,
                "jti": str(uuid.uuid4()),
            }
        )
        return jwt.encode(to_encode, self._secret, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Principal | None:
        """
        Verify a token and return its principal.

        Rejects signature mismatches, malformed structure and expired tokens.

        Returns:
            Principal, or None when the token is not acceptable
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_sub": False},
            )
        except JWTError as e:
            logger.warning(f"Token rejected: {e}")
            return None

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or exp <= self._clock():
            logger.info("Token rejected: expired")
            return None

        try:
            return Principal.from_claims(claims)
        except (TypeError, ValueError) as e:
            logger.warning(f"Token rejected: invalid claims - {e}")
            return None

    @staticmethod
    def current_user_id() -> int | None:
        """
        Return the authenticated user id of the request being served.

        Set once per request by the auth middleware and read-only afterwards.
        """
        return get_user_id()
