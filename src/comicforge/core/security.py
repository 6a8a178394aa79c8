"""Password hashing and access token handling.

Passwords are hashed with :func:`werkzeug.security.generate_password_hash`
(salted scrypt by default) and checked with ``check_password_hash``.

Access tokens are HS256 JWTs signed with ``config.jwt_secret``.  The claims
carry the user id as a string under ``userId`` plus the account ``email``,
and an ``exp`` derived from ``config.jwt_expires_in``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from authlib.jose import JoseError, JsonWebToken
from werkzeug.security import check_password_hash, generate_password_hash

logger = logging.getLogger(__name__)

_JWT_HEADER = {"alg": "HS256", "typ": "JWT"}

# Only the algorithm tokens are issued with is accepted on the way back in.
_jwt = JsonWebToken(["HS256"])


class AuthError(Exception):
    """Authentication failure carrying the HTTP status it maps to."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class MissingSecretError(AuthError):
    """Raised when the server has no signing secret configured."""

    def __init__(self):
        super().__init__(500, "Server configuration error")


@dataclass(frozen=True)
class Identity:
    """The authenticated caller attached to a request."""

    user_id: int
    email: str


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Check ``password`` against a stored hash.

    A password that cannot be encoded as UTF-8 (lone surrogates from JSON
    escapes) never matches.
    """
    try:
        return check_password_hash(password_hash, password)
    except UnicodeEncodeError:
        return False


def create_access_token(identity: Identity, secret: str, lifetime_seconds: int) -> str:
    """Sign a token for ``identity`` valid for ``lifetime_seconds``.

    Raises:
        MissingSecretError: If ``secret`` is empty.
    """
    if not secret:
        raise MissingSecretError()

    issued_at = int(time.time())
    payload = {
        "userId": str(identity.user_id),
        "email": identity.email,
        "iat": issued_at,
        "exp": issued_at + lifetime_seconds,
    }
    return _jwt.encode(_JWT_HEADER, payload, secret).decode("ascii")


def decode_access_token(token: str, secret: str) -> Identity:
    """Verify signature and expiry and return the embedded identity.

    Raises:
        MissingSecretError: If ``secret`` is empty.
        AuthError: 403 if the token is malformed, badly signed, expired, or
            lacks the expected claims.
    """
    if not secret:
        raise MissingSecretError()

    try:
        claims = _jwt.decode(token, secret)
        claims.validate()
    except JoseError as e:
        logger.debug(f"Rejected access token: {e}")
        raise AuthError(403, "Invalid or expired token") from e
    except ValueError as e:
        # Garbage that is not even base64/JSON can escape as ValueError.
        logger.debug(f"Rejected access token: {e}")
        raise AuthError(403, "Invalid or expired token") from e

    if "exp" not in claims:
        raise AuthError(403, "Invalid or expired token")

    try:
        user_id = int(claims["userId"])
        email = str(claims["email"])
    except (KeyError, TypeError, ValueError) as e:
        raise AuthError(403, "Invalid or expired token") from e

    return Identity(user_id=user_id, email=email)


def parse_bearer(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]
