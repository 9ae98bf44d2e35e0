from datetime import datetime, timedelta, timezone
import logging
import secrets
import string
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from deseo.core.config import settings

_dev_logger = logging.getLogger("deseo.security")
_insecure_keys = {"CHANGE_ME", "your-secret-key-here-change-in-production", "secret", "jwt_secret", "changeme", ""}

if not settings.jwt_secret_key or settings.jwt_secret_key in _insecure_keys or len(settings.jwt_secret_key) < 32:
    if settings.is_local:
        settings.jwt_secret_key = secrets.token_urlsafe(64)
        _dev_logger.warning("JWT_SECRET_KEY was missing/insecure; generated ephemeral key for local dev")
    else:
        raise RuntimeError("JWT_SECRET_KEY must be set to a secure value (32+ chars) in production")


MAGIC_LINK_TOKEN_TYPE = "magic_link"
SESSION_TOKEN_TYPE = "session"

# nanoid's default alphabet
_URL_ALPHABET = string.ascii_letters + string.digits + "_-"


class InvalidTokenError(Exception):
    """Raised when a magic-link token cannot be accepted."""


def random_token(length: int = 21, alphabet: str = _URL_ALPHABET) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_share_token() -> str:
    return random_token(32)


def generate_owner_token() -> str:
    return secrets.token_urlsafe(32)


def generate_reserver_id() -> str:
    return random_token(21)


def tokens_match(expected: str | None, provided: str | None) -> bool:
    if not expected or not provided:
        return False
    return secrets.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def _create_email_token(email: str, token_type: str, expire_minutes: int) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    to_encode: dict[str, Any] = {"email": email, "exp": expire, "type": token_type}
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_magic_link_token(email: str) -> str:
    return _create_email_token(email, MAGIC_LINK_TOKEN_TYPE, settings.magic_link_expire_minutes)


def create_session_token(email: str) -> str:
    return _create_email_token(email, SESSION_TOKEN_TYPE, settings.session_token_expire_minutes)


def _decode_token_raw(token: str) -> dict[str, Any] | None:
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None


def decode_session_token(token: str) -> str | None:
    """Return the email carried by a valid session token, else None."""
    payload = _decode_token_raw(token)
    if not payload or payload.get("type") != SESSION_TOKEN_TYPE:
        return None
    email = payload.get("email")
    return email if isinstance(email, str) and email else None


def verify_magic_link_token(token: str) -> str:
    """
    Validate a magic-link token and return its email claim.

    Raises InvalidTokenError with a user-facing message on expiry or any
    other verification failure.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except ExpiredSignatureError:
        raise InvalidTokenError("Token has expired") from None
    except JWTError:
        raise InvalidTokenError("Invalid token") from None

    if payload.get("type") != MAGIC_LINK_TOKEN_TYPE:
        raise InvalidTokenError("Invalid token")
    email = payload.get("email")
    if not isinstance(email, str) or not email:
        raise InvalidTokenError("Invalid token payload")
    return email
