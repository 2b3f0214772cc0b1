from datetime import datetime, timedelta, timezone
import logging
import secrets
from typing import Any
from uuid import uuid4

from jose import JWTError, jwt
from passlib.context import CryptContext

from wishfund.core.config import settings

_dev_logger = logging.getLogger("wishfund.security")
_insecure_keys = {"CHANGE_ME", "your-secret-key-here-change-in-production", "secret", "jwt_secret", "changeme", ""}

if not settings.jwt_secret_key or settings.jwt_secret_key in _insecure_keys or len(settings.jwt_secret_key) < 32:
    if settings.is_local:
        settings.jwt_secret_key = secrets.token_urlsafe(64)
        _dev_logger.warning("JWT_SECRET_KEY was missing/insecure; generated ephemeral key for local dev")
    else:
        raise RuntimeError("JWT_SECRET_KEY must be set to a secure value (32+ chars) in production")


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def generate_otp() -> str:
    if settings.otp_fixed_code:
        return settings.otp_fixed_code
    return f"{secrets.randbelow(1_000_000):06d}"


def _encode(payload: dict[str, Any]) -> str:
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(subject: str, expires_delta_minutes: int | None = None) -> str:
    expire_minutes = expires_delta_minutes or settings.access_token_expire_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    # 'type' distinguishes access tokens from refresh tokens
    return _encode({"sub": subject, "exp": expire, "type": "access", "jti": str(uuid4())})


def create_refresh_token(subject: str, expires_delta_minutes: int | None = None) -> str:
    expire_minutes = expires_delta_minutes or settings.refresh_token_expire_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    return _encode({"sub": subject, "exp": expire, "type": "refresh", "jti": str(uuid4())})


def create_password_reset_token(subject: str, jti: str) -> str:
    """Reset tokens carry a jti stored on the user so a token works once."""
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=settings.password_reset_token_expire_minutes
    )
    return _encode({"sub": subject, "exp": expire, "type": "password_reset", "jti": jti})


def _decode_token_raw(token: str) -> dict[str, Any] | None:
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None


def _decode_typed(token: str, token_type: str) -> dict[str, Any] | None:
    payload = _decode_token_raw(token)
    if not payload or payload.get("type") != token_type:
        return None
    return payload


def decode_access_token(token: str) -> dict[str, Any] | None:
    return _decode_typed(token, "access")


def decode_refresh_token(token: str) -> dict[str, Any] | None:
    return _decode_typed(token, "refresh")


def decode_password_reset_token(token: str) -> dict[str, Any] | None:
    return _decode_typed(token, "password_reset")
