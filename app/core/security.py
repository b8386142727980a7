from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from app.core.errors import AuthError
from app.core.settings import get_settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


@dataclass(frozen=True, slots=True)
class Identity:
    user_id: str
    email: str
    name: str = ""
    role: str = "athlete"


def hash_password(password: str) -> str:
    logger.debug("Hashing password")
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    is_valid = pwd_context.verify(plain_password, hashed_password)
    logger.debug("Password verification result=%s", is_valid)
    return is_valid


def create_access_token(
    *,
    subject: str,
    email: str,
    name: str = "",
    role: str = "athlete",
    expires_delta: timedelta | None = None,
) -> str:
    settings = get_settings()
    now = datetime.now(UTC)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload = {
        "sub": subject,
        "email": email,
        "name": name,
        "role": role,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    logger.debug("Creating access token subject=%s expires_at=%s", subject, expire.isoformat())
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, object]:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as exc:
        logger.warning("Access token expired")
        raise AuthError(AuthError.TOKEN_EXPIRED, "Token expired") from exc
    except JWTError as exc:
        logger.warning("Access token decode failed")
        raise AuthError(AuthError.TOKEN_INVALID, "Invalid token") from exc

    if payload.get("type") != "access":
        logger.warning("Invalid token type in access token payload")
        raise AuthError(AuthError.TOKEN_INVALID, "Invalid token type")

    logger.debug("Access token decoded subject=%s", payload.get("sub"))
    return payload


def identity_from_token(token: str) -> Identity:
    payload = decode_access_token(token)
    subject = payload.get("sub")
    email = payload.get("email")
    if not isinstance(subject, str) or not subject or not isinstance(email, str) or not email:
        logger.warning("Token payload is missing identity claims")
        raise AuthError(AuthError.TOKEN_INVALID, "Token payload is invalid")

    name = payload.get("name")
    role = payload.get("role")
    return Identity(
        user_id=subject,
        email=email,
        name=name if isinstance(name, str) else "",
        role=role if isinstance(role, str) else "athlete",
    )
