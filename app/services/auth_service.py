from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import APIError
from app.core.security import create_access_token, hash_password, verify_password
from app.core.settings import get_settings
from app.models import User
from app.schemas.auth import AccessToken, LoginRequest, RegisterRequest

logger = logging.getLogger(__name__)

settings = get_settings()


def _access_token(user: User) -> AccessToken:
    return AccessToken(
        access_token=create_access_token(subject=user.id, email=user.email, name=user.name, role=user.role),
        token_type="bearer",
        expires_in=settings.access_token_expire_minutes * 60,
    )


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.scalar(select(User).where(User.email == email.strip().lower()))


def register_user(db: Session, payload: RegisterRequest) -> tuple[User, AccessToken]:
    if get_user_by_email(db, payload.email) is not None:
        logger.warning("Registration rejected, email already in use")
        raise APIError(status_code=409, code="email_taken", message="Email is already in use")

    user = User(
        email=payload.email,
        name=payload.name or payload.email.split("@", 1)[0],
        role=payload.role,
        user_type=payload.user_type,
        password_hash=hash_password(payload.password),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Registration lost a race on a duplicate email")
        raise APIError(status_code=409, code="email_taken", message="Email is already in use") from exc
    db.refresh(user)
    logger.info("User registered user_id=%s role=%s", user.id, user.role)
    return user, _access_token(user)


def authenticate_user(db: Session, payload: LoginRequest) -> tuple[User, AccessToken]:
    user = get_user_by_email(db, payload.email)
    if user is None or not verify_password(payload.password, user.password_hash):
        raise APIError(status_code=401, code="invalid_credentials", message="Invalid email or password")

    logger.info("User authenticated user_id=%s", user.id)
    return user, _access_token(user)


def user_exists(db: Session, user_id: str) -> bool:
    return db.get(User, user_id) is not None
