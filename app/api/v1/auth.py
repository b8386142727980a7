from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.errors import success_response
from app.core.rate_limit import enforce_auth_rate_limit
from app.db.session import get_db
from app.schemas.auth import AuthResponse, LoginRequest, RegisterRequest
from app.schemas.users import UserPublic
from app.services import auth_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", dependencies=[Depends(enforce_auth_rate_limit)])
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    logger.info("Auth register endpoint hit role=%s user_type=%s", payload.role, payload.user_type)
    user, token = auth_service.register_user(db, payload)
    body = AuthResponse(user=UserPublic.model_validate(user), token=token)
    return success_response(body.to_wire(), status_code=status.HTTP_201_CREATED)


@router.post("/login", dependencies=[Depends(enforce_auth_rate_limit)])
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    logger.info("Auth login endpoint hit")
    user, token = auth_service.authenticate_user(db, payload)
    body = AuthResponse(user=UserPublic.model_validate(user), token=token)
    return success_response(body.to_wire())
