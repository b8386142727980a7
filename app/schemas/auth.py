from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator

from app.schemas.base import CamelModel
from app.schemas.users import UserPublic

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class RegisterRequest(CamelModel):
    email: str = Field(min_length=3, max_length=254, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=128)
    name: str | None = Field(default=None, min_length=1, max_length=64)
    role: Literal["athlete", "coach", "admin", "user"] = "athlete"
    user_type: Literal["athlete", "user"] = "athlete"

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class LoginRequest(CamelModel):
    email: str = Field(min_length=3, max_length=254, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class AccessToken(CamelModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class AuthResponse(CamelModel):
    user: UserPublic
    token: AccessToken
