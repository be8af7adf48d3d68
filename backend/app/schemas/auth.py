"""
Auth request/response schemas.
"""
import re
from typing import Literal

from pydantic import BaseModel, EmailStr, field_validator, model_validator

_SYMBOL_RE = re.compile(r"[^A-Za-z0-9\s]")


def _check_password(v: str) -> str:
    if len(v.encode("utf-8")) > 72:
        raise ValueError("Password must be at most 72 bytes (bcrypt limit)")
    return v


class RegisterRequest(BaseModel):
    email: EmailStr
    username: str
    firstname: str
    lastname: str
    password: str
    password_confirm: str
    role: Literal["student", "teacher"] = "student"

    @field_validator("email", "username", mode="before")
    @classmethod
    def normalize_identity(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("username")
    @classmethod
    def username_length(cls, v: str) -> str:
        if not 4 <= len(v) <= 30:
            raise ValueError("A username must have between 4 and 30 characters.")
        return v

    @field_validator("firstname", "lastname")
    @classmethod
    def name_length(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("A name must have at least 2 characters.")
        return v

    @field_validator("password")
    @classmethod
    def password_policy(cls, v: str) -> str:
        _check_password(v)
        if len(v) < 8:
            raise ValueError("The password must contain at least 8 characters.")
        if not any(c.isupper() for c in v):
            raise ValueError("The password must contain at least 1 letter in uppercase.")
        if not any(c.islower() for c in v):
            raise ValueError("The password must contain at least 1 letter in lowercase.")
        if not any(c.isdigit() for c in v):
            raise ValueError("The password must contain at least 1 digit.")
        if not _SYMBOL_RE.search(v):
            raise ValueError("The password must contain at least 1 special character.")
        if any(c.isspace() for c in v):
            raise ValueError("The password must not contain spaces.")
        return v

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.password_confirm:
            raise ValueError("Passwords are not the same.")
        return self


class LoginRequest(BaseModel):
    email: EmailStr
    password: str

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("password")
    @classmethod
    def password_length(cls, v: str) -> str:
        return _check_password(v)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    id: str
    email: str
    username: str
    firstname: str
    lastname: str
    photo: str
    role: str

    class Config:
        from_attributes = True
