import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from constants import DISPLAY_NAME_MAX_LENGTH, PASSWORD_MIN_LENGTH, USERNAME_MAX_LENGTH, USERNAME_MIN_LENGTH

USERNAME_PATTERN = re.compile(r"^[a-z0-9_]+$")
# bcrypt only looks at the first 72 bytes of a password
PASSWORD_MAX_BYTES = 72


class SignUpRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: Optional[str] = Field(default=None, validate_default=True)
    password: Optional[str] = Field(default=None, validate_default=True)
    email: Optional[str] = None
    display_name: Optional[str] = Field(default=None, alias="displayName")

    @field_validator("username", mode="before")
    @classmethod
    def validate_username(cls, value):
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Username is required")
        value = value.strip().lower()
        if not (USERNAME_MIN_LENGTH <= len(value) <= USERNAME_MAX_LENGTH) or not USERNAME_PATTERN.match(value):
            raise ValueError(
                f"Username must be {USERNAME_MIN_LENGTH}-{USERNAME_MAX_LENGTH} letters, numbers or underscores"
            )
        return value

    @field_validator("password", mode="before")
    @classmethod
    def validate_password(cls, value):
        if not isinstance(value, str) or len(value) < PASSWORD_MIN_LENGTH:
            raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
        if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
            raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes")
        return value

    @field_validator("email", mode="before")
    @classmethod
    def validate_email(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        if not isinstance(value, str) or "@" not in value:
            raise ValueError("Email is invalid")
        return value.strip().lower()

    @field_validator("display_name", mode="before")
    @classmethod
    def validate_display_name(cls, value):
        if not isinstance(value, str) or not value.strip():
            return None
        value = value.strip()
        if len(value) > DISPLAY_NAME_MAX_LENGTH:
            raise ValueError(f"Display name must be at most {DISPLAY_NAME_MAX_LENGTH} characters")
        return value


class LoginRequest(BaseModel):
    """Either the username or the email of the account goes in ``login``."""

    login: Optional[str] = Field(default=None, validate_default=True)
    password: Optional[str] = Field(default=None, validate_default=True)

    @field_validator("login", "password", mode="before")
    @classmethod
    def validate_present(cls, value):
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Username and password are required")
        return value


class CreateSessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str
    user_id: str = Field(alias="userId")
    username: str
    display_name: Optional[str] = Field(default=None, alias="displayName")
    expires_in: int = Field(alias="expiresIn")


class CurrentUser(BaseModel):
    id: str
    display_name: Optional[str] = None
    token: str
