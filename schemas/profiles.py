from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from constants import DISPLAY_NAME_MAX_LENGTH


class Profile(BaseModel):
    user_id: str
    username: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    created_at: datetime
    last_active_at: datetime

    def public(self) -> "PublicProfile":
        return PublicProfile(**self.model_dump(exclude={"email"}))


class PublicProfile(BaseModel):
    """What other users see of a profile."""

    user_id: str
    username: str
    display_name: Optional[str] = None
    created_at: datetime
    last_active_at: datetime


class UpdateProfileRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    display_name: Optional[str] = Field(default=None, alias="displayName", validate_default=True)

    @field_validator("display_name", mode="before")
    @classmethod
    def validate_display_name(cls, value):
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Display name is required")
        value = value.strip()
        if len(value) > DISPLAY_NAME_MAX_LENGTH:
            raise ValueError(f"Display name must be at most {DISPLAY_NAME_MAX_LENGTH} characters")
        return value
