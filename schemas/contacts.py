from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from schemas.profiles import PublicProfile
from schemas.rooms import PostMessageRequest

# Connection statuses
PENDING = "pending"
ACCEPTED = "accepted"
REJECTED = "rejected"


class Connection(BaseModel):
    """A friend request from ``user_id`` to ``friend_id`` and its outcome."""

    id: str
    user_id: str
    friend_id: str
    status: str = PENDING
    created_at: datetime
    updated_at: datetime

    def other(self, user_id: str) -> str:
        return self.friend_id if self.user_id == user_id else self.user_id


class DirectMessage(BaseModel):
    id: str
    sender_id: str
    receiver_id: str
    content: str
    message_type: str = "text"
    created_at: datetime


class ConnectionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    friend_id: Optional[str] = Field(default=None, alias="friendId", validate_default=True)

    @field_validator("friend_id", mode="before")
    @classmethod
    def validate_friend_id(cls, value):
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Friend ID is required")
        return value.strip()


class ConnectionResponse(BaseModel):
    message: str
    connection: Connection


class Contact(BaseModel):
    connection: Connection
    profile: Optional[PublicProfile] = None


class SendDirectMessageRequest(PostMessageRequest):
    pass


class DirectMessageResponse(BaseModel):
    message: DirectMessage
