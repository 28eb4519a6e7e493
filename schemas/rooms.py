from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from constants import MESSAGE_MAX_LENGTH, ROOM_CODE_LENGTH, ROOM_NAME_MAX_LENGTH


class Room(BaseModel):
    id: str
    name: str
    code: str
    is_public: bool = True
    creator_id: Optional[str] = None
    active_members: int = 0
    max_members: int
    last_activity: datetime
    created_at: datetime
    updated_at: datetime


class Membership(BaseModel):
    id: str
    room_id: str
    user_id: str
    is_active: bool = True
    joined_at: datetime


class RoomMessage(BaseModel):
    id: str
    room_id: str
    user_id: str
    content: str
    created_at: datetime


class CreateRoomRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(default=None, validate_default=True)
    is_public: bool = Field(default=True, alias="isPublic")

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, value):
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Room name is required")
        value = value.strip()
        if len(value) > ROOM_NAME_MAX_LENGTH:
            raise ValueError(f"Room name must be at most {ROOM_NAME_MAX_LENGTH} characters")
        return value


class CreateRoomResponse(BaseModel):
    room: Room


class JoinRoomRequest(BaseModel):
    code: Optional[str] = Field(default=None, validate_default=True)

    @field_validator("code", mode="before")
    @classmethod
    def validate_code(cls, value):
        if not isinstance(value, str) or len(value) != ROOM_CODE_LENGTH:
            raise ValueError(f"Valid {ROOM_CODE_LENGTH}-digit room code is required")
        return value


class JoinRoomResponse(BaseModel):
    message: str
    room: Room


class LeaveRoomRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: Optional[str] = Field(default=None, alias="roomId", validate_default=True)

    @field_validator("room_id", mode="before")
    @classmethod
    def validate_room_id(cls, value):
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Room ID is required")
        return value.strip()


class LeaveRoomResponse(BaseModel):
    message: str


class CleanedRoom(BaseModel):
    id: str
    name: str
    code: str


class CleanupRoomsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    cleaned_count: int = Field(alias="cleanedCount")
    cleaned_rooms: list[CleanedRoom] = Field(default_factory=list, alias="cleanedRooms")


class PostMessageRequest(BaseModel):
    content: Optional[str] = Field(default=None, validate_default=True)

    @field_validator("content", mode="before")
    @classmethod
    def validate_content(cls, value):
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Message content is required")
        value = value.strip()
        if len(value) > MESSAGE_MAX_LENGTH:
            raise ValueError(f"Message must be at most {MESSAGE_MAX_LENGTH} characters")
        return value


class PostMessageResponse(BaseModel):
    message: RoomMessage
