"""
Chat model definitions.

Chats are parsed straight from the Request Layer's JSON (camelCase keys are
accepted alongside snake_case) and dumped with field names for the cache.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from chatsync.models.enums import MessageType
from chatsync.models.message import Message
from chatsync.utils.datetime_utils import ensure_utc


class Participant(BaseModel):
    """A chat member."""

    model_config = ConfigDict(extra="ignore")

    id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    profile_image_url: Optional[str] = None


class Label(BaseModel):
    """A label applied to conversations."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    color: Optional[str] = None
    assigned_at: Optional[datetime] = Field(None, validation_alias=AliasChoices("assigned_at", "assignedAt"))
    assigned_by: Optional[str] = Field(None, validation_alias=AliasChoices("assigned_by", "assignedBy"))


class LastMessage(BaseModel):
    """Materialized summary of the newest message in a chat."""

    model_config = ConfigDict(extra="ignore")

    id: str
    content: str = ""
    created_at: datetime
    sender_id: str
    sender_name: Optional[str] = None
    message_type: MessageType = MessageType.TEXT
    is_forwarded: bool = False

    @field_validator("created_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @classmethod
    def from_message(cls, message: Message) -> "LastMessage":
        return cls(
            id=str(message.id),
            content=message.text,
            created_at=message.created_at,
            sender_id=message.sender_id,
            sender_name=message.sender_name,
            message_type=message.message_type,
            is_forwarded=message.is_forwarded,
        )


class Chat(BaseModel):
    """A direct or group conversation."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    is_group: bool = False
    participants: list[Participant] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_message: Optional[LastMessage] = Field(
        None, validation_alias=AliasChoices("last_message", "lastMessage")
    )
    unread: int = Field(0, ge=0, description="Messages from others not yet read by the viewer")
    labels: list[Label] = Field(default_factory=list)

    @field_validator("participants", "labels", mode="before")
    @classmethod
    def _drop_nulls(cls, value: Any) -> Any:
        if value is None:
            return []
        return [item for item in value if item]

    @field_validator("unread", mode="before")
    @classmethod
    def _null_unread(cls, value: Any) -> Any:
        return value or 0

    @field_validator("created_at", "updated_at")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @property
    def activity_at(self) -> Optional[datetime]:
        """Timestamp the chat list is ordered by."""
        if self.last_message is not None:
            return self.last_message.created_at
        return self.updated_at or self.created_at


class DirectChatCreate(BaseModel):
    """Schema for starting a direct chat."""

    user_id: str = Field(..., min_length=1)
    name: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"userId": self.user_id, "isGroup": False}
        if self.name:
            payload["name"] = self.name
        return payload


class GroupChatCreate(BaseModel):
    """Schema for creating a group chat."""

    name: str = Field(..., min_length=1)
    participant_ids: list[str] = Field(..., min_length=1)

    def to_payload(self) -> dict[str, Any]:
        return {"name": self.name, "participants": self.participant_ids}


class LabelCreate(BaseModel):
    """Schema for creating a label."""

    name: str = Field(..., min_length=1, max_length=50)
    color: Optional[str] = None
