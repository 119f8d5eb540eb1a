"""
Message model definitions.

A message id is either confirmed (issued by the server) or provisional
(created locally the moment the user hits send). The two are distinct
types, so nothing ever inspects the id text to tell them apart.
"""

from datetime import date, datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from chatsync.core.exceptions import ValidationError
from chatsync.models.enums import MessageType, ReadStatus
from chatsync.utils.datetime_utils import ensure_utc


class ConfirmedId(BaseModel):
    """Stable id issued by the server."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["confirmed"] = "confirmed"
    value: str = Field(..., min_length=1)

    def __str__(self) -> str:
        return self.value


class ProvisionalId(BaseModel):
    """Local id of an optimistic message awaiting server confirmation."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["provisional"] = "provisional"
    value: int = Field(..., ge=1, description="Monotonic per-engine counter")

    def __str__(self) -> str:
        return f"provisional#{self.value}"


MessageId = Annotated[Union[ConfirmedId, ProvisionalId], Field(discriminator="kind")]


class Message(BaseModel):
    """A single chat entry as held by the reconciliation engine."""

    id: MessageId
    chat_id: str = Field(..., description="Owning chat")
    sender_id: str
    sender_name: Optional[str] = None
    text: str = ""
    message_type: MessageType = MessageType.TEXT
    is_forwarded: bool = False
    created_at: datetime
    delivered: bool = False
    read: bool = False
    read_at: Optional[datetime] = None
    reply_to_message_id: Optional[str] = None

    @field_validator("created_at", "read_at")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @property
    def is_provisional(self) -> bool:
        return isinstance(self.id, ProvisionalId)

    @property
    def is_sending(self) -> bool:
        """Shown with a sending indicator until the server confirms it."""
        return self.is_provisional

    @property
    def status(self) -> ReadStatus:
        if self.read:
            return ReadStatus.READ
        if self.delivered:
            return ReadStatus.DELIVERED
        return ReadStatus.PENDING

    def is_unread_for(self, user_id: str) -> bool:
        """Authored by someone else and not yet read by user_id."""
        return self.sender_id != user_id and not self.read

    def with_status(self, status: ReadStatus, read_at: Optional[datetime] = None) -> "Message":
        """Copy with flags set for status. Callers enforce monotonicity."""
        update: dict[str, Any] = {
            "delivered": status in (ReadStatus.DELIVERED, ReadStatus.READ),
            "read": status == ReadStatus.READ,
        }
        if status == ReadStatus.READ:
            update["read_at"] = ensure_utc(read_at) or self.read_at
        return self.model_copy(update=update)


class MessageRecord(BaseModel):
    """
    Message as returned by the Request Layer or carried in an event row.

    Accepts both the API shape (text, isDelivered, isRead, chatId) and the
    raw row shape (content, delivered_at, read_at, chat_id).
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    chat_id: Optional[str] = Field(None, validation_alias=AliasChoices("chat_id", "chatId"))
    sender_id: str
    sender_name: Optional[str] = Field(None, validation_alias=AliasChoices("sender_name", "sender"))
    text: str = Field("", validation_alias=AliasChoices("text", "content"))
    message_type: MessageType = MessageType.TEXT
    is_forwarded: bool = False
    created_at: datetime
    delivered: bool = Field(False, validation_alias=AliasChoices("delivered", "isDelivered"))
    read: bool = Field(False, validation_alias=AliasChoices("read", "isRead"))
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    reply_to_message_id: Optional[str] = None

    @field_validator("message_type", mode="before")
    @classmethod
    def _default_message_type(cls, value: Any) -> Any:
        return value or MessageType.TEXT

    @field_validator("created_at", "delivered_at", "read_at")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _flags_from_timestamps(self) -> "MessageRecord":
        if self.read_at is not None:
            self.read = True
        if self.delivered_at is not None or self.read:
            self.delivered = True
        return self

    def to_message(self, chat_id: Optional[str] = None) -> Message:
        owner = self.chat_id or chat_id
        if not owner:
            raise ValidationError(f"Message {self.id} has no chat id")
        return Message(
            id=ConfirmedId(value=self.id),
            chat_id=owner,
            sender_id=self.sender_id,
            sender_name=self.sender_name,
            text=self.text,
            message_type=self.message_type,
            is_forwarded=self.is_forwarded,
            created_at=self.created_at,
            delivered=self.delivered,
            read=self.read,
            read_at=self.read_at,
            reply_to_message_id=self.reply_to_message_id,
        )


class MessageSend(BaseModel):
    """Schema for sending a message."""

    chat_id: str
    content: str = Field(..., min_length=1)
    message_type: MessageType = MessageType.TEXT
    reply_to_message_id: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "chatId": self.chat_id,
            "content": self.content,
            "messageType": self.message_type.value,
        }
        if self.reply_to_message_id:
            payload["replyToMessageId"] = self.reply_to_message_id
        return payload


class MessageGroup(BaseModel):
    """Messages sharing one calendar date, for display."""

    date: date
    label: str
    messages: list[Message] = Field(default_factory=list)
