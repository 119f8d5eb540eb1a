"""
Sync event definitions.

Inbound updates are modelled as a tagged union discriminated on ``type``.
Anything that does not validate into one of the variants is dropped at the
normalization boundary.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from chatsync.models.enums import SyncEventType
from chatsync.models.message import MessageRecord
from chatsync.utils.datetime_utils import ensure_utc


class NewMessageEvent(BaseModel):
    """A message was stored server-side."""

    type: Literal[SyncEventType.NEW_MESSAGE] = SyncEventType.NEW_MESSAGE
    chat_id: str
    message_id: str
    # Present only when the push carried a complete row; otherwise the
    # engine fetches the message by id.
    message: Optional[MessageRecord] = None


class MessageReadEvent(BaseModel):
    """A message transitioned from unread to read."""

    type: Literal[SyncEventType.MESSAGE_READ] = SyncEventType.MESSAGE_READ
    chat_id: str
    message_id: str
    read_at: datetime

    @field_validator("read_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class ChatListChangedEvent(BaseModel):
    """Something about the chat list changed; refetch it wholesale."""

    type: Literal[SyncEventType.CHAT_LIST_CHANGED] = SyncEventType.CHAT_LIST_CHANGED
    chat_id: Optional[str] = None


SyncEvent = Annotated[
    Union[NewMessageEvent, MessageReadEvent, ChatListChangedEvent],
    Field(discriminator="type"),
]

sync_event_adapter: TypeAdapter[SyncEvent] = TypeAdapter(SyncEvent)


@dataclass(frozen=True)
class RawFrame:
    """One undecoded frame from the push stream."""

    event: str
    data: str = ""
