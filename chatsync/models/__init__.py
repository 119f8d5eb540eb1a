"""Pydantic models (schemas) for the sync layer."""

from chatsync.models.enums import (
    ConnectionState,
    MessageType,
    ReadStatus,
    SubscriptionScope,
    SyncEventType,
    TransportSignal,
)
from chatsync.models.message import (
    ConfirmedId,
    Message,
    MessageGroup,
    MessageId,
    MessageRecord,
    MessageSend,
    ProvisionalId,
)
from chatsync.models.chat import (
    Chat,
    DirectChatCreate,
    GroupChatCreate,
    Label,
    LabelCreate,
    LastMessage,
    Participant,
)
from chatsync.models.events import (
    ChatListChangedEvent,
    MessageReadEvent,
    NewMessageEvent,
    RawFrame,
    SyncEvent,
)
from chatsync.models.session import SessionCredentials, SessionError

__all__ = [
    # Enums
    "ConnectionState",
    "MessageType",
    "ReadStatus",
    "SubscriptionScope",
    "SyncEventType",
    "TransportSignal",
    # Messages
    "ConfirmedId",
    "ProvisionalId",
    "MessageId",
    "Message",
    "MessageRecord",
    "MessageSend",
    "MessageGroup",
    # Chats
    "Chat",
    "Participant",
    "Label",
    "LabelCreate",
    "LastMessage",
    "DirectChatCreate",
    "GroupChatCreate",
    # Events
    "SyncEvent",
    "NewMessageEvent",
    "MessageReadEvent",
    "ChatListChangedEvent",
    "RawFrame",
    # Session
    "SessionCredentials",
    "SessionError",
]
