"""
Enum definitions for the sync layer.

These enums are used across models and provide type-safe status values.
"""

from enum import Enum


class MessageType(str, Enum):
    """Kind of message content."""

    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    OTHER = "other"

    @classmethod
    def _missing_(cls, value):
        return cls.OTHER


class ReadStatus(str, Enum):
    """
    Per-recipient status of a message.

    Transitions are monotonic: PENDING -> DELIVERED -> READ.
    """

    PENDING = "pending"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _READ_STATUS_RANK[self]

    def is_after(self, other: "ReadStatus") -> bool:
        """True if this status is strictly later in the lifecycle than other."""
        return self.rank > other.rank


_READ_STATUS_RANK = {
    ReadStatus.PENDING: 0,
    ReadStatus.DELIVERED: 1,
    ReadStatus.READ: 2,
}


class SyncEventType(str, Enum):
    """Semantic event types emitted by the update source."""

    NEW_MESSAGE = "new_message"
    MESSAGE_READ = "message_read"
    CHAT_LIST_CHANGED = "chat_list_changed"


class ConnectionState(str, Enum):
    """Health of the update channel, as shown to the user."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DEGRADED = "degraded"
    CLOSED = "closed"


class SubscriptionScope(str, Enum):
    """Which of the two independent subscriptions a connection serves."""

    GLOBAL = "global"
    CHAT = "chat"


class TransportSignal(str, Enum):
    """Connection-level frames that carry no chat data."""

    CONNECTED = "connected"
    KEEP_ALIVE = "keep_alive"
    CONNECTION_ERROR = "connection_error"
