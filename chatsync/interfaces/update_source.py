"""
Update source interface.

An update source learns about server-side changes (push stream or polling)
and hands normalized events to a listener. It owns two independent
subscriptions: a global one for chat-list events and one scoped to the open
chat.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from chatsync.models.enums import ConnectionState
from chatsync.models.events import SyncEvent


class IUpdateListener(ABC):
    """Receiver of update-source output."""

    @abstractmethod
    async def handle_event(self, event: SyncEvent) -> None:
        """Apply one normalized event."""
        pass

    @abstractmethod
    async def resync(self, chat_id: Optional[str]) -> None:
        """
        Bulk-reload after a reconnect.

        chat_id is None for the global subscription (reload the chat list)
        and the subscribed chat's id for the scoped one.
        """
        pass

    @abstractmethod
    async def connection_state_changed(self, state: ConnectionState) -> None:
        """Observe channel health changes."""
        pass


class IUpdateSource(ABC):
    """Abstract interface for push or poll update delivery."""

    @property
    @abstractmethod
    def state(self) -> ConnectionState:
        """Current channel health."""
        pass

    @property
    @abstractmethod
    def chat_id(self) -> Optional[str]:
        """Chat the scoped subscription is open for, if any."""
        pass

    @abstractmethod
    async def start(self, listener: IUpdateListener) -> None:
        """Open the global subscription."""
        pass

    @abstractmethod
    async def open_chat(self, chat_id: str) -> None:
        """Close any scoped subscription, then open one for chat_id."""
        pass

    @abstractmethod
    async def close_chat(self) -> None:
        """Close the scoped subscription."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Close every subscription."""
        pass
