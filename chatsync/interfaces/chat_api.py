"""
Request Layer interface.

Stateless request/response calls against the chat backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from chatsync.models.chat import Chat, DirectChatCreate, GroupChatCreate, Label, LabelCreate
from chatsync.models.message import MessageRecord, MessageSend


class IChatApi(ABC):
    """Abstract interface for the chat backend's request/response endpoints."""

    @abstractmethod
    async def list_chats(self) -> list[Chat]:
        """List chats of the current user."""
        pass

    @abstractmethod
    async def get_chat(self, chat_id: str) -> Chat:
        """Fetch one chat (direct or group) with its participants."""
        pass

    @abstractmethod
    async def list_messages(self, chat_id: str, search: Optional[str] = None) -> list[MessageRecord]:
        """List messages of a chat, ascending by creation time."""
        pass

    @abstractmethod
    async def get_message(self, message_id: str) -> MessageRecord:
        """Fetch a single message by id."""
        pass

    @abstractmethod
    async def send_message(self, message: MessageSend) -> MessageRecord:
        """Store a message and return it with its stable id."""
        pass

    @abstractmethod
    async def mark_read(self, chat_id: str, message_ids: list[str]) -> bool:
        """Report a batch of messages as read."""
        pass

    @abstractmethod
    async def create_direct_chat(self, data: DirectChatCreate) -> Chat:
        """Create (or return the existing) direct chat with another user."""
        pass

    @abstractmethod
    async def create_group(self, data: GroupChatCreate) -> Chat:
        """Create a group chat."""
        pass

    @abstractmethod
    async def list_labels(self) -> list[Label]:
        """List labels available to the user."""
        pass

    @abstractmethod
    async def create_label(self, data: LabelCreate) -> Label:
        """Create a label."""
        pass

    @abstractmethod
    async def list_chat_labels(self, chat_id: str) -> list[Label]:
        """List labels applied to a chat."""
        pass

    @abstractmethod
    async def assign_label(self, chat_id: str, label_id: str) -> None:
        """Apply a label to a chat."""
        pass

    @abstractmethod
    async def remove_label(self, chat_id: str, label_id: str) -> None:
        """Remove a label from a chat."""
        pass
