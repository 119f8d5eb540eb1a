"""
Local cache repository interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Union

from chatsync.models.chat import Chat
from chatsync.models.message import Message, MessageId

CacheEntity = Union[Chat, Message]


class ICacheRepository(ABC):
    """
    Durable mirror of chats and messages.

    The cache is derived data: server-confirmed records always overwrite it.
    Implementations raise CacheError on failure; callers decide whether to
    swallow it.
    """

    @abstractmethod
    async def put(self, entity: CacheEntity) -> None:
        """Insert or replace a chat or message by id."""
        pass

    @abstractmethod
    async def put_many(self, entities: Iterable[CacheEntity]) -> None:
        """Insert or replace several entities in one transaction."""
        pass

    @abstractmethod
    async def get_all_chats(self) -> list[Chat]:
        """Get every cached chat."""
        pass

    @abstractmethod
    async def get_messages_by_chat(self, chat_id: str) -> list[Message]:
        """Get cached messages of a chat, ascending by creation time."""
        pass

    @abstractmethod
    async def delete(self, message_id: MessageId) -> bool:
        """Delete a cached message. Returns False if it was not cached."""
        pass

    @abstractmethod
    async def delete_chat(self, chat_id: str) -> bool:
        """Delete a cached chat and its messages."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Remove all cached data."""
        pass
