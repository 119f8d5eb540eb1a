"""Abstract interfaces for infrastructure abstraction."""

from chatsync.interfaces.cache_repository import ICacheRepository
from chatsync.interfaces.chat_api import IChatApi
from chatsync.interfaces.update_source import IUpdateListener, IUpdateSource

__all__ = [
    "IChatApi",
    "ICacheRepository",
    "IUpdateSource",
    "IUpdateListener",
]
