"""
SQLite implementation of the local cache repository.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from chatsync.core.exceptions import CacheError
from chatsync.core.logger import setup_logger
from chatsync.infrastructure.local.database import (
    CachedChatORM,
    CachedMessageORM,
    get_session_factory,
)
from chatsync.interfaces.cache_repository import CacheEntity, ICacheRepository
from chatsync.models.chat import Chat
from chatsync.models.message import Message, MessageId, ProvisionalId
from chatsync.utils.datetime_utils import ensure_utc

logger = setup_logger(__name__)


def _naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite stores DateTime without zone; keep every row in UTC.
    if dt is None:
        return None
    return ensure_utc(dt).replace(tzinfo=None)


def _message_key(message_id: MessageId) -> tuple[str, bool]:
    return str(message_id.value), isinstance(message_id, ProvisionalId)


class SqliteCacheRepository(ICacheRepository):
    """SQLite implementation of the local cache."""

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or get_session_factory()

    def _to_orm(self, entity: CacheEntity) -> CachedChatORM | CachedMessageORM:
        if isinstance(entity, Message):
            key, provisional = _message_key(entity.id)
            return CachedMessageORM(
                id=key,
                provisional=provisional,
                chat_id=entity.chat_id,
                created_at=_naive_utc(entity.created_at),
                payload=entity.model_dump(mode="json"),
            )
        if isinstance(entity, Chat):
            return CachedChatORM(
                id=entity.id,
                activity_at=_naive_utc(entity.activity_at),
                payload=entity.model_dump(mode="json"),
            )
        raise TypeError(f"Cannot cache {type(entity).__name__}")

    async def put(self, entity: CacheEntity) -> None:
        await self.put_many([entity])

    async def put_many(self, entities: Iterable[CacheEntity]) -> None:
        orms = [self._to_orm(entity) for entity in entities]
        if not orms:
            return
        try:
            async with self._session_factory() as session:
                for orm in orms:
                    await session.merge(orm)
                await session.commit()
        except SQLAlchemyError as e:
            raise CacheError(f"Failed to write {len(orms)} cache entries", details=str(e)) from e

    async def get_all_chats(self) -> list[Chat]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(CachedChatORM))
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise CacheError("Failed to read cached chats", details=str(e)) from e

        chats = []
        for orm in rows:
            try:
                chats.append(Chat.model_validate(orm.payload))
            except PydanticValidationError as e:
                logger.warning(f"Skipping undecodable cached chat {orm.id}: {e}")
        return chats

    async def get_messages_by_chat(self, chat_id: str) -> list[Message]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(CachedMessageORM)
                    .where(CachedMessageORM.chat_id == chat_id)
                    .order_by(CachedMessageORM.created_at)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise CacheError(f"Failed to read cached messages for chat {chat_id}", details=str(e)) from e

        messages = []
        for orm in rows:
            try:
                messages.append(Message.model_validate(orm.payload))
            except PydanticValidationError as e:
                logger.warning(f"Skipping undecodable cached message {orm.id}: {e}")
        return messages

    async def delete(self, message_id: MessageId) -> bool:
        key, provisional = _message_key(message_id)
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(CachedMessageORM).where(
                        CachedMessageORM.id == key,
                        CachedMessageORM.provisional == provisional,
                    )
                )
                orm = result.scalar_one_or_none()
                if not orm:
                    return False
                await session.delete(orm)
                await session.commit()
                return True
        except SQLAlchemyError as e:
            raise CacheError(f"Failed to delete cached message {message_id}", details=str(e)) from e

    async def delete_chat(self, chat_id: str) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(delete(CachedMessageORM).where(CachedMessageORM.chat_id == chat_id))
                result = await session.execute(delete(CachedChatORM).where(CachedChatORM.id == chat_id))
                await session.commit()
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise CacheError(f"Failed to delete cached chat {chat_id}", details=str(e)) from e

    async def clear(self) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(delete(CachedMessageORM))
                await session.execute(delete(CachedChatORM))
                await session.commit()
        except SQLAlchemyError as e:
            raise CacheError("Failed to clear cache", details=str(e)) from e
        logger.info("Cleared local cache")
