"""
Unit tests for the SQLite cache repository.

Runs against a real SQLite file per test.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from chatsync.core.exceptions import CacheError
from chatsync.infrastructure.local.cache_repository import SqliteCacheRepository
from chatsync.models.chat import Chat, Label, LastMessage
from chatsync.models.message import ConfirmedId, Message, ProvisionalId

T0 = datetime(2025, 1, 24, 9, 0, tzinfo=timezone.utc)


def make_message(message_id, chat_id="c-1", minutes=0, provisional=False, text="hi"):
    mid = ProvisionalId(value=int(message_id)) if provisional else ConfirmedId(value=message_id)
    return Message(
        id=mid,
        chat_id=chat_id,
        sender_id="u-1",
        text=text,
        created_at=T0 + timedelta(minutes=minutes),
    )


def make_chat(chat_id, unread=0):
    return Chat(
        id=chat_id,
        name=f"Chat {chat_id}",
        unread=unread,
        labels=[Label(id="l-1", name="VIP", color="#fff")],
        last_message=LastMessage(id="m-1", content="hi", created_at=T0, sender_id="u-1"),
    )


# ============================================
# Put / get
# ============================================


class TestPutAndGet:
    """Tests for writes and indexed reads."""

    @pytest.mark.asyncio
    async def test_chats_round_trip(self, cache):
        """Stored chats come back with nested data intact."""
        await cache.put_many([make_chat("c-1", unread=2), make_chat("c-2")])

        chats = {chat.id: chat for chat in await cache.get_all_chats()}

        assert set(chats) == {"c-1", "c-2"}
        assert chats["c-1"].unread == 2
        assert chats["c-1"].labels[0].name == "VIP"
        assert chats["c-1"].last_message.created_at == T0

    @pytest.mark.asyncio
    async def test_messages_indexed_by_chat_and_ordered(self, cache):
        await cache.put_many(
            [
                make_message("m-2", minutes=2),
                make_message("m-1", minutes=1),
                make_message("m-9", chat_id="c-2"),
            ]
        )

        messages = await cache.get_messages_by_chat("c-1")

        assert [m.id.value for m in messages] == ["m-1", "m-2"]
        assert messages[0].created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_put_is_idempotent_upsert(self, cache):
        """Writing the same id twice keeps one row with the latest data."""
        await cache.put(make_message("m-1", text="first"))
        await cache.put(make_message("m-1", text="second"))

        messages = await cache.get_messages_by_chat("c-1")

        assert len(messages) == 1
        assert messages[0].text == "second"

    @pytest.mark.asyncio
    async def test_provisional_and_confirmed_ids_do_not_collide(self, cache):
        await cache.put_many([make_message("1"), make_message("1", provisional=True)])

        messages = await cache.get_messages_by_chat("c-1")

        assert {type(m.id) for m in messages} == {ConfirmedId, ProvisionalId}

    @pytest.mark.asyncio
    async def test_put_many_empty_is_noop(self, cache):
        await cache.put_many([])
        assert await cache.get_all_chats() == []


# ============================================
# Delete / clear
# ============================================


class TestDelete:
    """Tests for removal."""

    @pytest.mark.asyncio
    async def test_delete_provisional(self, cache):
        await cache.put_many([make_message("3", provisional=True), make_message("m-1")])

        assert await cache.delete(ProvisionalId(value=3)) is True
        assert await cache.delete(ProvisionalId(value=3)) is False

        remaining = await cache.get_messages_by_chat("c-1")
        assert [m.id.value for m in remaining] == ["m-1"]

    @pytest.mark.asyncio
    async def test_delete_chat_removes_its_messages(self, cache):
        await cache.put_many([make_chat("c-1"), make_message("m-1"), make_message("m-2", chat_id="c-2")])

        assert await cache.delete_chat("c-1") is True

        assert await cache.get_all_chats() == []
        assert await cache.get_messages_by_chat("c-1") == []
        assert len(await cache.get_messages_by_chat("c-2")) == 1

    @pytest.mark.asyncio
    async def test_clear(self, cache):
        await cache.put_many([make_chat("c-1"), make_message("m-1")])

        await cache.clear()

        assert await cache.get_all_chats() == []
        assert await cache.get_messages_by_chat("c-1") == []


# ============================================
# Failures
# ============================================


class TestFailures:
    """Storage failures surface as CacheError."""

    @pytest.mark.asyncio
    async def test_storage_error_wrapped(self):
        def factory():
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        repository = SqliteCacheRepository(session_factory=factory)

        with pytest.raises(CacheError):
            await repository.put(make_message("m-1"))
        with pytest.raises(CacheError):
            await repository.get_all_chats()

    @pytest.mark.asyncio
    async def test_uncacheable_entity_rejected(self, cache):
        with pytest.raises(TypeError):
            await cache.put(MagicMock())
