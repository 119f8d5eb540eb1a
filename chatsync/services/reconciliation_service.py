"""
Reconciliation engine.

Holds the canonical in-memory view of chats and messages and merges the
three input streams into it: bulk loads, pushed events and local
optimistic sends. Every mutation goes through this class; the chat and
message lists are re-derived (ordering, last message, unread count) after
each one and written behind to the local cache.

Mutations are synchronous so they can be applied the instant the caller
has the data. Cache writes are queued as background tasks, serialized, and
any CacheError they raise is logged and dropped.
"""

from __future__ import annotations

import asyncio
import itertools
from datetime import date, datetime
from typing import Awaitable, Callable, Iterable, Optional, Union

from chatsync.core.config import Settings, get_settings
from chatsync.core.exceptions import CacheError, ChatSyncError, ValidationError
from chatsync.core.logger import setup_logger
from chatsync.interfaces.cache_repository import ICacheRepository
from chatsync.interfaces.chat_api import IChatApi
from chatsync.models.chat import Chat, Label, LastMessage
from chatsync.models.enums import MessageType, ReadStatus
from chatsync.models.events import ChatListChangedEvent, MessageReadEvent, NewMessageEvent, SyncEvent
from chatsync.models.message import ConfirmedId, Message, MessageGroup, MessageId, ProvisionalId
from chatsync.utils.datetime_utils import UTC, format_date_label, local_date, now_utc

logger = setup_logger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)


def chat_sort_key(chat: Chat) -> datetime:
    return chat.activity_at or _EPOCH


def _as_message_id(message_id: Union[MessageId, str]) -> MessageId:
    if isinstance(message_id, str):
        return ConfirmedId(value=message_id)
    return message_id


class ReconciliationEngine:
    """
    Canonical, ordered, duplicate-free view of chats and messages.

    A chat is "loaded" when its message list is held in memory (normally
    only the open chat). Unread counts of loaded chats are recomputed from
    their messages; unloaded chats are adjusted incrementally from events.
    """

    def __init__(
        self,
        user_id: str,
        cache: Optional[ICacheRepository] = None,
        api: Optional[IChatApi] = None,
        settings: Optional[Settings] = None,
    ):
        self._user_id = user_id
        self._cache = cache
        self._api = api
        self._settings = settings or get_settings()
        self._chats: dict[str, Chat] = {}
        self._chat_list: list[Chat] = []
        self._messages: dict[str, list[Message]] = {}
        # Message ids already counted for unloaded chats since the last
        # authoritative chat-list load.
        self._counted: dict[str, set[str]] = {}
        self._provisional_ids = itertools.count(1)
        self._cache_lock = asyncio.Lock()
        self._pending_writes: set[asyncio.Task] = set()

    # ===========================================
    # Read access
    # ===========================================

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def chats(self) -> list[Chat]:
        """Chats, most recent activity first."""
        return list(self._chat_list)

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        return self._chats.get(chat_id)

    def is_loaded(self, chat_id: str) -> bool:
        return chat_id in self._messages

    def messages(self, chat_id: str) -> list[Message]:
        """Messages of a loaded chat in display order (empty if not loaded)."""
        return list(self._messages.get(chat_id, []))

    def find_message(self, message_id: Union[MessageId, str]) -> Optional[Message]:
        located = self._locate(_as_message_id(message_id))
        if located is None:
            return None
        chat_id, index = located
        return self._messages[chat_id][index]

    def group_messages_by_date(self, chat_id: str, today: Optional[date] = None) -> list[MessageGroup]:
        """Bucket a chat's messages by calendar date in the display timezone."""
        tz = self._settings.DISPLAY_TIMEZONE
        today = today or local_date(now_utc(), tz)
        groups: list[MessageGroup] = []
        for message in self._messages.get(chat_id, []):
            day = local_date(message.created_at, tz)
            if not groups or groups[-1].date != day:
                groups.append(MessageGroup(date=day, label=format_date_label(day, today)))
            groups[-1].messages.append(message)
        return groups

    # ===========================================
    # Message mutations
    # ===========================================

    def apply_bulk_load(self, chat_id: str, messages: Iterable[Message]) -> list[Message]:
        """
        Replace a chat's working set with a freshly fetched list.

        In-flight provisional messages of the chat survive the reload. A
        message already marked read locally stays read even if the fetched
        copy lags behind.
        """
        current = {m.id.value: m for m in self._messages.get(chat_id, []) if not m.is_provisional}
        incoming: dict[str, Message] = {}
        for message in messages:
            if message.is_provisional:
                continue
            if message.chat_id != chat_id:
                logger.warning(f"Bulk load for chat {chat_id} contained message {message.id} of chat {message.chat_id}")
                continue
            previous = current.get(message.id.value)
            if previous is not None and previous.status.is_after(message.status):
                message = message.with_status(previous.status, previous.read_at)
            incoming[message.id.value] = message

        in_flight = [m for m in self._messages.get(chat_id, []) if m.is_provisional]
        self._messages[chat_id] = self._ordered(list(incoming.values()) + in_flight)
        self._counted.pop(chat_id, None)
        logger.debug(f"Bulk loaded {len(incoming)} messages for chat {chat_id} ({len(in_flight)} in flight)")

        confirmed = list(incoming.values())
        self._write_behind("bulk load", lambda: self._cache.put_many(confirmed))
        self._refresh_chat(chat_id)
        return self.messages(chat_id)

    def apply_optimistic_send(
        self,
        chat_id: str,
        text: str,
        message_type: MessageType = MessageType.TEXT,
        reply_to_message_id: Optional[str] = None,
    ) -> Message:
        """Append a provisional message for immediate rendering. Never blocks."""
        if not text or not text.strip():
            raise ValidationError("Cannot send an empty message")
        message = Message(
            id=ProvisionalId(value=next(self._provisional_ids)),
            chat_id=chat_id,
            sender_id=self._user_id,
            text=text,
            message_type=message_type,
            created_at=now_utc(),
            reply_to_message_id=reply_to_message_id,
        )
        self._messages[chat_id] = self._ordered(self._messages.get(chat_id, []) + [message])
        self._write_behind("optimistic send", lambda: self._cache.put(message))
        self._refresh_chat(chat_id)
        return message

    def apply_confirmed_message(
        self,
        chat_id: str,
        message: Message,
        provisional_id: Optional[ProvisionalId] = None,
    ) -> Message:
        """
        Merge a durable message reported by the server.

        Resolution order:
        1. Id already present: drop ``provisional_id`` if given, else no-op.
        2. ``provisional_id`` given: replace exactly that entry.
        3. Otherwise replace a provisional entry by the same sender, the
           oldest one with identical text if any, else the oldest.
        4. Otherwise append.
        """
        if message.is_provisional:
            raise ValidationError(f"Confirmed message expected, got {message.id}")
        if message.chat_id != chat_id:
            message = message.model_copy(update={"chat_id": chat_id})

        messages = self._messages.get(chat_id)
        if messages is None:
            if provisional_id is not None:
                self._write_behind("provisional cleanup", lambda: self._cache.delete(provisional_id))
            self._count_unloaded(chat_id, message)
            return message

        existing = self._index_of(messages, message.id)
        if existing is not None:
            stored = messages[existing]
            if message.status.is_after(stored.status):
                stored = stored.with_status(message.status, message.read_at)
                messages[existing] = stored
                self._write_behind("status merge", lambda: self._cache.put(stored))
            if provisional_id is not None:
                self._drop(chat_id, provisional_id)
            self._refresh_chat(chat_id)
            return stored

        target = None
        if provisional_id is not None:
            target = self._index_of(messages, provisional_id)
        else:
            target = self._match_provisional(messages, message)

        if target is None:
            messages.append(message)
        else:
            replaced = messages[target].id
            messages[target] = message
            logger.debug(f"Confirmed {replaced} as {message.id} in chat {chat_id}")
            self._write_behind("provisional cleanup", lambda: self._cache.delete(replaced))

        self._messages[chat_id] = self._ordered(messages)
        self._write_behind("confirmed message", lambda: self._cache.put(message))
        self._refresh_chat(chat_id)
        return message

    def apply_read_update(
        self,
        message_id: Union[MessageId, str],
        status: ReadStatus,
        read_at: Optional[datetime] = None,
    ) -> bool:
        """
        Move a message's status forward.

        Returns False (and changes nothing) for unknown or provisional
        messages and for transitions that are not strictly forward.
        """
        message_id = _as_message_id(message_id)
        if isinstance(message_id, ProvisionalId):
            return False
        located = self._locate(message_id)
        if located is None:
            return False
        chat_id, index = located
        current = self._messages[chat_id][index]
        if not status.is_after(current.status):
            return False

        updated = current.with_status(status, read_at or (now_utc() if status == ReadStatus.READ else None))
        self._messages[chat_id][index] = updated
        self._write_behind("read update", lambda: self._cache.put(updated))
        self._refresh_chat(chat_id)
        return True

    def remove_provisional(self, provisional_id: ProvisionalId) -> bool:
        """Delete a failed optimistic send from memory and cache."""
        for chat_id in list(self._messages):
            if self._drop(chat_id, provisional_id):
                self._refresh_chat(chat_id)
                return True
        self._write_behind("provisional cleanup", lambda: self._cache.delete(provisional_id))
        return False

    def unload_chat(self, chat_id: str) -> None:
        """Release a chat's in-memory message list; it remains cached."""
        self._messages.pop(chat_id, None)

    # ===========================================
    # Chat list mutations
    # ===========================================

    def apply_chat_list(self, chats: Iterable[Chat]) -> list[Chat]:
        """Replace the chat list with a server snapshot."""
        fresh = {chat.id: chat for chat in chats}
        removed = [chat_id for chat_id in self._chats if chat_id not in fresh]
        self._chats = fresh
        self._counted.clear()
        for chat_id in fresh:
            if chat_id in self._messages:
                self._refresh_chat(chat_id, reorder=False, persist=False)
        self._reorder_chats()

        snapshot = list(self._chats.values())
        self._write_behind("chat list", lambda: self._cache.put_many(snapshot))
        for chat_id in removed:
            self._write_behind("chat removal", lambda chat_id=chat_id: self._cache.delete_chat(chat_id))
        return self.chats

    def upsert_chat(self, chat: Chat) -> Chat:
        """Insert or replace a single chat (e.g. one just created)."""
        self._chats[chat.id] = chat
        self._counted.pop(chat.id, None)
        if chat.id in self._messages:
            self._refresh_chat(chat.id, reorder=False, persist=False)
        self._reorder_chats()
        stored = self._chats[chat.id]
        self._write_behind("chat upsert", lambda: self._cache.put(stored))
        return stored

    def apply_chat_details(self, details: Chat) -> Chat:
        """
        Merge a single-chat fetch into the known chat.

        The detail endpoint carries no unread count, last message or labels,
        so those keep their current values.
        """
        known = self._chats.get(details.id)
        if known is None:
            return self.upsert_chat(details)
        merged = known.model_copy(
            update={
                "name": details.name,
                "description": details.description,
                "is_group": details.is_group,
                "participants": list(details.participants) or known.participants,
                "created_at": details.created_at or known.created_at,
                "updated_at": details.updated_at or known.updated_at,
            }
        )
        return self.upsert_chat(merged)

    def set_chat_labels(self, chat_id: str, labels: list[Label]) -> Optional[Chat]:
        chat = self._chats.get(chat_id)
        if chat is None:
            return None
        updated = chat.model_copy(update={"labels": list(labels)})
        self._chats[chat_id] = updated
        self._reorder_chats()
        self._write_behind("chat labels", lambda: self._cache.put(updated))
        return updated

    # ===========================================
    # Events
    # ===========================================

    async def handle_event(self, event: SyncEvent) -> None:
        """
        Apply one normalized event.

        Failures to resolve an event (e.g. the referenced message cannot be
        fetched) are logged and the event is dropped.
        """
        try:
            if isinstance(event, NewMessageEvent):
                await self._on_new_message(event)
            elif isinstance(event, MessageReadEvent):
                self.apply_read_update(event.message_id, ReadStatus.READ, event.read_at)
            elif isinstance(event, ChatListChangedEvent):
                await self.refresh_chat_list()
            else:
                logger.warning(f"Dropping unhandled event {type(event).__name__}")
        except ChatSyncError as e:
            logger.warning(f"Dropping {type(event).__name__}: {e.message}")

    async def _on_new_message(self, event: NewMessageEvent) -> None:
        if event.chat_id not in self._chats:
            await self.refresh_chat_list()
            if event.chat_id not in self._chats:
                logger.warning(f"New message for unknown chat {event.chat_id}")
                return

        confirmed = ConfirmedId(value=event.message_id)
        if self._already_seen(event.chat_id, confirmed):
            logger.debug(f"Ignoring repeated new message {event.message_id}")
            return

        record = event.message
        if record is None:
            if self._api is None:
                raise ChatSyncError(f"Cannot resolve message {event.message_id} without a Request Layer")
            record = await self._api.get_message(event.message_id)
        self.apply_confirmed_message(event.chat_id, record.to_message(event.chat_id))

    async def refresh_chat_list(self) -> list[Chat]:
        if self._api is None:
            raise ChatSyncError("Cannot refresh the chat list without a Request Layer")
        return self.apply_chat_list(await self._api.list_chats())

    # ===========================================
    # Cache hydration
    # ===========================================

    async def hydrate_chats(self) -> list[Chat]:
        """Load the chat list from the cache if nothing fresher is held."""
        if self._cache is None or self._chats:
            return self.chats
        try:
            cached = await self._cache.get_all_chats()
        except CacheError as e:
            logger.warning(f"Cache read failed: {e.message}")
            return self.chats
        if not self._chats:
            self._chats = {chat.id: chat for chat in cached}
            self._reorder_chats()
        return self.chats

    async def hydrate_messages(
        self, chat_id: str, is_current: Optional[Callable[[], bool]] = None
    ) -> list[Message]:
        """
        Load a chat's messages from the cache.

        Cached provisional rows belong to sends whose outcome is unknown;
        they are discarded and deleted. When ``is_current`` returns False
        after the cache read, nothing is loaded and the chat summary is
        left as the server reported it.
        """
        if self._cache is None or chat_id in self._messages:
            return self.messages(chat_id)
        try:
            cached = await self._cache.get_messages_by_chat(chat_id)
        except CacheError as e:
            logger.warning(f"Cache read failed: {e.message}")
            return []

        if is_current is not None and not is_current():
            logger.debug(f"Discarding cached messages for chat {chat_id}: no longer selected")
            return []
        stale = [m.id for m in cached if m.is_provisional]
        for message_id in stale:
            self._write_behind("stale provisional", lambda message_id=message_id: self._cache.delete(message_id))
        if chat_id in self._messages:
            return self.messages(chat_id)
        self._messages[chat_id] = self._ordered([m for m in cached if not m.is_provisional])
        self._refresh_chat(chat_id, persist=False)
        return self.messages(chat_id)

    async def flush(self) -> None:
        """Wait for queued cache writes to finish."""
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes))

    # ===========================================
    # Internals
    # ===========================================

    def _ordered(self, messages: list[Message]) -> list[Message]:
        # Provisional timestamps come from the local clock, so they sort
        # after every confirmed message of the same day.
        tz = self._settings.DISPLAY_TIMEZONE
        return sorted(
            messages,
            key=lambda m: (
                local_date(m.created_at, tz),
                m.is_provisional,
                m.created_at,
                m.id.value if m.is_provisional else 0,
            ),
        )

    @staticmethod
    def _index_of(messages: list[Message], message_id: MessageId) -> Optional[int]:
        for index, message in enumerate(messages):
            if message.id == message_id:
                return index
        return None

    def _locate(self, message_id: MessageId) -> Optional[tuple[str, int]]:
        for chat_id, messages in self._messages.items():
            index = self._index_of(messages, message_id)
            if index is not None:
                return chat_id, index
        return None

    @staticmethod
    def _match_provisional(messages: list[Message], message: Message) -> Optional[int]:
        candidates = [
            (m.id.value, index)
            for index, m in enumerate(messages)
            if m.is_provisional and m.sender_id == message.sender_id
        ]
        if not candidates:
            return None
        same_text = [c for c in candidates if messages[c[1]].text == message.text]
        return min(same_text or candidates)[1]

    def _drop(self, chat_id: str, provisional_id: ProvisionalId) -> bool:
        messages = self._messages.get(chat_id, [])
        index = self._index_of(messages, provisional_id)
        if index is None:
            return False
        del messages[index]
        self._write_behind("provisional removal", lambda: self._cache.delete(provisional_id))
        return True

    def _already_seen(self, chat_id: str, message_id: ConfirmedId) -> bool:
        if chat_id in self._messages:
            return self._index_of(self._messages[chat_id], message_id) is not None
        return message_id.value in self._counted.get(chat_id, set())

    def _count_unloaded(self, chat_id: str, message: Message) -> None:
        """Adjust an unloaded chat's summary for one new message, once per id."""
        chat = self._chats.get(chat_id)
        if chat is None:
            logger.debug(f"Message {message.id} for unknown chat {chat_id}")
            return
        seen = self._counted.setdefault(chat_id, set())
        if message.id.value in seen or (chat.last_message and chat.last_message.id == message.id.value):
            return
        seen.add(message.id.value)

        update = {}
        if message.is_unread_for(self._user_id):
            update["unread"] = chat.unread + 1
        if chat.last_message is None or message.created_at >= chat.last_message.created_at:
            update["last_message"] = LastMessage.from_message(message)
        if update:
            self._chats[chat_id] = chat.model_copy(update=update)
            self._reorder_chats()
            stored = self._chats[chat_id]
            self._write_behind("chat summary", lambda: self._cache.put(stored))

    def _refresh_chat(self, chat_id: str, reorder: bool = True, persist: bool = True) -> None:
        """Re-derive unread and last message of a loaded chat."""
        chat = self._chats.get(chat_id)
        messages = self._messages.get(chat_id)
        if chat is None or messages is None:
            return
        update = {"unread": sum(1 for m in messages if not m.is_provisional and m.is_unread_for(self._user_id))}
        confirmed = [m for m in messages if not m.is_provisional]
        if confirmed:
            update["last_message"] = LastMessage.from_message(confirmed[-1])
        updated = chat.model_copy(update=update)
        if updated == chat:
            return
        self._chats[chat_id] = updated
        if reorder:
            self._reorder_chats()
        if persist:
            self._write_behind("chat summary", lambda: self._cache.put(updated))

    def _reorder_chats(self) -> None:
        self._chat_list = sorted(self._chats.values(), key=chat_sort_key, reverse=True)

    def _write_behind(self, description: str, operation: Callable[[], Awaitable[object]]) -> None:
        if self._cache is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No event loop; skipping cache write for {description}")
            return

        async def run() -> None:
            async with self._cache_lock:
                try:
                    await operation()
                except CacheError as e:
                    logger.warning(f"Cache write for {description} failed: {e.message}")

        task = loop.create_task(run())
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)
