"""
Interval-polling update source.

Re-fetches the chat list (global scope) and the open chat's messages
(chat scope) on an APScheduler interval and diffs each result against the
previous one to synthesize the same events the push stream would deliver.
The first successful poll of a scope only records a baseline.
"""

from __future__ import annotations

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from chatsync.core.config import Settings
from chatsync.core.exceptions import AuthenticationError, AuthorizationError, ChatSyncError
from chatsync.core.logger import setup_logger
from chatsync.infrastructure.realtime.base import BaseUpdateSource
from chatsync.interfaces.chat_api import IChatApi
from chatsync.interfaces.update_source import IUpdateListener
from chatsync.models.chat import Chat
from chatsync.models.enums import ConnectionState, SubscriptionScope
from chatsync.models.events import ChatListChangedEvent, MessageReadEvent, NewMessageEvent
from chatsync.utils.datetime_utils import now_utc

logger = setup_logger(__name__)

GLOBAL_JOB_ID = "poll:global"


def chat_job_id(chat_id: str) -> str:
    return f"poll:chat:{chat_id}"


def _chat_signature(chat: Chat) -> tuple:
    last_id = chat.last_message.id if chat.last_message else None
    labels = tuple(sorted(label.id for label in chat.labels))
    return (last_id, chat.unread, chat.name, labels)


class PollingUpdateSource(BaseUpdateSource):
    """Update source that polls the Request Layer."""

    def __init__(
        self,
        settings: Settings,
        api: IChatApi,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        super().__init__(settings)
        self._api = api
        self._scheduler = scheduler or AsyncIOScheduler()
        self._chat_snapshot: Optional[dict[str, tuple]] = None
        self._message_snapshot: Optional[dict[str, bool]] = None
        self._resync_pending: set[SubscriptionScope] = set()

    async def start(self, listener: IUpdateListener) -> None:
        self._listener = listener
        await self._set_state(ConnectionState.CONNECTING)
        self._add_job(self.poll_global, GLOBAL_JOB_ID)
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info(f"Polling every {self._settings.POLL_INTERVAL_SECONDS}s")

    async def open_chat(self, chat_id: str) -> None:
        await self.close_chat()
        self._chat_id = chat_id
        self._add_job(self.poll_chat, chat_job_id(chat_id))

    async def close_chat(self) -> None:
        if self._chat_id is not None:
            self._remove_job(chat_job_id(self._chat_id))
        self._chat_id = None
        self._message_snapshot = None
        self._resync_pending.discard(SubscriptionScope.CHAT)
        self._forget(SubscriptionScope.CHAT)

    async def stop(self) -> None:
        await self.close_chat()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._chat_snapshot = None
        self._forget(SubscriptionScope.GLOBAL)
        await self._set_state(ConnectionState.CLOSED)

    def _job_id(self, scope: SubscriptionScope) -> Optional[str]:
        if scope == SubscriptionScope.GLOBAL:
            return GLOBAL_JOB_ID
        return chat_job_id(self._chat_id) if self._chat_id else None

    def _remove_job(self, job_id: Optional[str]) -> None:
        if job_id and self._scheduler.get_job(job_id):
            self._scheduler.remove_job(job_id)

    def _add_job(self, func, job_id: str) -> None:
        self._scheduler.add_job(
            func,
            IntervalTrigger(seconds=self._settings.POLL_INTERVAL_SECONDS),
            id=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=now_utc(),
        )

    async def _poll_failed(self, scope: SubscriptionScope, error: ChatSyncError) -> None:
        if isinstance(error, (AuthenticationError, AuthorizationError)):
            logger.error(f"{scope.value} poll denied: {error.message}")
            self._remove_job(self._job_id(scope))
            self._forget(scope)
            self._resync_pending.discard(scope)
            await self._set_state(ConnectionState.CLOSED)
            return
        self._resync_pending.add(scope)
        await self._subscription_failed(scope, error)

    async def _poll_ok(self, scope: SubscriptionScope, chat_id: Optional[str]) -> bool:
        """Mark a poll healthy. Returns True if it resynced instead of diffing."""
        resync = scope in self._resync_pending
        self._resync_pending.discard(scope)
        await self._subscription_ok(scope, chat_id, resync)
        return resync

    async def poll_global(self) -> None:
        """Fetch the chat list and emit ChatListChanged if it differs."""
        try:
            chats = await self._api.list_chats()
        except ChatSyncError as e:
            await self._poll_failed(SubscriptionScope.GLOBAL, e)
            return

        snapshot = {chat.id: _chat_signature(chat) for chat in chats}
        previous, self._chat_snapshot = self._chat_snapshot, snapshot
        if await self._poll_ok(SubscriptionScope.GLOBAL, None) or previous is None:
            return

        changed = [cid for cid in snapshot if previous.get(cid) != snapshot[cid]]
        changed += [cid for cid in previous if cid not in snapshot]
        if changed:
            logger.debug(f"Chat list changed: {changed}")
            await self._emit(ChatListChangedEvent(chat_id=changed[0]))

    async def poll_chat(self) -> None:
        """Fetch the open chat's messages and emit new/read events."""
        chat_id = self._chat_id
        if chat_id is None:
            return
        try:
            records = await self._api.list_messages(chat_id)
        except ChatSyncError as e:
            if chat_id != self._chat_id:
                logger.debug(f"Discarding poll failure for chat {chat_id}: chat switched")
                return
            await self._poll_failed(SubscriptionScope.CHAT, e)
            return
        if chat_id != self._chat_id:
            logger.debug(f"Discarding poll result for chat {chat_id}: chat switched")
            return

        snapshot = {record.id: record.read for record in records}
        previous, self._message_snapshot = self._message_snapshot, snapshot
        if await self._poll_ok(SubscriptionScope.CHAT, chat_id) or previous is None:
            return

        for record in records:
            if record.id not in previous:
                await self._emit(NewMessageEvent(chat_id=chat_id, message_id=record.id, message=record))
            elif record.read and not previous[record.id]:
                await self._emit(
                    MessageReadEvent(
                        chat_id=chat_id,
                        message_id=record.id,
                        read_at=record.read_at or now_utc(),
                    )
                )
