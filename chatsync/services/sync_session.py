"""
Chat sync session.

Ties the Request Layer, Local Cache, Update Source, Reconciliation Engine
and Read-Receipt Tracker together for one authenticated user, and owns
their lifecycle. The session is the update source's listener.

Failures of the UI-driven flows (loading, sending, read reports, resync)
do not raise; they are recorded in ``last_error`` for display. Operations
that return a created resource (chats, labels) raise instead.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Sequence

from chatsync.core.config import Settings, get_settings
from chatsync.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ChatSyncError,
    InfrastructureError,
    ValidationError,
)
from chatsync.core.logger import setup_logger
from chatsync.interfaces.cache_repository import ICacheRepository
from chatsync.interfaces.chat_api import IChatApi
from chatsync.interfaces.update_source import IUpdateListener, IUpdateSource
from chatsync.models.chat import Chat, DirectChatCreate, GroupChatCreate, Label, LabelCreate
from chatsync.models.enums import ConnectionState, MessageType
from chatsync.models.events import SyncEvent
from chatsync.models.message import Message, MessageGroup, MessageSend
from chatsync.models.session import SessionCredentials, SessionError
from chatsync.services.read_receipt_tracker import ReadReceiptTracker
from chatsync.services.reconciliation_service import ReconciliationEngine

logger = setup_logger(__name__)

Closer = Callable[[], Awaitable[object]]


class ChatSyncSession(IUpdateListener):
    """Client-side sync state for one authenticated user."""

    def __init__(
        self,
        credentials: SessionCredentials,
        api: IChatApi,
        update_source: IUpdateSource,
        cache: Optional[ICacheRepository] = None,
        settings: Optional[Settings] = None,
        closers: Sequence[Closer] = (),
    ):
        self._settings = settings or get_settings()
        self._credentials = credentials
        self._api = api
        self._source = update_source
        self._closers = list(closers)
        self.engine = ReconciliationEngine(credentials.user_id, cache=cache, api=api, settings=self._settings)
        self.tracker = ReadReceiptTracker(self.engine, api, settings=self._settings, on_error=self._report_error)
        self._selected: Optional[str] = None
        self._search_results: list[Message] = []
        self._last_error: Optional[SessionError] = None
        self._connection_state = ConnectionState.CLOSED
        self._started = False

    async def __aenter__(self) -> "ChatSyncSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ===========================================
    # State
    # ===========================================

    @property
    def user_id(self) -> str:
        return self._credentials.user_id

    @property
    def selected_chat_id(self) -> Optional[str]:
        return self._selected

    @property
    def chats(self) -> list[Chat]:
        return self.engine.chats

    @property
    def messages(self) -> list[Message]:
        """Messages of the selected chat in display order."""
        if self._selected is None:
            return []
        return self.engine.messages(self._selected)

    def message_groups(self) -> list[MessageGroup]:
        if self._selected is None:
            return []
        return self.engine.group_messages_by_date(self._selected)

    @property
    def search_results(self) -> list[Message]:
        return list(self._search_results)

    @property
    def last_error(self) -> Optional[SessionError]:
        return self._last_error

    def clear_error(self) -> None:
        self._last_error = None

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    # ===========================================
    # Lifecycle
    # ===========================================

    async def start(self) -> None:
        """Render cached chats, open the global subscription, then load chats."""
        if self._started:
            return
        if self._credentials.is_expired():
            raise AuthenticationError("Access token has expired")
        self._started = True
        await self.engine.hydrate_chats()
        await self._source.start(self)
        await self.load_chats()
        logger.info(f"Sync session started for user {self.user_id}")

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        await self.tracker.bind(None)
        await self._source.stop()
        await self.engine.flush()
        for close in self._closers:
            await close()
        self._selected = None
        self._connection_state = ConnectionState.CLOSED
        logger.info(f"Sync session stopped for user {self.user_id}")

    # ===========================================
    # Loading
    # ===========================================

    async def load_chats(self) -> list[Chat]:
        try:
            chats = await self._api.list_chats()
        except ChatSyncError as e:
            self._report_error(e)
            return self.engine.chats
        return self.engine.apply_chat_list(chats)

    async def select_chat(self, chat_id: str) -> list[Message]:
        """
        Open a chat: switch the scoped subscription, show cached messages,
        then replace them with a bulk load.
        """
        previous = self._selected
        if previous == chat_id:
            return await self.reload_chat()

        self._selected = chat_id
        self._search_results = []
        if previous is not None:
            self.engine.unload_chat(previous)
        await self._source.open_chat(chat_id)
        await self.tracker.bind(chat_id)

        await self.engine.hydrate_messages(chat_id, is_current=lambda: self._selected == chat_id)
        if self._selected != chat_id:
            self.engine.unload_chat(chat_id)
            return []
        return await self._bulk_load(chat_id)

    async def reload_chat(self) -> list[Message]:
        if self._selected is None:
            return []
        return await self._bulk_load(self._selected)

    async def close_chat(self) -> None:
        chat_id, self._selected = self._selected, None
        self._search_results = []
        await self.tracker.bind(None)
        await self._source.close_chat()
        if chat_id is not None:
            self.engine.unload_chat(chat_id)

    async def _bulk_load(self, chat_id: str) -> list[Message]:
        try:
            records = await self._api.list_messages(chat_id)
        except ChatSyncError as e:
            if self._selected == chat_id:
                self._report_error(e)
            return self.engine.messages(chat_id)
        if self._selected != chat_id:
            logger.debug(f"Discarding stale bulk load for chat {chat_id}")
            return []
        return self.engine.apply_bulk_load(chat_id, [r.to_message(chat_id) for r in records])

    async def search(self, text: str) -> list[Message]:
        """Search the selected chat. Results are kept apart from the message list."""
        chat_id = self._selected
        if chat_id is None:
            raise ValidationError("No chat selected")
        if not text.strip():
            self._search_results = []
            return []
        try:
            records = await self._api.list_messages(chat_id, search=text)
        except ChatSyncError as e:
            if self._selected == chat_id:
                self._report_error(e)
            return []
        if self._selected != chat_id:
            logger.debug(f"Discarding stale search result for chat {chat_id}")
            return []
        self._search_results = [r.to_message(chat_id) for r in records]
        return self.search_results

    # ===========================================
    # Sending and reading
    # ===========================================

    async def send_message(
        self,
        text: str,
        message_type: MessageType = MessageType.TEXT,
        reply_to_message_id: Optional[str] = None,
    ) -> Optional[Message]:
        """
        Send to the selected chat.

        The provisional message is visible before this awaits the network.
        Returns the confirmed message, or None if the send failed and the
        provisional entry was rolled back.
        """
        chat_id = self._selected
        if chat_id is None:
            raise ValidationError("No chat selected")
        provisional = self.engine.apply_optimistic_send(chat_id, text, message_type, reply_to_message_id)
        request = MessageSend(
            chat_id=chat_id,
            content=text,
            message_type=message_type,
            reply_to_message_id=reply_to_message_id,
        )
        try:
            record = await self._api.send_message(request)
        except ChatSyncError as e:
            logger.warning(f"Send to chat {chat_id} failed, rolling back {provisional.id}: {e.message}")
            self.engine.remove_provisional(provisional.id)
            self._report_error(e)
            return None
        return self.engine.apply_confirmed_message(chat_id, record.to_message(chat_id), provisional_id=provisional.id)

    async def observe_visibility(self, entries: dict) -> list[str]:
        """Forward viewport visibility ratios to the read-receipt tracker."""
        return await self.tracker.observe(entries)

    # ===========================================
    # Chats and labels
    # ===========================================

    async def get_chat(self, chat_id: str) -> Chat:
        """Refresh one chat's details (name, description, participants)."""
        chat = await self._api.get_chat(chat_id)
        return self.engine.apply_chat_details(chat)

    async def create_direct_chat(self, user_id: str, name: Optional[str] = None) -> Chat:
        chat = await self._api.create_direct_chat(DirectChatCreate(user_id=user_id, name=name))
        return self.engine.upsert_chat(chat)

    async def create_group(self, name: str, participant_ids: list[str]) -> Chat:
        chat = await self._api.create_group(GroupChatCreate(name=name, participant_ids=participant_ids))
        return self.engine.upsert_chat(chat)

    async def list_labels(self) -> list[Label]:
        return await self._api.list_labels()

    async def create_label(self, name: str, color: Optional[str] = None) -> Label:
        return await self._api.create_label(LabelCreate(name=name, color=color))

    async def list_chat_labels(self, chat_id: str) -> list[Label]:
        labels = await self._api.list_chat_labels(chat_id)
        self.engine.set_chat_labels(chat_id, labels)
        return labels

    async def assign_label(self, chat_id: str, label_id: str) -> list[Label]:
        await self._api.assign_label(chat_id, label_id)
        return await self.list_chat_labels(chat_id)

    async def remove_label(self, chat_id: str, label_id: str) -> list[Label]:
        await self._api.remove_label(chat_id, label_id)
        chat = self.engine.get_chat(chat_id)
        labels = [label for label in chat.labels if label.id != label_id] if chat else []
        self.engine.set_chat_labels(chat_id, labels)
        return labels

    # ===========================================
    # IUpdateListener
    # ===========================================

    async def handle_event(self, event: SyncEvent) -> None:
        await self.engine.handle_event(event)

    async def resync(self, chat_id: Optional[str]) -> None:
        if chat_id is None:
            await self.load_chats()
        elif chat_id == self._selected:
            await self._bulk_load(chat_id)

    async def connection_state_changed(self, state: ConnectionState) -> None:
        self._connection_state = state
        logger.info(f"Connection {state.value}")

    def _report_error(self, error: ChatSyncError) -> None:
        if isinstance(error, (AuthenticationError, AuthorizationError)):
            self._last_error = SessionError(kind="access_denied", message=error.message, retryable=False)
        else:
            self._last_error = SessionError(
                kind="transient",
                message=error.message,
                retryable=isinstance(error, InfrastructureError),
            )
