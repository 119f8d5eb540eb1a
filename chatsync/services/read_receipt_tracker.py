"""
Read-receipt tracking for the open chat.

The view reports how much of each rendered message is visible. Whenever
the visible set changes, every visible, confirmed, unread message from
another sender is marked read in the engine right away and reported to the
server in one batch.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Mapping, Optional, Union

from chatsync.core.config import Settings, get_settings
from chatsync.core.exceptions import ChatSyncError
from chatsync.core.logger import setup_logger
from chatsync.interfaces.chat_api import IChatApi
from chatsync.models.enums import ReadStatus
from chatsync.models.message import MessageId, ProvisionalId
from chatsync.services.reconciliation_service import ReconciliationEngine

logger = setup_logger(__name__)

ErrorCallback = Callable[[ChatSyncError], None]


class ReadReceiptTracker:
    """Marks visible messages read and reports them in batches."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        api: IChatApi,
        settings: Optional[Settings] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        settings = settings or get_settings()
        self._engine = engine
        self._api = api
        self._threshold = settings.READ_VISIBILITY_THRESHOLD
        self._debounce = settings.READ_DEBOUNCE_SECONDS
        self._on_error = on_error
        self._chat_id: Optional[str] = None
        self._visible: set[str] = set()
        # Marked read locally, not yet acknowledged by the server
        self._unreported: set[str] = set()
        self._flush_task: Optional[asyncio.Task] = None

    @property
    def chat_id(self) -> Optional[str]:
        return self._chat_id

    @property
    def visible(self) -> frozenset[str]:
        return frozenset(self._visible)

    async def bind(self, chat_id: Optional[str]) -> None:
        """Track a different chat. Outstanding reports for the previous one are sent first."""
        if chat_id == self._chat_id:
            return
        await self.flush()
        self._chat_id = chat_id
        self._visible.clear()
        self._unreported.clear()

    async def observe(self, entries: Mapping[Union[MessageId, str], float]) -> list[str]:
        """
        Apply a batch of visibility ratios (0.0 - 1.0) from the viewport.

        Returns:
            Ids newly marked read by this call
        """
        changed = False
        for message_id, ratio in entries.items():
            if isinstance(message_id, ProvisionalId):
                continue
            key = message_id if isinstance(message_id, str) else message_id.value
            if ratio >= self._threshold:
                if key not in self._visible:
                    self._visible.add(key)
                    changed = True
            elif key in self._visible:
                self._visible.discard(key)
                changed = True
        if not changed:
            return []
        return await self.recompute()

    def eligible(self) -> list[str]:
        """Visible, confirmed, unread messages from other senders, in display order."""
        if self._chat_id is None:
            return []
        return [
            m.id.value
            for m in self._engine.messages(self._chat_id)
            if not m.is_provisional
            and m.id.value in self._visible
            and m.is_unread_for(self._engine.user_id)
        ]

    async def recompute(self) -> list[str]:
        ids = self.eligible()
        if not ids:
            return []
        for message_id in ids:
            self._engine.apply_read_update(message_id, ReadStatus.READ)
        self._unreported.update(ids)

        if self._debounce > 0:
            self._schedule_flush()
        else:
            await self.flush()
        return ids

    async def flush(self) -> bool:
        """Report every unreported id in one request. Returns False on failure."""
        if self._flush_task is not None and self._flush_task is not asyncio.current_task():
            self._flush_task.cancel()
            self._flush_task = None
        if self._chat_id is None or not self._unreported:
            return True

        chat_id = self._chat_id
        batch = [m.id.value for m in self._engine.messages(chat_id) if m.id.value in self._unreported]
        batch += sorted(self._unreported.difference(batch))
        self._unreported.clear()
        try:
            ok = await self._api.mark_read(chat_id, batch)
        except asyncio.CancelledError:
            self._unreported.update(batch)
            raise
        except ChatSyncError as e:
            logger.warning(f"Read report for {len(batch)} message(s) in chat {chat_id} failed: {e.message}")
            if chat_id == self._chat_id:
                self._unreported.update(batch)
            if self._on_error is not None:
                self._on_error(e)
            return False

        if not ok:
            logger.warning(f"Server did not acknowledge read report for chat {chat_id}")
        logger.debug(f"Reported {len(batch)} message(s) read in chat {chat_id}")
        return bool(ok)

    def _schedule_flush(self) -> None:
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
        self._flush_task = asyncio.create_task(self._flush_later())

    async def _flush_later(self) -> None:
        await asyncio.sleep(self._debounce)
        await self.flush()
