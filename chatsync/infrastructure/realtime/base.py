"""
Shared connection bookkeeping for update sources.

Tracks consecutive failures per subscription, derives the aggregate
connection state, computes reconnect delays and triggers a resync once a
failed subscription is healthy again.
"""

from __future__ import annotations

from typing import Optional

from chatsync.core.config import Settings
from chatsync.core.logger import setup_logger
from chatsync.interfaces.update_source import IUpdateListener, IUpdateSource
from chatsync.models.enums import ConnectionState, SubscriptionScope
from chatsync.models.events import SyncEvent

logger = setup_logger(__name__)


class BaseUpdateSource(IUpdateSource):
    """Base class holding state shared by the push and poll sources."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._listener: Optional[IUpdateListener] = None
        self._state = ConnectionState.CLOSED
        self._chat_id: Optional[str] = None
        self._failures: dict[SubscriptionScope, int] = {}

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def chat_id(self) -> Optional[str]:
        return self._chat_id

    def reconnect_delay(self, attempt: int) -> float:
        """
        Seconds to wait before reconnect attempt number ``attempt`` (1-based).

        Fixed by default; exponential backoff doubles per attempt up to
        RECONNECT_MAX_DELAY_SECONDS.
        """
        base = self._settings.RECONNECT_DELAY_SECONDS
        if self._settings.RECONNECT_BACKOFF == "exponential":
            return min(base * (2 ** max(attempt - 1, 0)), self._settings.RECONNECT_MAX_DELAY_SECONDS)
        return base

    def _aggregate_state(self) -> ConnectionState:
        counts = self._failures.values()
        if any(n >= self._settings.DEGRADED_AFTER_FAILURES for n in counts):
            return ConnectionState.DEGRADED
        if any(n > 0 for n in counts):
            return ConnectionState.RECONNECTING
        return ConnectionState.CONNECTED

    async def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        if state == ConnectionState.DEGRADED:
            logger.error("Update channel degraded: reconnects keep failing")
        else:
            logger.debug(f"Connection state {previous.value} -> {state.value}")
        if self._listener is not None:
            await self._listener.connection_state_changed(state)

    async def _subscription_failed(self, scope: SubscriptionScope, error: Exception) -> float:
        """Record a failure and return the delay before the next attempt."""
        attempt = self._failures.get(scope, 0) + 1
        self._failures[scope] = attempt
        delay = self.reconnect_delay(attempt)
        logger.info(f"{scope.value} subscription failed ({error}); reconnect attempt {attempt} in {delay:.1f}s")
        await self._set_state(self._aggregate_state())
        return delay

    async def _subscription_ok(self, scope: SubscriptionScope, chat_id: Optional[str], resync: bool) -> None:
        """Mark a subscription healthy, resyncing if it had been down."""
        self._failures[scope] = 0
        await self._set_state(self._aggregate_state())
        if resync and self._listener is not None:
            logger.info(f"Resynchronizing {scope.value} scope after reconnect")
            await self._listener.resync(chat_id if scope == SubscriptionScope.CHAT else None)

    def _forget(self, scope: SubscriptionScope) -> None:
        self._failures.pop(scope, None)

    async def _emit(self, event: SyncEvent) -> None:
        if self._listener is not None:
            await self._listener.handle_event(event)
