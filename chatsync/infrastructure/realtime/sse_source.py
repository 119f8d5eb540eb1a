"""
Push-stream update source over Server-Sent Events.

Each subscription is one long-lived GET on the subscribe endpoint, read
line by line. The global subscription carries chat-list events; the scoped
one passes ``chatId`` and carries message-level events for that chat.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

import httpx

from chatsync.core.config import Settings
from chatsync.core.exceptions import AuthenticationError, AuthorizationError, TransportDisconnectedError
from chatsync.core.logger import setup_logger
from chatsync.infrastructure.http.chat_api import error_for_status
from chatsync.infrastructure.realtime.base import BaseUpdateSource
from chatsync.interfaces.update_source import IUpdateListener
from chatsync.models.enums import ConnectionState, SubscriptionScope, TransportSignal
from chatsync.models.events import RawFrame
from chatsync.models.session import SessionCredentials
from chatsync.services.event_normalizer import normalize_frame

logger = setup_logger(__name__)


async def iter_sse_frames(lines: AsyncIterator[str]) -> AsyncIterator[RawFrame]:
    """
    Assemble SSE lines into frames.

    Comment lines (": ...") are yielded as ``ping`` frames so they reset the
    keep-alive timer like an explicit ping does.
    """
    event = ""
    data: list[str] = []
    async for line in lines:
        line = line.rstrip("\r")
        if not line:
            if event or data:
                yield RawFrame(event=event or "message", data="\n".join(data))
            event, data = "", []
            continue
        if line.startswith(":"):
            yield RawFrame(event="ping")
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data.append(value)
    if event or data:
        yield RawFrame(event=event or "message", data="\n".join(data))


class SseUpdateSource(BaseUpdateSource):
    """Update source reading the server's event stream."""

    def __init__(
        self,
        settings: Settings,
        credentials: SessionCredentials,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(settings)
        self._credentials = credentials
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=settings.API_BASE_URL)
        self._tasks: dict[SubscriptionScope, asyncio.Task] = {}

    async def start(self, listener: IUpdateListener) -> None:
        self._listener = listener
        await self._set_state(ConnectionState.CONNECTING)
        self._spawn(SubscriptionScope.GLOBAL, None)

    async def open_chat(self, chat_id: str) -> None:
        await self.close_chat()
        self._chat_id = chat_id
        self._spawn(SubscriptionScope.CHAT, chat_id)

    async def close_chat(self) -> None:
        task = self._tasks.pop(SubscriptionScope.CHAT, None)
        if task is not None:
            await self._cancel(task)
        self._forget(SubscriptionScope.CHAT)
        self._chat_id = None

    async def stop(self) -> None:
        for scope in list(self._tasks):
            await self._cancel(self._tasks.pop(scope))
            self._forget(scope)
        self._chat_id = None
        await self._set_state(ConnectionState.CLOSED)
        if self._owns_client:
            await self._client.aclose()

    def _spawn(self, scope: SubscriptionScope, chat_id: Optional[str]) -> None:
        name = f"sse:{scope.value}" + (f":{chat_id}" if chat_id else "")
        self._tasks[scope] = asyncio.create_task(self._run(scope, chat_id), name=name)

    @staticmethod
    async def _cancel(task: asyncio.Task) -> None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self, scope: SubscriptionScope, chat_id: Optional[str]) -> None:
        """Connect, consume and reconnect until cancelled or denied."""
        resync = False
        while True:
            try:
                await self._consume(scope, chat_id, resync)
                raise TransportDisconnectedError("Stream closed by server")
            except (AuthenticationError, AuthorizationError) as e:
                logger.error(f"{scope.value} subscription denied: {e.message}")
                self._forget(scope)
                await self._set_state(ConnectionState.CLOSED)
                return
            except (TransportDisconnectedError, httpx.HTTPError) as e:
                delay = await self._subscription_failed(scope, e)
                resync = True
                await asyncio.sleep(delay)

    async def _consume(self, scope: SubscriptionScope, chat_id: Optional[str], resync: bool) -> None:
        params = {"chatId": chat_id} if chat_id else None
        headers = {**self._credentials.auth_headers(), "Accept": "text/event-stream"}
        # A stream silent past the keep-alive window is dead.
        timeout = httpx.Timeout(
            self._settings.REQUEST_TIMEOUT_SECONDS,
            read=self._settings.KEEPALIVE_TIMEOUT_SECONDS,
        )
        async with self._client.stream(
            "GET",
            self._settings.SUBSCRIBE_PATH,
            params=params,
            headers=headers,
            timeout=timeout,
        ) as response:
            if response.status_code in (401, 403):
                raise error_for_status(response.status_code, f"Subscribe returned {response.status_code}")
            if response.status_code >= 400:
                raise TransportDisconnectedError(
                    f"Subscribe returned {response.status_code}",
                    details={"status_code": response.status_code},
                )
            await self._subscription_ok(scope, chat_id, resync)
            async for frame in iter_sse_frames(response.aiter_lines()):
                await self._dispatch(frame, scope, chat_id)

    async def _dispatch(self, frame: RawFrame, scope: SubscriptionScope, chat_id: Optional[str]) -> None:
        result = normalize_frame(frame, scope, chat_id)
        if result is None:
            return
        if isinstance(result, TransportSignal):
            if result == TransportSignal.CONNECTION_ERROR:
                raise TransportDisconnectedError(f"Server reported an error on the {scope.value} stream")
            logger.debug(f"{scope.value} stream: {result.value}")
            return
        await self._emit(result)
