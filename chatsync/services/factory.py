"""
Construction of sync sessions.

Everything is built per session and handed in explicitly; nothing here is
a process-wide singleton.
"""

from __future__ import annotations

from typing import Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from chatsync.core.config import Settings, get_settings
from chatsync.core.logger import setup_logger
from chatsync.infrastructure.http.chat_api import HttpChatApi
from chatsync.infrastructure.local.cache_repository import SqliteCacheRepository
from chatsync.infrastructure.local.database import get_engine, get_session_factory, init_db
from chatsync.infrastructure.realtime.polling_source import PollingUpdateSource
from chatsync.infrastructure.realtime.sse_source import SseUpdateSource
from chatsync.interfaces.chat_api import IChatApi
from chatsync.interfaces.update_source import IUpdateSource
from chatsync.models.session import SessionCredentials
from chatsync.services.sync_session import ChatSyncSession

logger = setup_logger(__name__)


def build_update_source(
    settings: Settings,
    credentials: SessionCredentials,
    api: IChatApi,
    client: Optional[httpx.AsyncClient] = None,
) -> IUpdateSource:
    """Pick the update source implementation from UPDATE_TRANSPORT."""
    if settings.uses_polling:
        return PollingUpdateSource(settings, api)
    return SseUpdateSource(settings, credentials, client=client)


async def create_session(
    access_token: str,
    user_id: Optional[str] = None,
    settings: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> ChatSyncSession:
    """
    Build a ready-to-start session for the given access token.

    Args:
        access_token: Bearer token from the identity provider
        user_id: Viewing user's id, if the token does not carry it
        settings: Configuration (defaults to environment settings)
        client: Shared httpx client; the caller keeps ownership

    Returns:
        ChatSyncSession: Call start() (or use ``async with``) to begin syncing
    """
    settings = settings or get_settings()
    credentials = SessionCredentials.from_access_token(access_token, user_id)

    db_engine = get_engine(settings.CACHE_DATABASE_URL, settings.CACHE_ECHO_SQL)
    cache: Optional[SqliteCacheRepository] = None
    try:
        await init_db(db_engine)
        cache = SqliteCacheRepository(get_session_factory(db_engine))
    except SQLAlchemyError as e:
        logger.warning(f"Local cache unavailable, continuing without it: {e}")

    api = HttpChatApi(settings, credentials, client=client)
    source = build_update_source(settings, credentials, api, client=client)
    logger.info(f"Using {settings.UPDATE_TRANSPORT} update transport")

    return ChatSyncSession(
        credentials,
        api,
        source,
        cache=cache,
        settings=settings,
        closers=[api.aclose, db_engine.dispose],
    )
