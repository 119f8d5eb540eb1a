"""
SQLite database configuration and ORM models for the local cache.

Each cached record keeps its full serialized model in ``payload``; the other
columns exist only for keys, indexes and ordering.
"""

from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, JSON, String
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from chatsync.core.config import get_settings
from chatsync.utils.datetime_utils import now_utc


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


# ===========================================
# ORM Models
# ===========================================


class CachedChatORM(Base):
    """Cached chat."""

    __tablename__ = "cached_chats"

    id = Column(String(255), primary_key=True)
    activity_at = Column(DateTime, nullable=True, index=True)
    payload = Column(JSON, nullable=False)
    cached_at = Column(DateTime, default=now_utc, onupdate=now_utc)


class CachedMessageORM(Base):
    """Cached message, keyed by (id, provisional)."""

    __tablename__ = "cached_messages"

    id = Column(String(255), primary_key=True)
    provisional = Column(Boolean, primary_key=True, default=False)
    chat_id = Column(String(255), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    cached_at = Column(DateTime, default=now_utc, onupdate=now_utc)


# ===========================================
# Database Session Management
# ===========================================


def get_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """Get async engine instance."""
    settings = get_settings()
    return create_async_engine(
        database_url or settings.CACHE_DATABASE_URL,
        echo=settings.CACHE_ECHO_SQL if echo is None else echo,
    )


def get_session_factory(engine: Optional[AsyncEngine] = None):
    """Get async session factory."""
    engine = engine or get_engine()
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Initialize cache tables."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
