"""
Normalization of raw push-stream frames into sync events.

The push stream speaks in database change notifications ({"eventType",
"new", "old"} payloads under named events). This module is the only place
that knows those shapes. Anything it cannot map onto a SyncEvent or a
TransportSignal is logged and dropped; nothing here raises.
"""

from __future__ import annotations

import json
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from chatsync.core.exceptions import EventDecodeError
from chatsync.core.logger import setup_logger
from chatsync.models.enums import SubscriptionScope, TransportSignal
from chatsync.models.events import (
    ChatListChangedEvent,
    MessageReadEvent,
    NewMessageEvent,
    RawFrame,
    SyncEvent,
    sync_event_adapter,
)
from chatsync.models.message import MessageRecord

logger = setup_logger(__name__)

Normalized = Optional[Union[SyncEvent, TransportSignal]]

# Events that only the global subscription acts on. The scoped stream
# repeats them, and handling both would double-count.
GLOBAL_ONLY_EVENTS = frozenset({"chat_update", "message_affects_chat"})


def decode_payload(frame: RawFrame) -> dict[str, Any]:
    """Parse the JSON body of a frame. Empty data decodes to {}."""
    if not frame.data.strip():
        return {}
    try:
        payload = json.loads(frame.data)
    except json.JSONDecodeError as e:
        raise EventDecodeError(f"Invalid JSON in '{frame.event}' frame: {e}", raw=frame.data) from e
    if not isinstance(payload, dict):
        raise EventDecodeError(f"'{frame.event}' frame is not a JSON object", raw=frame.data)
    return payload


def _row(payload: dict[str, Any], key: str) -> dict[str, Any]:
    row = payload.get(key)
    return row if isinstance(row, dict) else {}


def _full_record(row: dict[str, Any]) -> Optional[MessageRecord]:
    """A complete message row, or None when the push carried only part of one."""
    try:
        return MessageRecord.model_validate(row)
    except PydanticValidationError:
        return None


def _new_message(payload: dict[str, Any]) -> NewMessageEvent:
    row = _row(payload, "new")
    return NewMessageEvent(
        chat_id=row.get("chat_id"),
        message_id=row.get("id"),
        message=_full_record(row),
    )


def _message_read(payload: dict[str, Any]) -> Optional[MessageReadEvent]:
    new, old = _row(payload, "new"), _row(payload, "old")
    if not new.get("read_at") or old.get("read_at"):
        logger.debug("Ignoring message update that is not an unread-to-read transition")
        return None
    return MessageReadEvent(
        chat_id=new.get("chat_id"),
        message_id=new.get("id"),
        read_at=new["read_at"],
    )


def _chat_update(payload: dict[str, Any]) -> ChatListChangedEvent:
    row = _row(payload, "new") or _row(payload, "old")
    return ChatListChangedEvent(chat_id=row.get("id"))


def _envelope(payload: dict[str, Any]) -> Normalized:
    """Frames on the default event name carry their own {"type": ...} tag."""
    if payload.get("type") == "connected":
        return TransportSignal.CONNECTED
    return sync_event_adapter.validate_python(payload)


def _map(frame: RawFrame, payload: dict[str, Any]) -> Normalized:
    event = frame.event
    if event == "connected":
        return TransportSignal.CONNECTED
    if event == "ping":
        return TransportSignal.KEEP_ALIVE
    if event == "error":
        return TransportSignal.CONNECTION_ERROR
    if event == "subscription_status":
        logger.debug(f"Subscription status: {payload.get('channel')} {payload.get('status')}")
        return None
    if event == "chat_update":
        return _chat_update(payload)
    if event in ("message_affects_chat", "new_message"):
        return _new_message(payload)
    if event == "message_read":
        return _message_read(payload)
    if event == "message":
        return _envelope(payload)
    logger.warning(f"Dropping unrecognized event '{event}'")
    return None


def normalize_frame(
    frame: RawFrame,
    scope: SubscriptionScope,
    chat_id: Optional[str] = None,
) -> Normalized:
    """
    Map one raw frame onto a sync event or transport signal.

    Args:
        frame: Undecoded frame from the stream
        scope: Subscription the frame arrived on
        chat_id: Chat the scoped subscription is bound to

    Returns:
        SyncEvent, TransportSignal, or None if the frame is dropped
    """
    if scope == SubscriptionScope.CHAT and frame.event in GLOBAL_ONLY_EVENTS:
        return None

    try:
        payload = decode_payload(frame)
        result = _map(frame, payload)
    except EventDecodeError as e:
        logger.warning(f"Dropping undecodable frame: {e.message}")
        return None
    except PydanticValidationError as e:
        logger.warning(f"Dropping malformed '{frame.event}' frame: {e.error_count()} validation error(s)")
        return None

    if (
        scope == SubscriptionScope.CHAT
        and chat_id is not None
        and isinstance(result, (NewMessageEvent, MessageReadEvent))
        and result.chat_id != chat_id
    ):
        logger.warning(f"Dropping event for chat {result.chat_id} on subscription for chat {chat_id}")
        return None

    if result is not None:
        logger.debug(f"Normalized '{frame.event}' frame on {scope.value} scope")
    return result
