"""
Unit tests for push-frame normalization.
"""

import json

import pytest

from chatsync.models.enums import SubscriptionScope, TransportSignal
from chatsync.models.events import ChatListChangedEvent, MessageReadEvent, NewMessageEvent, RawFrame
from chatsync.services.event_normalizer import normalize_frame

GLOBAL = SubscriptionScope.GLOBAL
CHAT = SubscriptionScope.CHAT


def frame(event: str, payload=None) -> RawFrame:
    return RawFrame(event=event, data=json.dumps(payload) if payload is not None else "")


def message_row(**overrides):
    row = {
        "id": "m-1",
        "chat_id": "c-1",
        "sender_id": "u-other",
        "content": "hello",
        "created_at": "2025-01-24T09:00:00Z",
        "read_at": None,
    }
    row.update(overrides)
    return row


class TestTransportSignals:
    """Connection-level frames."""

    @pytest.mark.parametrize(
        "event, signal",
        [
            ("connected", TransportSignal.CONNECTED),
            ("ping", TransportSignal.KEEP_ALIVE),
            ("error", TransportSignal.CONNECTION_ERROR),
        ],
    )
    def test_signal_frames(self, event, signal):
        assert normalize_frame(frame(event, {}), GLOBAL) == signal

    def test_connected_envelope_on_default_event(self):
        """The default event name carries a typed envelope."""
        assert normalize_frame(frame("message", {"type": "connected"}), GLOBAL) == TransportSignal.CONNECTED

    def test_subscription_status_is_ignored(self):
        assert normalize_frame(frame("subscription_status", {"channel": "chats", "status": "SUBSCRIBED"}), GLOBAL) is None


class TestMessageEvents:
    """new_message / message_affects_chat frames."""

    def test_full_row_carries_record(self):
        result = normalize_frame(frame("message_affects_chat", {"eventType": "INSERT", "new": message_row()}), GLOBAL)
        assert isinstance(result, NewMessageEvent)
        assert result.chat_id == "c-1"
        assert result.message_id == "m-1"
        assert result.message is not None
        assert result.message.text == "hello"

    def test_partial_row_has_no_record(self):
        """An id-only payload is still a valid event; the engine fetches the body."""
        result = normalize_frame(frame("new_message", {"new": {"id": "m-2", "chat_id": "c-1"}}), CHAT, "c-1")
        assert isinstance(result, NewMessageEvent)
        assert result.message is None

    def test_missing_ids_dropped(self):
        assert normalize_frame(frame("new_message", {"new": {"content": "x"}}), CHAT, "c-1") is None

    def test_scoped_event_for_other_chat_dropped(self):
        result = normalize_frame(frame("new_message", {"new": message_row(chat_id="c-2")}), CHAT, "c-1")
        assert result is None

    def test_global_only_events_dropped_on_chat_scope(self):
        assert normalize_frame(frame("message_affects_chat", {"new": message_row()}), CHAT, "c-1") is None
        assert normalize_frame(frame("chat_update", {"new": {"id": "c-1"}}), CHAT, "c-1") is None


class TestReadEvents:
    """message_read frames."""

    def test_unread_to_read_emits(self):
        payload = {
            "new": message_row(read_at="2025-01-24T09:05:00Z"),
            "old": message_row(read_at=None),
        }
        result = normalize_frame(frame("message_read", payload), CHAT, "c-1")
        assert isinstance(result, MessageReadEvent)
        assert result.message_id == "m-1"
        assert result.read_at.tzinfo is not None

    def test_already_read_is_not_reconfirmed(self):
        payload = {
            "new": message_row(read_at="2025-01-24T09:06:00Z"),
            "old": message_row(read_at="2025-01-24T09:05:00Z"),
        }
        assert normalize_frame(frame("message_read", payload), CHAT, "c-1") is None

    def test_update_without_read_at_ignored(self):
        payload = {"new": message_row(content="edited"), "old": message_row()}
        assert normalize_frame(frame("message_read", payload), CHAT, "c-1") is None


class TestChatListEvents:
    """chat_update frames."""

    def test_chat_update(self):
        result = normalize_frame(frame("chat_update", {"eventType": "UPDATE", "new": {"id": "c-3"}, "old": {}}), GLOBAL)
        assert isinstance(result, ChatListChangedEvent)
        assert result.chat_id == "c-3"

    def test_chat_delete_uses_old_row(self):
        result = normalize_frame(frame("chat_update", {"eventType": "DELETE", "new": {}, "old": {"id": "c-4"}}), GLOBAL)
        assert result.chat_id == "c-4"


class TestFailClosed:
    """Unrecognized or malformed frames are dropped, never raised."""

    def test_invalid_json(self):
        assert normalize_frame(RawFrame(event="new_message", data="{not json"), GLOBAL) is None

    def test_non_object_json(self):
        assert normalize_frame(RawFrame(event="chat_update", data="[1, 2]"), GLOBAL) is None

    def test_unknown_event_name(self, caplog):
        assert normalize_frame(frame("typing", {"chat_id": "c-1"}), GLOBAL) is None
        assert "unrecognized" in caplog.text

    def test_unknown_envelope_type(self):
        assert normalize_frame(frame("message", {"type": "presence"}), GLOBAL) is None

    def test_typed_envelope(self):
        result = normalize_frame(frame("message", {"type": "chat_list_changed", "chat_id": "c-1"}), GLOBAL)
        assert isinstance(result, ChatListChangedEvent)
