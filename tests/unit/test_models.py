"""
Unit tests for message, chat, event and session models.
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from chatsync.core.exceptions import AuthenticationError, ValidationError
from chatsync.models.chat import Chat, DirectChatCreate, GroupChatCreate, LastMessage
from chatsync.models.enums import MessageType, ReadStatus
from chatsync.models.events import ChatListChangedEvent, MessageReadEvent, NewMessageEvent, sync_event_adapter
from chatsync.models.message import ConfirmedId, Message, MessageId, MessageRecord, MessageSend, ProvisionalId
from chatsync.models.session import SessionCredentials


# ============================================
# Message ids
# ============================================


class TestMessageId:
    """Tests for the confirmed/provisional id sum type."""

    def test_discriminates_on_kind(self):
        """Serialized ids round back into the right variant."""
        adapter = TypeAdapter(MessageId)
        assert isinstance(adapter.validate_python({"kind": "confirmed", "value": "m-1"}), ConfirmedId)
        assert isinstance(adapter.validate_python({"kind": "provisional", "value": 3}), ProvisionalId)

    def test_confirmed_and_provisional_never_equal(self):
        """A provisional id is never mistaken for a stable id."""
        assert ConfirmedId(value="1") != ProvisionalId(value=1)

    def test_str(self):
        assert str(ConfirmedId(value="m-1")) == "m-1"
        assert str(ProvisionalId(value=7)) == "provisional#7"


# ============================================
# MessageRecord
# ============================================


class TestMessageRecord:
    """Tests for parsing server message shapes."""

    def test_parses_api_shape(self):
        """camelCase API fields map onto the record."""
        record = MessageRecord.model_validate(
            {
                "id": "m-1",
                "chatId": "c-1",
                "text": "hello",
                "sender": "Alice",
                "sender_id": "u-1",
                "created_at": "2025-01-24T09:00:00Z",
                "isDelivered": True,
                "isRead": False,
                "time": "09:00 AM",
            }
        )
        assert record.chat_id == "c-1"
        assert record.text == "hello"
        assert record.sender_name == "Alice"
        assert record.delivered is True
        assert record.read is False

    def test_parses_row_shape(self):
        """Raw rows with content/read_at imply the flags."""
        record = MessageRecord.model_validate(
            {
                "id": "m-2",
                "chat_id": "c-1",
                "content": "hi",
                "sender_id": "u-1",
                "created_at": "2025-01-24T09:00:00",
                "read_at": "2025-01-24T09:05:00+09:00",
                "message_type": None,
            }
        )
        assert record.text == "hi"
        assert record.read is True
        assert record.delivered is True
        assert record.message_type == MessageType.TEXT
        assert record.created_at.tzinfo is not None
        assert record.read_at == datetime(2025, 1, 24, 0, 5, tzinfo=timezone.utc)

    def test_unknown_message_type_maps_to_other(self):
        record = MessageRecord(id="m-3", sender_id="u", created_at=datetime(2025, 1, 1), message_type="sticker")
        assert record.message_type == MessageType.OTHER

    def test_to_message_uses_fallback_chat_id(self):
        record = MessageRecord(id="m-4", sender_id="u", created_at=datetime(2025, 1, 1))
        message = record.to_message("c-9")
        assert message.id == ConfirmedId(value="m-4")
        assert message.chat_id == "c-9"

    def test_to_message_without_chat_id_raises(self):
        record = MessageRecord(id="m-5", sender_id="u", created_at=datetime(2025, 1, 1))
        with pytest.raises(ValidationError):
            record.to_message()


# ============================================
# Message
# ============================================


class TestMessage:
    """Tests for Message status helpers."""

    def _message(self, **kwargs):
        data = {
            "id": ConfirmedId(value="m-1"),
            "chat_id": "c-1",
            "sender_id": "u-other",
            "created_at": datetime(2025, 1, 24, 9, 0),
        }
        data.update(kwargs)
        return Message(**data)

    def test_status_from_flags(self):
        assert self._message().status == ReadStatus.PENDING
        assert self._message(delivered=True).status == ReadStatus.DELIVERED
        assert self._message(delivered=True, read=True).status == ReadStatus.READ

    def test_with_status_read_sets_read_at(self):
        read_at = datetime(2025, 1, 24, 10, 0, tzinfo=timezone.utc)
        updated = self._message().with_status(ReadStatus.READ, read_at)
        assert updated.read is True
        assert updated.delivered is True
        assert updated.read_at == read_at

    def test_unread_for(self):
        message = self._message()
        assert message.is_unread_for("u-self") is True
        assert message.is_unread_for("u-other") is False
        assert self._message(read=True).is_unread_for("u-self") is False

    def test_provisional_is_sending(self):
        message = self._message(id=ProvisionalId(value=1))
        assert message.is_provisional is True
        assert message.is_sending is True
        assert self._message().is_sending is False


class TestReadStatus:
    """Tests for status ordering."""

    def test_is_after(self):
        assert ReadStatus.READ.is_after(ReadStatus.DELIVERED)
        assert ReadStatus.DELIVERED.is_after(ReadStatus.PENDING)
        assert not ReadStatus.PENDING.is_after(ReadStatus.READ)
        assert not ReadStatus.READ.is_after(ReadStatus.READ)


# ============================================
# Chat
# ============================================


class TestChat:
    """Tests for chat parsing."""

    def test_parses_list_entry(self):
        chat = Chat.model_validate(
            {
                "id": "c-1",
                "name": "Team",
                "is_group": True,
                "participants": [{"id": "u-1", "full_name": "A"}, None],
                "lastMessage": {
                    "id": "m-1",
                    "content": "hi",
                    "created_at": "2025-01-24T09:00:00Z",
                    "sender_id": "u-1",
                },
                "unread": None,
                "labels": None,
                "created_at": "2025-01-01T00:00:00Z",
            }
        )
        assert len(chat.participants) == 1
        assert chat.unread == 0
        assert chat.labels == []
        assert chat.activity_at == datetime(2025, 1, 24, 9, 0, tzinfo=timezone.utc)

    def test_activity_falls_back_to_created_at(self):
        chat = Chat(id="c-1", created_at=datetime(2025, 1, 1))
        assert chat.activity_at == datetime(2025, 1, 1, tzinfo=timezone.utc)

    def test_negative_unread_rejected(self):
        with pytest.raises(PydanticValidationError):
            Chat(id="c-1", unread=-1)

    def test_last_message_from_message(self):
        message = Message(
            id=ConfirmedId(value="m-9"),
            chat_id="c-1",
            sender_id="u",
            text="yo",
            created_at=datetime(2025, 1, 1),
        )
        last = LastMessage.from_message(message)
        assert last.id == "m-9"
        assert last.content == "yo"


class TestRequestPayloads:
    """Tests for outbound request bodies."""

    def test_message_send_payload(self):
        payload = MessageSend(chat_id="c-1", content="hi", reply_to_message_id="m-1").to_payload()
        assert payload == {"chatId": "c-1", "content": "hi", "messageType": "text", "replyToMessageId": "m-1"}

    def test_message_send_rejects_empty(self):
        with pytest.raises(PydanticValidationError):
            MessageSend(chat_id="c-1", content="")

    def test_direct_chat_payload(self):
        assert DirectChatCreate(user_id="u-2").to_payload() == {"userId": "u-2", "isGroup": False}

    def test_group_payload(self):
        payload = GroupChatCreate(name="Ops", participant_ids=["u-2", "u-3"]).to_payload()
        assert payload == {"name": "Ops", "participants": ["u-2", "u-3"]}


# ============================================
# Events
# ============================================


class TestSyncEvent:
    """Tests for the tagged event union."""

    def test_validates_each_variant(self):
        assert isinstance(
            sync_event_adapter.validate_python({"type": "new_message", "chat_id": "c", "message_id": "m"}),
            NewMessageEvent,
        )
        assert isinstance(
            sync_event_adapter.validate_python(
                {"type": "message_read", "chat_id": "c", "message_id": "m", "read_at": "2025-01-01T00:00:00Z"}
            ),
            MessageReadEvent,
        )
        assert isinstance(sync_event_adapter.validate_python({"type": "chat_list_changed"}), ChatListChangedEvent)

    def test_unknown_type_rejected(self):
        with pytest.raises(PydanticValidationError):
            sync_event_adapter.validate_python({"type": "typing", "chat_id": "c"})


# ============================================
# Session credentials
# ============================================


class TestSessionCredentials:
    """Tests for reading identity from the access token."""

    def test_reads_subject_and_expiry(self):
        exp = datetime(2030, 1, 1, tzinfo=timezone.utc)
        token = jwt.encode({"sub": "u-1", "exp": int(exp.timestamp())}, "secret", algorithm="HS256")
        credentials = SessionCredentials.from_access_token(token)
        assert credentials.user_id == "u-1"
        assert credentials.expires_at == exp
        assert credentials.auth_headers() == {"Authorization": f"Bearer {token}"}

    def test_explicit_user_id_for_opaque_token(self):
        credentials = SessionCredentials.from_access_token("opaque-token", user_id="u-2")
        assert credentials.user_id == "u-2"
        assert credentials.expires_at is None

    def test_opaque_token_without_user_id_raises(self):
        with pytest.raises(AuthenticationError):
            SessionCredentials.from_access_token("opaque-token")

    def test_token_without_subject_raises(self):
        token = jwt.encode({"role": "user"}, "secret", algorithm="HS256")
        with pytest.raises(AuthenticationError):
            SessionCredentials.from_access_token(token)

    def test_is_expired(self):
        past = datetime.now(timezone.utc) - timedelta(minutes=1)
        credentials = SessionCredentials(access_token="t", user_id="u", expires_at=past)
        assert credentials.is_expired() is True
