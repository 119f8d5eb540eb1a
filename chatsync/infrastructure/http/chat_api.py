"""
HTTP implementation of the Request Layer.

Every endpoint answers with a JSON object wrapping its result under a
resource key ({"chats": [...]}, {"message": {...}}) or {"error": "..."} on
failure. Status codes map onto the exception taxonomy so callers can tell
retryable failures from access-denied ones.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from chatsync.core.config import Settings
from chatsync.core.exceptions import (
    AuthenticationError,
    ChatSyncError,
    ForbiddenError,
    NotFoundError,
    TransientNetworkError,
    ValidationError,
)
from chatsync.core.logger import setup_logger
from chatsync.interfaces.chat_api import IChatApi
from chatsync.models.chat import Chat, DirectChatCreate, GroupChatCreate, Label, LabelCreate
from chatsync.models.message import MessageRecord, MessageSend
from chatsync.models.session import SessionCredentials

logger = setup_logger(__name__)

_chats_adapter = TypeAdapter(list[Chat])
_records_adapter = TypeAdapter(list[MessageRecord])
_labels_adapter = TypeAdapter(list[Label])


def error_for_status(status_code: int, message: str) -> ChatSyncError:
    """Map an HTTP error status onto the exception taxonomy."""
    if status_code == 400:
        return ValidationError(message)
    if status_code == 401:
        return AuthenticationError(message)
    if status_code == 403:
        return ForbiddenError(message)
    if status_code == 404:
        return NotFoundError(message)
    return TransientNetworkError(message, status_code=status_code)


class HttpChatApi(IChatApi):
    """Request Layer client over httpx."""

    def __init__(
        self,
        settings: Settings,
        credentials: SessionCredentials,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings
        self._credentials = credentials
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=settings.API_BASE_URL,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                json=json,
                headers=self._credentials.auth_headers(),
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"{method} {path} timed out", details=str(e)) from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{method} {path} failed: {e}", details=str(e)) from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            message = body.get("error") if isinstance(body, dict) else None
            logger.debug(f"{method} {path} -> {response.status_code}")
            raise error_for_status(response.status_code, message or f"{method} {path} returned {response.status_code}")

        if not isinstance(body, dict):
            raise TransientNetworkError(f"{method} {path} returned a non-object body", status_code=response.status_code)
        return body

    @staticmethod
    def _parse(adapter_or_model, value: Any, what: str):
        try:
            if isinstance(adapter_or_model, TypeAdapter):
                return adapter_or_model.validate_python(value)
            return adapter_or_model.model_validate(value)
        except PydanticValidationError as e:
            raise ValidationError(f"Malformed {what} in response", details=e.errors()) from e

    # ===========================================
    # Chats and messages
    # ===========================================

    async def list_chats(self) -> list[Chat]:
        body = await self._request("GET", "/api/chats")
        return self._parse(_chats_adapter, body.get("chats") or [], "chat list")

    async def get_chat(self, chat_id: str) -> Chat:
        body = await self._request("GET", f"/api/chats/{chat_id}")
        if not body.get("chat"):
            raise NotFoundError(f"Chat {chat_id} not found")
        return self._parse(Chat, body["chat"], "chat")

    async def list_messages(self, chat_id: str, search: Optional[str] = None) -> list[MessageRecord]:
        params = {"chatId": chat_id}
        if search:
            params["search"] = search
        body = await self._request("GET", "/api/messages", params=params)
        records = self._parse(_records_adapter, body.get("messages") or [], "message list")
        return sorted(records, key=lambda r: r.created_at)

    async def get_message(self, message_id: str) -> MessageRecord:
        body = await self._request("GET", f"/api/messages/{message_id}")
        if not body.get("message"):
            raise NotFoundError(f"Message {message_id} not found")
        return self._parse(MessageRecord, body["message"], "message")

    async def send_message(self, message: MessageSend) -> MessageRecord:
        body = await self._request("POST", "/api/messages", json=message.to_payload())
        return self._parse(MessageRecord, body.get("message"), "sent message")

    async def mark_read(self, chat_id: str, message_ids: list[str]) -> bool:
        body = await self._request(
            "POST",
            "/api/messages/read",
            json={"chatId": chat_id, "messageIds": list(message_ids)},
        )
        return bool(body.get("success"))

    async def create_direct_chat(self, data: DirectChatCreate) -> Chat:
        body = await self._request("POST", "/api/chats/new", json=data.to_payload())
        if body.get("isExisting"):
            logger.info(f"Direct chat with {data.user_id} already exists")
        return self._parse(Chat, body.get("chat"), "chat")

    async def create_group(self, data: GroupChatCreate) -> Chat:
        body = await self._request("POST", "/api/groups/new", json=data.to_payload())
        group = dict(body.get("group") or {})
        group.setdefault("is_group", True)
        return self._parse(Chat, group, "group")

    # ===========================================
    # Labels
    # ===========================================

    async def list_labels(self) -> list[Label]:
        body = await self._request("GET", "/api/labels")
        return self._parse(_labels_adapter, body.get("labels") or [], "label list")

    async def create_label(self, data: LabelCreate) -> Label:
        body = await self._request("POST", "/api/labels", json=data.model_dump(exclude_none=True))
        return self._parse(Label, body.get("label"), "label")

    async def list_chat_labels(self, chat_id: str) -> list[Label]:
        body = await self._request("GET", f"/api/chats/{chat_id}/labels")
        return self._parse(_labels_adapter, body.get("labels") or [], "chat label list")

    async def assign_label(self, chat_id: str, label_id: str) -> None:
        await self._request("POST", f"/api/chats/{chat_id}/labels", json={"labelId": label_id})

    async def remove_label(self, chat_id: str, label_id: str) -> None:
        await self._request("DELETE", f"/api/chats/{chat_id}/labels/{label_id}")
