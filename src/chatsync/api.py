"""HTTP client for the chat data service."""

from collections.abc import Callable
from types import TracebackType
from typing import Any

import httpx
from pydantic import TypeAdapter

from chatsync.config import ClientConfig
from chatsync.models import ChatRoomSummary, Message, RoomKind, User

NOT_FOUND = 404

TokenProvider = Callable[[], str | None]

_rooms = TypeAdapter(list[ChatRoomSummary])
_messages = TypeAdapter(list[Message])
_users = TypeAdapter(list[User])


def _flag(value: bool) -> str:
    return "true" if value else "false"


class ChatApi:
    """Request/response operations of the chat data service.

    Every request carries the bearer token returned by token_provider at the
    time of the call. Non-2xx responses raise httpx.HTTPStatusError.

    Example:
        async with ChatApi(ClientConfig(), store.get_token) as api:
            rooms = await api.list_rooms()
    """

    def __init__(self, config: ClientConfig, token_provider: TokenProvider) -> None:
        self._config = config
        self._token_provider = token_provider
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=self._config.timeout_s,
                headers=self._config.headers,
            )
        return self._client

    def _auth_headers(self) -> dict[str, str]:
        token = self._token_provider()
        if token:
            return {"Authorization": f"Bearer {token}"}
        return {}

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        client = await self._get_client()
        response = await client.request(
            method, url, params=params, json=json, headers=self._auth_headers()
        )
        response.raise_for_status()
        return response

    async def list_rooms(self) -> list[ChatRoomSummary]:
        response = await self._request("GET", "/api/chatrooms")
        return _rooms.validate_python(response.json())

    async def create_room(
        self,
        name: str,
        kind: RoomKind,
        member_ids: list[int],
    ) -> ChatRoomSummary:
        payload = {"name": name, "type": kind.value, "memberIds": member_ids}
        response = await self._request("POST", "/api/chatrooms", json=payload)
        return ChatRoomSummary.model_validate(response.json())

    async def list_messages(self, room_id: int) -> list[Message]:
        response = await self._request("GET", f"/api/chatrooms/{room_id}/messages")
        return _messages.validate_python(response.json())

    async def get_last_message(self, room_id: int) -> Message | None:
        """Latest message of a room, or None for a room without messages."""
        try:
            response = await self._request(
                "GET", f"/api/chatrooms/{room_id}/last-message"
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == NOT_FOUND:
                return None
            raise
        if not response.content:
            return None
        return Message.model_validate(response.json())

    async def delete_room_for_self(self, room_id: int) -> None:
        """Remove the room from this user's list; other members keep it."""
        await self._request("DELETE", f"/api/chatrooms/{room_id}")

    async def mark_message_read(self, room_id: int, message_id: int) -> None:
        await self._request(
            "POST", f"/api/chatrooms/{room_id}/messages/{message_id}/read"
        )

    async def send_typing(self, room_id: int, is_typing: bool) -> None:
        await self._request(
            "POST",
            f"/api/chatrooms/{room_id}/typing",
            params={"isTyping": _flag(is_typing)},
        )

    async def search_users(self, query: str) -> list[User]:
        response = await self._request(
            "GET", "/api/users/search", params={"query": query}
        )
        return _users.validate_python(response.json())

    async def list_users(self) -> list[User]:
        response = await self._request("GET", "/api/users")
        return _users.validate_python(response.json())

    async def set_presence(self, is_online: bool) -> None:
        await self._request(
            "POST", "/api/users/status", params={"isOnline": _flag(is_online)}
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ChatApi":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
