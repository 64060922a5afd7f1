"""Push events and the topics they arrive on.

Every frame delivered by the transport is parsed here into exactly one
event variant. Unknown topics and payloads that fail validation raise
InvalidEventError so handlers never see a half-trusted dict.
"""

import json
import re
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import Field, ValidationError

from chatsync.errors import InvalidEventError
from chatsync.models import ChatRoomSummary, Message, WireModel

ROOM_CREATED_TOPIC = "/topic/chatroom-created"
PRESENCE_TOPIC = "/topic/user-status"
SEND_MESSAGE_DESTINATION = "/app/chat.sendMessage"
ADD_USER_DESTINATION = "/app/chat.addUser"

_ROOM_TOPIC_RE = re.compile(
    r"^/topic/chatroom/(?P<room_id>\d+)(?:/(?P<stream>typing|status))?$"
)


def room_topic(room_id: int) -> str:
    return f"/topic/chatroom/{room_id}"


def typing_topic(room_id: int) -> str:
    return f"/topic/chatroom/{room_id}/typing"


def status_topic(room_id: int) -> str:
    return f"/topic/chatroom/{room_id}/status"


class StatusType(StrEnum):
    DELIVERED = "DELIVERED"
    READ = "READ"


class MessageEvent(WireModel):
    """A message posted to a room."""

    message: Message

    @property
    def room_id(self) -> int:
        return self.message.room_id


class TypingEvent(WireModel):
    """Another member started or stopped typing."""

    user_id: int
    username: str
    typing: bool
    room_id: int = Field(alias="chatRoomId")


class StatusEvent(WireModel):
    """Delivery or read status of a message changed."""

    message_id: int
    status_type: StatusType
    room_id: int = Field(alias="chatRoomId")
    read_at: datetime | None = None
    delivered_at: datetime | None = None


class RoomCreatedEvent(WireModel):
    """A room was created; the payload names every member."""

    room: ChatRoomSummary
    member_usernames: list[str] = Field(default_factory=list)

    def concerns(self, username: str) -> bool:
        return username in self.member_usernames


class PresenceEvent(WireModel):
    """A user went online or offline."""

    user_id: int
    username: str | None = None
    is_online: bool
    last_seen: datetime | None = None


PushEvent = MessageEvent | TypingEvent | StatusEvent | RoomCreatedEvent | PresenceEvent


def _decode(topic: str, body: bytes | str) -> Any:
    try:
        return json.loads(body)
    except (TypeError, ValueError) as e:
        raise InvalidEventError(topic, f"body is not JSON: {e}") from e


def _validate(topic: str, model: type[WireModel], data: Any) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidEventError(topic, str(e)) from e


def parse_event(topic: str, body: bytes | str) -> PushEvent:
    """Parse a raw frame body into the event variant its topic carries.

    Raises:
        InvalidEventError: If the topic is unknown or the payload is malformed.
    """
    data = _decode(topic, body)

    if topic == ROOM_CREATED_TOPIC:
        return _validate(topic, RoomCreatedEvent, data)
    if topic == PRESENCE_TOPIC:
        return _validate(topic, PresenceEvent, data)

    match = _ROOM_TOPIC_RE.match(topic)
    if match is None:
        raise InvalidEventError(topic, "unknown topic")

    stream = match.group("stream")
    if stream is None:
        event = MessageEvent(message=_validate(topic, Message, data))
    elif stream == "typing":
        event = _validate(topic, TypingEvent, data)
    else:
        event = _validate(topic, StatusEvent, data)

    topic_room = int(match.group("room_id"))
    if event.room_id != topic_room:
        msg = f"payload names room {event.room_id}, topic names room {topic_room}"
        raise InvalidEventError(topic, msg)
    return event
