"""Chat domain models as exchanged with the data service and transport."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RoomKind(StrEnum):
    DIRECT = "DIRECT"
    GROUP = "GROUP"


class MessageKind(StrEnum):
    CHAT = "CHAT"
    JOIN = "JOIN"
    LEAVE = "LEAVE"


class WireModel(BaseModel):
    """Base for models that accept the service's camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class User(WireModel):
    """A user as seen in room member lists and message authors."""

    id: int
    username: str
    email: str | None = None
    is_online: bool = False
    last_seen: datetime | None = None


class RoomRef(WireModel):
    """The room a message belongs to, without members or history."""

    id: int
    name: str | None = None


class Message(WireModel):
    """A chat message.

    Delivery and read flags only ever move from False to True.
    """

    id: int
    content: str
    sender: User
    chat_room: RoomRef
    kind: MessageKind = Field(default=MessageKind.CHAT, alias="type")
    created_at: datetime | None = None
    is_delivered: bool = False
    delivered_at: datetime | None = None
    is_read: bool = False
    read_at: datetime | None = None

    @property
    def room_id(self) -> int:
        return self.chat_room.id

    @property
    def is_system(self) -> bool:
        return self.kind in (MessageKind.JOIN, MessageKind.LEAVE)


class ChatRoomSummary(WireModel):
    """A room as shown in the room list."""

    id: int
    name: str
    kind: RoomKind = Field(default=RoomKind.GROUP, alias="type")
    created_at: datetime | None = None
    members: list[User] = Field(default_factory=list)
    created_by: User | None = None
    last_message: Message | None = None
    last_message_time: datetime | None = None
    unread_count: int = Field(default=0, ge=0)

    def member(self, user_id: int) -> User | None:
        return next((m for m in self.members if m.id == user_id), None)

    def other_member(self, local_user_id: int) -> User | None:
        """The first member that is not the local user (direct chat peer)."""
        return next((m for m in self.members if m.id != local_user_id), None)


class UserProfile(WireModel):
    """The signed-in user, as persisted between runs."""

    id: int
    username: str
    email: str | None = None
