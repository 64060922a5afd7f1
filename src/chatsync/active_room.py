"""The room the user currently has open."""

from chatsync.models import ChatRoomSummary


class ActiveRoom:
    """Single-writer cell holding the open room.

    Subscription callbacks and timers are created long before they run, so
    they must hold a reference to this tracker and call get() when they
    execute. Reading the room at registration time would route events to
    whichever room was open back then.
    """

    def __init__(self) -> None:
        self._room: ChatRoomSummary | None = None

    def get(self) -> ChatRoomSummary | None:
        return self._room

    def set(self, room: ChatRoomSummary | None) -> None:
        self._room = room

    @property
    def room_id(self) -> int | None:
        return self._room.id if self._room is not None else None

    def is_active(self, room_id: int) -> bool:
        return self._room is not None and self._room.id == room_id

    def __repr__(self) -> str:
        return f"ActiveRoom(room_id={self.room_id})"
