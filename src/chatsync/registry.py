"""Room list state: order, previews and unread counters."""

import logging
from collections import deque
from collections.abc import Iterable, Iterator

from chatsync.active_room import ActiveRoom
from chatsync.events import PresenceEvent
from chatsync.models import ChatRoomSummary, Message, RoomKind

logger = logging.getLogger(__name__)

DEFAULT_SEEN_LIMIT = 500


class _SeenIds:
    """The most recent message ids applied to one room, oldest evicted first."""

    def __init__(self, limit: int) -> None:
        self._order: deque[int] = deque()
        self._ids: set[int] = set()
        self._limit = limit

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, message_id: int) -> None:
        if message_id in self._ids:
            return
        self._order.append(message_id)
        self._ids.add(message_id)
        while len(self._order) > self._limit:
            self._ids.discard(self._order.popleft())


class RoomRegistry:
    """Ordered collection of the user's rooms, most recent first.

    Updates arrive from room-list snapshots, push events and user actions.
    The latest message ids applied to each room are remembered so that a
    redelivered message never bumps the preview or unread counter twice.
    """

    def __init__(
        self,
        local_user_id: int,
        active_room: ActiveRoom,
        *,
        seen_limit: int = DEFAULT_SEEN_LIMIT,
    ) -> None:
        self._local_user_id = local_user_id
        self._active_room = active_room
        self._seen_limit = seen_limit
        self._rooms: list[ChatRoomSummary] = []
        self._seen: dict[int, _SeenIds] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __iter__(self) -> Iterator[ChatRoomSummary]:
        return iter(list(self._rooms))

    def __contains__(self, room_id: object) -> bool:
        return any(room.id == room_id for room in self._rooms)

    @property
    def rooms(self) -> list[ChatRoomSummary]:
        return list(self._rooms)

    @property
    def room_ids(self) -> list[int]:
        return [room.id for room in self._rooms]

    def get(self, room_id: int) -> ChatRoomSummary | None:
        return next((room for room in self._rooms if room.id == room_id), None)

    def unread_count(self, room_id: int) -> int:
        room = self.get(room_id)
        return room.unread_count if room is not None else 0

    def total_unread(self) -> int:
        return sum(room.unread_count for room in self._rooms)

    def find_direct_room(self, user_id: int) -> ChatRoomSummary | None:
        """An existing direct chat between the local user and user_id."""
        wanted = {self._local_user_id, user_id}
        for room in self._rooms:
            if room.kind is not RoomKind.DIRECT or len(room.members) != len(wanted):
                continue
            if {m.id for m in room.members} == wanted:
                return room
        return None

    def upsert_from_snapshot(self, rooms: Iterable[ChatRoomSummary]) -> None:
        """Replace the registry after a full refresh.

        Rooms that were already known keep their local unread counter, so a
        refresh never silently zeroes badges for rooms the user has not
        opened. The active room always ends up at zero. A known room also
        keeps its local preview when the snapshot's preview is one that was
        already applied, i.e. a push arrived while the snapshot was loading.
        """
        previous = {room.id: room for room in self._rooms}
        replaced: list[ChatRoomSummary] = []
        for room in rooms:
            if any(r.id == room.id for r in replaced):
                continue
            old = previous.get(room.id)
            if old is not None:
                room.unread_count = old.unread_count
                if self._snapshot_preview_is_stale(old, room):
                    room.last_message = old.last_message
                    room.last_message_time = old.last_message_time
            if self._active_room.is_active(room.id):
                room.unread_count = 0
            replaced.append(room)

        kept = {room.id for room in replaced}
        self._seen = {rid: ids for rid, ids in self._seen.items() if rid in kept}
        for room in replaced:
            if room.last_message is not None:
                self._seen_for(room.id).add(room.last_message.id)
        self._rooms = replaced
        logger.debug("Room registry replaced with %d rooms", len(replaced))

    def _snapshot_preview_is_stale(
        self,
        old: ChatRoomSummary,
        fresh: ChatRoomSummary,
    ) -> bool:
        if old.last_message is None:
            return False
        if fresh.last_message is None:
            return True
        if fresh.last_message.id == old.last_message.id:
            return False
        return fresh.last_message.id in self._seen_for(old.id)

    def _seen_for(self, room_id: int) -> _SeenIds:
        seen = self._seen.get(room_id)
        if seen is None:
            seen = self._seen[room_id] = _SeenIds(self._seen_limit)
        return seen

    def apply_incoming_message(self, message: Message) -> bool:
        """Reflect a pushed message in its room's preview and unread counter.

        Returns:
            True if the message was applied, False if its room is unknown or
            the message was already applied.
        """
        room = self.get(message.room_id)
        if room is None:
            logger.info(
                "Dropping message %s for unknown room %s", message.id, message.room_id
            )
            return False

        seen = self._seen_for(room.id)
        if message.id in seen:
            logger.debug("Message %s already applied to room %s", message.id, room.id)
            return False
        seen.add(message.id)

        room.last_message = message
        room.last_message_time = message.created_at
        authored_locally = message.sender.id == self._local_user_id
        if not authored_locally and not self._active_room.is_active(room.id):
            room.unread_count += 1

        self._rooms.remove(room)
        self._rooms.insert(0, room)
        return True

    def add_room(self, room: ChatRoomSummary) -> bool:
        """Insert a new room at the front; a known id is left alone."""
        if room.id in self:
            logger.debug("Room %s already registered, skipping", room.id)
            return False
        self._rooms.insert(0, room)
        if room.last_message is not None:
            self._seen_for(room.id).add(room.last_message.id)
        return True

    def remove_room(self, room_id: int) -> ChatRoomSummary | None:
        room = self.get(room_id)
        if room is None:
            return None
        self._rooms.remove(room)
        self._seen.pop(room_id, None)
        return room

    def mark_opened(self, room_id: int) -> None:
        room = self.get(room_id)
        if room is not None:
            room.unread_count = 0

    def apply_presence(self, event: PresenceEvent) -> int:
        """Update a user's online state in every room they belong to.

        Returns:
            Number of rooms touched.
        """
        touched = 0
        for room in self._rooms:
            member = room.member(event.user_id)
            if member is None:
                continue
            member.is_online = event.is_online
            member.last_seen = event.last_seen
            touched += 1
        return touched
