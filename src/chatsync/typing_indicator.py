"""Typing indicators: our own pings out, other members' pings in."""

import logging

from chatsync.active_room import ActiveRoom
from chatsync.api import ChatApi
from chatsync.besteffort import best_effort
from chatsync.events import TypingEvent
from chatsync.scheduler import Scheduler, Timer

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT = 2.0


class TypingCoordinator:
    """Debounces the local user's typing signals and tracks remote typists.

    Local side: the first non-empty input sends typing-started, every change
    pushes back an inactivity timer, and the timer or an emptied field sends
    typing-stopped exactly once.

    Remote side: usernames typing in the open room, in the order they started.
    The set is cleared whenever the open room changes.
    """

    def __init__(
        self,
        api: ChatApi,
        active_room: ActiveRoom,
        local_user_id: int,
        scheduler: Scheduler,
        *,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
    ) -> None:
        self._api = api
        self._active_room = active_room
        self._local_user_id = local_user_id
        self._scheduler = scheduler
        self._idle_timeout = idle_timeout
        self._typing_room: int | None = None
        self._idle_timer: Timer | None = None
        self._typing_users: dict[str, None] = {}

    @property
    def typing(self) -> bool:
        return self._typing_room is not None

    @property
    def typing_users(self) -> list[str]:
        return list(self._typing_users)

    async def input_changed(self, text: str) -> None:
        if not text.strip():
            await self.stop()
            return

        if self._typing_room is None:
            room_id = self._active_room.room_id
            if room_id is None:
                return
            self._typing_room = room_id
            self._restart_idle_timer()
            await self._send(room_id, True)
        else:
            self._restart_idle_timer()

    async def message_sent(self) -> None:
        await self.stop()

    async def stop(self) -> None:
        """Send typing-stopped if a typing-started is outstanding."""
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None
        room_id = self._typing_room
        if room_id is None:
            return
        self._typing_room = None
        await self._send(room_id, False)

    async def reset(self) -> None:
        """Forget everything tied to the previous room."""
        self.clear()
        await self.stop()

    def _restart_idle_timer(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
        self._idle_timer = self._scheduler.call_later(
            self._idle_timeout, self._on_idle, name="typing-idle"
        )

    async def _on_idle(self) -> None:
        self._idle_timer = None
        await self.stop()

    async def _send(self, room_id: int, is_typing: bool) -> None:
        state = "started" if is_typing else "stopped"
        await best_effort(
            f"Typing {state} signal for room {room_id}",
            self._api.send_typing(room_id, is_typing),
            logger,
        )

    def apply_remote(self, event: TypingEvent) -> bool:
        """Merge another member's typing ping.

        Returns:
            True if the set of typing users changed.
        """
        if not self._active_room.is_active(event.room_id):
            return False
        if event.user_id == self._local_user_id:
            return False

        if event.typing:
            if event.username in self._typing_users:
                return False
            self._typing_users[event.username] = None
            return True

        if event.username not in self._typing_users:
            return False
        del self._typing_users[event.username]
        return True

    def clear(self) -> None:
        self._typing_users.clear()
