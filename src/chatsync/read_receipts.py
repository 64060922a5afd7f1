"""Deciding when messages in the open room become read."""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from chatsync.active_room import ActiveRoom
from chatsync.api import ChatApi
from chatsync.besteffort import best_effort
from chatsync.message_log import MessageLog
from chatsync.scheduler import Scheduler, Timer

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_DELAY = 1.0
DEFAULT_VISIBILITY_THRESHOLD = 0.5

RoomsChanged = Callable[[int], Awaitable[None]]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ReadReceiptCoordinator:
    """Turns visibility signals and a fallback timer into mark-as-read calls.

    Two triggers converge on request_mark_as_read:

    - a message element becoming at least half visible, and
    - a timer that fires shortly after the log is hydrated or appended to,
      marking every unread message from other users whether or not the
      view can report visibility.

    Read receipts are best-effort. A failed call is logged and dropped.
    """

    def __init__(
        self,
        api: ChatApi,
        log: MessageLog,
        active_room: ActiveRoom,
        local_user_id: int,
        scheduler: Scheduler,
        on_marked: RoomsChanged | None = None,
        *,
        fallback_delay: float = DEFAULT_FALLBACK_DELAY,
        visibility_threshold: float = DEFAULT_VISIBILITY_THRESHOLD,
        clock: Clock = _utcnow,
    ) -> None:
        self._api = api
        self._log = log
        self._active_room = active_room
        self._local_user_id = local_user_id
        self._scheduler = scheduler
        self._on_marked = on_marked
        self._fallback_delay = fallback_delay
        self._visibility_threshold = visibility_threshold
        self._clock = clock
        self._fallback: Timer | None = None
        self._in_flight: set[tuple[int, int]] = set()

    @property
    def fallback_pending(self) -> bool:
        return self._fallback is not None and self._fallback.pending

    def _needs_receipt(self, message_id: int) -> bool:
        message = self._log.get(message_id)
        return (
            message is not None
            and not message.is_read
            and message.sender.id != self._local_user_id
        )

    async def message_visible(self, message_id: int, ratio: float = 1.0) -> bool:
        """Handle a visibility signal from the view.

        Returns:
            True if the message was marked read.
        """
        if ratio < self._visibility_threshold:
            return False
        room_id = self._active_room.room_id
        if room_id is None or not self._needs_receipt(message_id):
            return False
        return await self.request_mark_as_read(room_id, message_id)

    def schedule_fallback(self) -> Timer:
        """(Re)start the timer that marks everything unread after a delay."""
        self.cancel()
        self._fallback = self._scheduler.call_later(
            self._fallback_delay, self._run_fallback, name="read-receipt-fallback"
        )
        return self._fallback

    def cancel(self) -> None:
        if self._fallback is not None:
            self._fallback.cancel()
            self._fallback = None

    async def _run_fallback(self) -> None:
        self._fallback = None
        marked = await self.mark_all_read()
        if marked:
            logger.debug("Fallback marked %d messages read", marked)

    async def mark_all_read(self) -> int:
        """Mark every unread message from other users in the open room.

        The room list is refreshed once at the end, not per message.

        Returns:
            Number of messages marked read.
        """
        room_id = self._active_room.room_id
        if room_id is None or self._log.room_id != room_id:
            return 0

        marked = 0
        for message in self._log.unread_from_others(self._local_user_id):
            if not self._active_room.is_active(room_id):
                break
            if await self.request_mark_as_read(room_id, message.id, refresh=False):
                marked += 1

        if marked and self._on_marked is not None:
            await self._on_marked(room_id)
        return marked

    async def request_mark_as_read(
        self,
        room_id: int,
        message_id: int,
        *,
        refresh: bool = True,
    ) -> bool:
        """Mark one message read remotely, then locally.

        Safe to call repeatedly for the same message. A call for a message
        that already has a request in flight returns immediately.

        Returns:
            True if the remote call succeeded.
        """
        key = (room_id, message_id)
        if key in self._in_flight:
            return False
        self._in_flight.add(key)
        try:
            ok = await best_effort(
                f"Marking message {message_id} in room {room_id} as read",
                self._api.mark_message_read(room_id, message_id),
                logger,
            )
        finally:
            self._in_flight.discard(key)
        if not ok:
            return False

        # The room may have been switched while the call was in flight, in
        # which case the id is no longer in the log and this is a no-op.
        self._log.patch_read_status(message_id, self._clock())
        if refresh and self._on_marked is not None:
            await self._on_marked(room_id)
        return True
