"""Cancellable delayed callbacks running in a shared task group."""

import logging
from collections.abc import Awaitable, Callable
from types import TracebackType

import anyio
from anyio.abc import TaskGroup

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class Timer:
    """Handle for a scheduled callback.

    Cancelling only stops the wait. Once the callback has started it runs to
    completion, so remote calls it makes are never interrupted.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._scope = anyio.CancelScope()
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def cancelled(self) -> bool:
        return self._scope.cancel_called

    @property
    def pending(self) -> bool:
        return not self._fired and not self.cancelled

    def cancel(self) -> None:
        self._scope.cancel()


class Scheduler:
    """Owns the task group every timer and background task runs in.

    Example:
        async with Scheduler() as scheduler:
            timer = scheduler.call_later(2.0, stop_typing, name="typing-stop")
            ...
            timer.cancel()
    """

    def __init__(self) -> None:
        self._task_group: TaskGroup | None = None

    def _require_group(self) -> TaskGroup:
        if self._task_group is None:
            msg = "Scheduler is not running"
            raise RuntimeError(msg)
        return self._task_group

    def call_later(
        self,
        delay: float,
        callback: TimerCallback,
        *,
        name: str = "timer",
    ) -> Timer:
        """Run callback after delay seconds unless the timer is cancelled."""
        task_group = self._require_group()
        timer = Timer(name)
        task_group.start_soon(self._run_timer, timer, delay, callback)
        return timer

    def spawn(self, func: TimerCallback, *, name: str = "task") -> None:
        """Run func in the background, logging instead of propagating failures."""
        self._require_group().start_soon(self._run_task, func, name)

    async def _run_timer(
        self,
        timer: Timer,
        delay: float,
        callback: TimerCallback,
    ) -> None:
        with timer._scope:
            await anyio.sleep(delay)
        if timer.cancelled:
            return
        timer._fired = True
        await self._run_task(callback, timer.name)

    async def _run_task(self, func: TimerCallback, name: str) -> None:
        try:
            await func()
        except Exception:
            logger.exception("Background task %s failed", name)

    async def close(self) -> None:
        """Cancel every pending timer and background task."""
        if self._task_group is not None:
            self._task_group.cancel_scope.cancel()

    async def __aenter__(self) -> "Scheduler":
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        task_group = self._require_group()
        # Pending timers would otherwise keep the group open.
        task_group.cancel_scope.cancel()
        try:
            return await task_group.__aexit__(exc_type, exc_val, exc_tb)
        finally:
            self._task_group = None
