"""Progress notifier and resource registry.

Long jobs send periodic "still working" messages. Each periodic notifier is an
asyncio task owned by a ResourceRegistry instance (injected, never module
global). The dispatcher calls ``stop(user_id)`` on every exit path; a periodic
sweep caps live timers per user in case a caller forgets.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)

NotifyFn = Callable[[int], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[None]]

DEFAULT_JOB_KEY = "default"


@dataclass
class ProgressHandle:
    """One periodic notifier.

    Attributes:
        user_id: Chat user the notifier belongs to
        job_key: Job the notifier reports on
        started_at: Monotonic start time, used to evict the oldest timers first
        ticks: Notifications sent so far
        cleared: Set once the handle has been cleared; never reset
    """

    user_id: int
    job_key: str
    started_at: float
    task: asyncio.Task | None = None
    ticks: int = 0
    cleared: bool = field(default=False)


class ResourceRegistry:
    """Owns progress timers keyed by user and job.

    At most one live timer exists per (user, job); starting another replaces
    the first and logs a warning.
    """

    def __init__(
        self,
        max_timers_per_user: int = 10,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_timers_per_user = max_timers_per_user
        self._sleep = sleep
        self._clock = clock
        self._handles: dict[int, dict[str, ProgressHandle]] = {}

    def start(
        self,
        user_id: int,
        notify: NotifyFn,
        interval_seconds: float,
        max_ticks: int,
        job_key: str = DEFAULT_JOB_KEY,
    ) -> ProgressHandle:
        """Begin periodic notification for a user's job.

        Must be called from a running event loop.

        Args:
            user_id: Chat user to notify
            notify: Coroutine function called with the tick number (1-based)
            interval_seconds: Delay before each notification
            max_ticks: Stop after this many notifications
            job_key: Identifies the job within the user's timers

        Returns:
            The stored handle
        """
        user_handles = self._handles.setdefault(user_id, {})
        previous = user_handles.get(job_key)
        if previous is not None:
            logger.warning(
                "progress.timer.replaced",
                user_id=user_id,
                job_key=job_key,
                previous_ticks=previous.ticks,
            )
            self._clear(previous)

        handle = ProgressHandle(user_id=user_id, job_key=job_key, started_at=self._clock())
        handle.task = asyncio.create_task(self._run(handle, notify, interval_seconds, max_ticks))
        user_handles[job_key] = handle

        logger.debug(
            "progress.timer.started",
            user_id=user_id,
            job_key=job_key,
            interval_seconds=interval_seconds,
            max_ticks=max_ticks,
        )
        return handle

    def stop(self, user_id: int, job_key: str | None = None) -> int:
        """Clear a user's timers.

        Args:
            user_id: Chat user whose timers to clear
            job_key: Only clear this job's timer; all of the user's timers if None

        Returns:
            Number of handles cleared by this call
        """
        user_handles = self._handles.get(user_id)
        if not user_handles:
            return 0

        keys = [job_key] if job_key is not None else list(user_handles)
        cleared = 0
        for key in keys:
            handle = user_handles.pop(key, None)
            if handle is not None and self._clear(handle):
                cleared += 1

        if not user_handles:
            self._handles.pop(user_id, None)

        if cleared:
            logger.debug("progress.timer.stopped", user_id=user_id, cleared=cleared)
        return cleared

    def active_count(self, user_id: int | None = None) -> int:
        """Number of live timers, for one user or overall."""
        if user_id is not None:
            return len(self._handles.get(user_id, {}))
        return sum(len(handles) for handles in self._handles.values())

    def sweep(self) -> int:
        """Leak backstop: drop finished timers and cap live timers per user.

        Not user-visible; trips are logged only.

        Returns:
            Number of handles evicted for exceeding the cap
        """
        evicted = 0
        for user_id in list(self._handles):
            user_handles = self._handles[user_id]

            for key, handle in list(user_handles.items()):
                if handle.task is not None and handle.task.done():
                    user_handles.pop(key)
                    self._clear(handle)

            excess = len(user_handles) - self.max_timers_per_user
            if excess > 0:
                oldest = sorted(user_handles.values(), key=lambda h: h.started_at)[:excess]
                for handle in oldest:
                    user_handles.pop(handle.job_key)
                    self._clear(handle)
                evicted += excess
                logger.warning(
                    "progress.leak_guard.tripped",
                    user_id=user_id,
                    evicted=excess,
                    remaining=len(user_handles),
                )

            if not user_handles:
                self._handles.pop(user_id)

        return evicted

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Run ``sweep`` forever at a fixed interval (cancel to stop)."""
        logger.info("progress.sweeper.started", interval_seconds=interval_seconds)
        try:
            while True:
                await self._sleep(interval_seconds)
                self.sweep()
        except asyncio.CancelledError:
            logger.info("progress.sweeper.stopped")
            raise

    def stop_all(self) -> int:
        """Clear every timer (application shutdown)."""
        return sum(self.stop(user_id) for user_id in list(self._handles))

    @staticmethod
    def _clear(handle: ProgressHandle) -> bool:
        if handle.cleared:
            return False
        handle.cleared = True
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()
        return True

    async def _run(
        self,
        handle: ProgressHandle,
        notify: NotifyFn,
        interval_seconds: float,
        max_ticks: int,
    ) -> None:
        while handle.ticks < max_ticks:
            await self._sleep(interval_seconds)
            if handle.cleared:
                return
            handle.ticks += 1
            try:
                await notify(handle.ticks)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "progress.notify.failed",
                    user_id=handle.user_id,
                    job_key=handle.job_key,
                    tick=handle.ticks,
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
