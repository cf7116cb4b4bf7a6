"""Periodic refresh from storage plus a local display tick for one user session.

The poll loop fetches the user's records, reconciles them and keeps the result
as the local cache. The tick loop re-derives display seconds from that cache
without touching storage. Storage is the source of truth; a failed poll keeps
the last good cache ticking until the next poll succeeds.

    handle = PollingSync(service, user_id).start()
    ...
    await handle.stop()  # on logout
"""
import asyncio
import logging
from collections.abc import Callable
from enum import Enum

import config
from errors import StorageUnavailable, TrackerError
from reconcile import reconcile
from timer_state import TimerState

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    LIVE = "live"


class PollingHandle:
    """Owns the poll and tick tasks. Must be stopped on teardown."""

    def __init__(self, sync: "PollingSync", poll_task: asyncio.Task, tick_task: asyncio.Task):
        self.sync = sync
        self._tasks = (poll_task, tick_task)

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def stop(self) -> None:
        # Pending correction writes are left to finish on their own
        self.sync._stopped = True
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self.sync.state = SyncState.IDLE
        logger.info(f"Polling stopped for {self.sync.user_id}")


class PollingSync:
    def __init__(
        self,
        service,
        user_id: str,
        poll_interval: float = config.POLL_INTERVAL_SECONDS,
        tick_interval: float = config.TICK_INTERVAL_SECONDS,
        timeout: float = config.STORAGE_TIMEOUT_SECONDS,
        on_tick: Callable[[dict[str, int]], None] | None = None,
        clock: Callable[[], int] | None = None,
    ):
        self.service = service
        self.storage = service.storage
        self.user_id = user_id
        self.poll_interval = poll_interval
        self.tick_interval = tick_interval
        self.timeout = timeout
        self.on_tick = on_tick
        self.clock = clock or service.clock

        self.state = SyncState.IDLE
        self.timers: TimerState | None = None
        self.display: dict[str, int] = {}
        self.last_synced_at: int | None = None
        self.failures = 0
        self._writes: set[asyncio.Task] = set()
        self._stopped = False

    async def _call(self, fn, *args):
        try:
            async with asyncio.timeout(self.timeout):
                return await asyncio.to_thread(fn, *args)
        except TimeoutError as e:
            raise StorageUnavailable(f"{fn.__name__} timed out after {self.timeout}s") from e

    async def _write(self, fn, *args) -> None:
        try:
            await self._call(fn, *args)
        except StorageUnavailable as e:
            logger.warning(f"Background write for {self.user_id} failed, next poll will retry: {e}")

    def _fire(self, fn, *args) -> None:
        task = asyncio.create_task(self._write(fn, *args))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def poll_once(self) -> bool:
        """One fetch-reconcile cycle. Returns False when storage could not be reached."""
        self.state = SyncState.SYNCING
        try:
            snapshot = await self._call(self.storage.get_user_project_states, self.user_id)
        except StorageUnavailable as e:
            self.failures += 1
            logger.warning(f"Sync failed for {self.user_id}, will retry: {e}")
            self.state = SyncState.LIVE if self.timers is not None else SyncState.SYNCING
            return False

        now = self.clock()
        result = reconcile(snapshot, now)
        for correction in result.corrections:
            self._fire(self.storage.put_user_project_state, correction)
        self.timers = TimerState(self.user_id, result.states)
        self.display = dict(result.display_seconds)
        self.last_synced_at = now
        self.state = SyncState.LIVE

        try:
            outcome = await self._call(self.service.rollover_if_needed, self.user_id)
        except TrackerError as e:
            logger.warning(f"Rollover check failed for {self.user_id}: {e}")
        else:
            if outcome is not None:
                self.timers = TimerState(self.user_id, outcome.states)
                self.display = self.timers.displays(now)
        return True

    def tick(self) -> dict[str, int]:
        if self.timers is None:
            return {}
        self.display = self.timers.displays(self.clock())
        if self.on_tick is not None:
            self.on_tick(dict(self.display))
        return self.display

    async def _poll_loop(self) -> None:
        # The flag ends the loop even if a cancel lands as a storage call returns
        while not self._stopped:
            try:
                await self.poll_once()
            except Exception:
                logger.exception(f"Unexpected error while polling for {self.user_id}")
            if self._stopped:
                break
            await asyncio.sleep(self.poll_interval)

    async def _tick_loop(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self.tick_interval)
            try:
                self.tick()
            except Exception:
                logger.exception(f"Unexpected error in display tick for {self.user_id}")

    def start(self) -> PollingHandle:
        """Start both loops on the running event loop."""
        logger.info(
            f"Polling started for {self.user_id} "
            f"(poll every {self.poll_interval}s, tick every {self.tick_interval}s)"
        )
        self._stopped = False
        poll_task = asyncio.create_task(self._poll_loop())
        tick_task = asyncio.create_task(self._tick_loop())
        return PollingHandle(self, poll_task, tick_task)
