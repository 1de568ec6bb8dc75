"""Single-flight sync scheduler.

All trigger sources (application mount, visibility regained, the recurring
timer and manual requests) are funnelled into one queue consumed by a single
loop, so the reconciliation engine never runs twice at once for a user:

* a trigger arriving while a sync is in flight joins it and receives its
  result;
* any trigger arriving less than ``min_interval`` after the previous sync
  completed is ignored and answered with the previous result;
* the timer additionally respects ``interval``; manual requests do not.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config import settings
from .reconciliation import SyncResult

logger = logging.getLogger(__name__)

SyncFn = Callable[[], Awaitable[SyncResult]]
Listener = Callable[[SyncResult], Any]

# Tolerance for the timer waking up a hair before next_sync_time.
_TIMER_SLACK = 0.5


class SyncTrigger(str, Enum):
    MOUNT = "mount"
    VISIBILITY = "visibility"
    TIMER = "timer"
    MANUAL = "manual"


class SchedulerState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


@dataclass
class SyncConfig:
    """Sync preferences consumed by the scheduler (seconds)."""

    interval: float = settings.SYNC_DEFAULT_INTERVAL
    min_interval: float = settings.SYNC_MIN_INTERVAL
    sync_on_mount: bool = True
    sync_on_visibility_change: bool = True
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.interval < self.min_interval:
            self.interval = self.min_interval

    @classmethod
    def from_user(cls, user, min_interval: float = settings.SYNC_MIN_INTERVAL) -> "SyncConfig":
        interval_ms = user.sync_interval_ms or int(settings.SYNC_DEFAULT_INTERVAL * 1000)
        return cls(
            interval=interval_ms / 1000.0,
            min_interval=min_interval,
            sync_on_mount=bool(user.sync_on_mount),
            sync_on_visibility_change=bool(user.sync_on_visibility_change),
            enabled=bool(user.auto_sync_enabled),
        )


@dataclass
class _SyncRequest:
    trigger: SyncTrigger
    future: "asyncio.Future[Optional[SyncResult]]" = field(repr=False)


def _as_datetime(ts: Optional[float]) -> Optional[datetime]:
    return datetime.fromtimestamp(ts, tz=timezone.utc) if ts is not None else None


class SyncScheduler:
    """Coalesces sync triggers for one user into single-flight runs."""

    def __init__(
        self,
        sync_fn: SyncFn,
        config: Optional[SyncConfig] = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name: str = "",
    ) -> None:
        self._sync_fn = sync_fn
        self.config = config or SyncConfig()
        self._clock = clock
        self._sleep = sleep
        self.name = name

        self.state = SchedulerState.IDLE
        self.last_sync_time: Optional[float] = None
        self.next_sync_time: Optional[float] = None
        self.last_result: Optional[SyncResult] = None
        self.runs = 0

        self._listeners: List[Listener] = []
        self._waiters: List["asyncio.Future[Optional[SyncResult]]"] = []
        self._queue: Optional["asyncio.Queue[_SyncRequest]"] = None
        self._consumer: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def started(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    def start(self, with_timer: bool = True) -> None:
        """Start the consumer loop (and the recurring timer). Needs a running loop."""
        loop = asyncio.get_running_loop()
        if self.started and self._loop is loop:
            if with_timer and self._timer is None:
                self._timer = loop.create_task(self._timer_loop())
            return
        self._loop = loop
        self._queue = asyncio.Queue()
        self._consumer = loop.create_task(self._consume())
        self._timer = loop.create_task(self._timer_loop()) if with_timer else None
        logger.debug("Sync scheduler %s started (timer=%s)", self.name, with_timer)

    async def stop(self) -> None:
        """Cancel the timer, the consumer and any in-flight sync."""
        tasks = [t for t in (self._timer, self._consumer, self._inflight) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        cancelled = SyncResult(success=False, error="Sync cancelled")
        if self._queue is not None:
            while not self._queue.empty():
                self._waiters.append(self._queue.get_nowait().future)
        self._resolve_waiters(cancelled)
        self.state = SchedulerState.IDLE
        self._timer = self._consumer = self._inflight = None
        logger.info("Sync scheduler %s stopped", self.name)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def request_sync(self, trigger: SyncTrigger = SyncTrigger.MANUAL) -> Optional[SyncResult]:
        """Ask for a sync. Returns the result of the run that answered this trigger.

        That is a fresh run, the run already in flight, or the previous
        result when the trigger was ignored (``None`` if there never was one).
        """
        trigger = SyncTrigger(trigger)
        if not self.started or self._loop is not asyncio.get_running_loop():
            self.start(with_timer=False)
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(_SyncRequest(trigger, future))
        return await future

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "last_sync_time": _as_datetime(self.last_sync_time),
            "next_sync_time": _as_datetime(self.next_sync_time),
            "last_result": self.last_result,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _skip_reason(self, trigger: SyncTrigger) -> Optional[str]:
        if trigger == SyncTrigger.MOUNT and not self.config.sync_on_mount:
            return "sync on mount disabled"
        if trigger == SyncTrigger.VISIBILITY and not self.config.sync_on_visibility_change:
            return "sync on visibility change disabled"
        if trigger == SyncTrigger.TIMER and not self.config.enabled:
            return "auto sync disabled"
        if self.last_sync_time is None:
            return None
        elapsed = self._clock() - self.last_sync_time
        if elapsed < self.config.min_interval:
            return f"last sync finished {elapsed:.1f}s ago (min interval {self.config.min_interval:.0f}s)"
        if trigger == SyncTrigger.TIMER and elapsed < self.config.interval - _TIMER_SLACK:
            return f"interval of {self.config.interval:.0f}s not reached"
        return None

    async def _consume(self) -> None:
        while True:
            request = await self._queue.get()
            if self.state == SchedulerState.SYNCING:
                logger.debug("Sync %s trigger joined in-flight sync (%s)", request.trigger.value, self.name)
                self._waiters.append(request.future)
                continue
            reason = self._skip_reason(request.trigger)
            if reason is not None:
                logger.info("Ignoring %s sync trigger for %s: %s", request.trigger.value, self.name, reason)
                if not request.future.done():
                    request.future.set_result(self.last_result)
                continue
            self.state = SchedulerState.SYNCING
            self._waiters.append(request.future)
            self._inflight = asyncio.create_task(self._run(request.trigger))

    async def _run(self, trigger: SyncTrigger) -> SyncResult:
        logger.info("Sync triggered by %s for %s", trigger.value, self.name)
        self.runs += 1
        try:
            result = await self._sync_fn()
        except asyncio.CancelledError:
            self._finish(SyncResult(success=False, error="Sync cancelled"))
            raise
        except Exception as exc:
            logger.exception("Sync for %s failed unexpectedly", self.name)
            result = SyncResult(success=False, error=str(exc) or exc.__class__.__name__)
        self._finish(result)
        await self._notify(result)
        return result

    def _finish(self, result: SyncResult) -> None:
        self.last_sync_time = self._clock()
        self.next_sync_time = self.last_sync_time + self.config.interval
        self.last_result = result
        self.state = SchedulerState.IDLE
        self._resolve_waiters(result)

    def _resolve_waiters(self, result: Optional[SyncResult]) -> None:
        waiters, self._waiters = self._waiters, []
        for future in waiters:
            if not future.done():
                future.set_result(result)

    async def _notify(self, result: SyncResult) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Sync listener %r failed", listener)

    async def _timer_loop(self) -> None:
        while True:
            if self.next_sync_time is not None:
                delay = max(self.next_sync_time - self._clock(), 0.0)
            else:
                delay = self.config.interval
            await self._sleep(max(delay, 1.0))
            await self.request_sync(SyncTrigger.TIMER)


class SchedulerRegistry:
    """One scheduler per user for the lifetime of the process."""

    def __init__(
        self,
        sync_fn_factory: Callable[[str], SyncFn],
        config_loader: Callable[[str], SyncConfig],
        listener_factory: Optional[Callable[[str], List[Listener]]] = None,
        *,
        clock: Callable[[], float] = time.time,
        start_timer: bool = True,
    ) -> None:
        self._sync_fn_factory = sync_fn_factory
        self._config_loader = config_loader
        self._listener_factory = listener_factory
        self._clock = clock
        self._start_timer = start_timer
        self._schedulers: Dict[str, SyncScheduler] = {}

    def get(self, user_id: str) -> SyncScheduler:
        """Return the user's scheduler, creating and starting it on first use."""
        scheduler = self._schedulers.get(user_id)
        config = self._config_loader(user_id)
        if scheduler is None:
            scheduler = SyncScheduler(self._sync_fn_factory(user_id), config, clock=self._clock, name=f"user:{user_id}")
            for listener in (self._listener_factory(user_id) if self._listener_factory else []):
                scheduler.add_listener(listener)
            self._schedulers[user_id] = scheduler
        else:
            scheduler.config = config
        scheduler.start(with_timer=self._start_timer and config.enabled)
        return scheduler

    def peek(self, user_id: str) -> Optional[SyncScheduler]:
        return self._schedulers.get(user_id)

    async def stop(self, user_id: str) -> bool:
        scheduler = self._schedulers.pop(user_id, None)
        if scheduler is None:
            return False
        await scheduler.stop()
        return True

    async def stop_all(self) -> None:
        for user_id in list(self._schedulers):
            await self.stop(user_id)
