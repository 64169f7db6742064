"""In-process periodic sweeps.

A ``PeriodicSweep`` owns one asyncio task. It either ticks every
``interval_seconds`` or once a day at ``daily_at`` (HH:MM in ``tz``). The
blocking job runs in a worker thread. A sweep that is still running is never
started a second time, whether the tick came from the timer or from a manual
trigger.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo

import structlog

logger = structlog.get_logger().bind(component="scheduler")


class PeriodicSweep:
    def __init__(self, name: str, job: Callable[[], dict], *, interval_seconds: float | None = None,
                 daily_at: str | None = None, tz: str = "UTC", lock: asyncio.Lock | None = None):
        if (interval_seconds is None) == (daily_at is None):
            raise ValueError("exactly one of interval_seconds or daily_at is required")
        self.name = name
        self.job = job
        self.interval_seconds = interval_seconds
        self.daily_at = daily_at
        self.tz = ZoneInfo(tz)
        self._task: asyncio.Task | None = None
        self._lock = lock or asyncio.Lock()
        self.last_run: datetime | None = None
        self.last_result: dict | None = None
        self.last_error: str | None = None
        self.next_run: datetime | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def sweeping(self) -> bool:
        return self._lock.locked()

    def next_run_after(self, now: datetime) -> datetime:
        if self.interval_seconds is not None:
            return now + timedelta(seconds=self.interval_seconds)
        hh, mm = (int(x) for x in self.daily_at.split(":"))
        local_now = now.astimezone(self.tz)
        candidate = local_now.replace(hour=hh, minute=mm, second=0, microsecond=0)
        if candidate <= local_now:
            candidate += timedelta(days=1)
        return candidate.astimezone(timezone.utc)

    def start(self) -> bool:
        """Schedule the loop on the running event loop. False if already started."""
        if self.running:
            return False
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=f"sweep:{self.name}")
        logger.info("sweep_started", sweep=self.name)
        return True

    async def stop(self) -> bool:
        if not self.running:
            return False
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.next_run = None
        logger.info("sweep_stopped", sweep=self.name)
        return True

    async def trigger(self) -> dict:
        """Run one sweep now unless one is in progress."""
        if self._lock.locked():
            logger.info("sweep_skipped", sweep=self.name, reason="already_running")
            return {"skipped": True, "reason": "already_running"}
        async with self._lock:
            started = datetime.now(timezone.utc)
            run = asyncio.ensure_future(asyncio.to_thread(self.job))
            try:
                try:
                    result = await asyncio.shield(run)
                except asyncio.CancelledError:
                    # the thread cannot be interrupted; hold the lock until it returns
                    await asyncio.wait([run])
                    if not run.cancelled() and run.exception() is not None:
                        self.last_error = str(run.exception())
                    raise
                self.last_result = result
                self.last_error = None
                return result
            except Exception as e:
                self.last_error = str(e)
                logger.exception("sweep_failed", sweep=self.name)
                raise
            finally:
                self.last_run = started
                self.runs += 1

    async def _loop(self):
        while True:
            now = datetime.now(timezone.utc)
            self.next_run = self.next_run_after(now)
            await asyncio.sleep(max(0.0, (self.next_run - now).total_seconds()))
            try:
                await self.trigger()
            except Exception:
                # recorded in last_error; the timer keeps going
                continue

    def status(self) -> dict:
        return {
            "name": self.name,
            "mode": "interval" if self.interval_seconds is not None else "daily",
            "running": self.running,
            "sweeping": self.sweeping,
            "runs": self.runs,
            "lastRun": self.last_run.isoformat() if self.last_run else None,
            "lastResult": self.last_result,
            "lastError": self.last_error,
            "nextRun": self.next_run.isoformat() if self.running and self.next_run else None,
        }


class SweepGroup:
    """Several sweeps controlled as one service (payment sync has a recent and an end-of-day schedule).

    Members should share one lock so their runs never overlap.
    """

    def __init__(self, *sweeps: PeriodicSweep, manual: PeriodicSweep | None = None):
        self.sweeps = list(sweeps)
        self.manual = manual or self.sweeps[-1]

    def start(self) -> bool:
        return any([s.start() for s in self.sweeps])

    async def stop(self) -> bool:
        stopped = [await s.stop() for s in self.sweeps]
        return any(stopped)

    async def trigger(self) -> dict:
        return await self.manual.trigger()

    def status(self) -> dict:
        running = [s.next_run for s in self.sweeps if s.running and s.next_run]
        return {
            "running": any(s.running for s in self.sweeps),
            "nextRun": min(running).isoformat() if running else None,
            "sweeps": [s.status() for s in self.sweeps],
        }
