import asyncio
import logging
import time
from datetime import timedelta
from typing import Dict, Optional

from jobflare.core.config import RuntimeConfig, get_runtime_config
from jobflare.core.models import now_utc, to_iso

logger = logging.getLogger("scheduler")

# How often the wall clock is compared with the monotonic clock.
WAKE_CHECK_INTERVAL_S = 30.0
# Wall-clock time that passed without monotonic time passing with it.
WAKE_DRIFT_THRESHOLD_S = 60.0


class SchedulerService:
    """
    Runs fetch cycles for the app's orchestrator.

    Modes:
      off  - nothing runs on its own; /api/run still works
      once - one full cycle at startup
      loop - one full cycle at startup, then one repeating timer per enabled
             source, plus a watcher that triggers a full cycle after the host
             wakes from sleep
    """

    def __init__(self, app, config: Optional[RuntimeConfig] = None):
        self.app = app
        cfg = config or get_runtime_config()
        self.mode = cfg.scheduler_mode
        self.interval_minutes = cfg.refresh_interval_minutes
        self.running = False

        self.timers: Dict[str, asyncio.Task] = {}
        self.watcher: Optional[asyncio.Task] = None
        self.startup_task: Optional[asyncio.Task] = None

        # status fields
        self.last_run_started_at: Optional[str] = None
        self.last_run_finished_at: Optional[str] = None
        self.last_run_stats: Optional[dict] = None
        self.last_error: Optional[str] = None
        self.next_run_at: Dict[str, Optional[str]] = {}
        self.wake_count = 0

    @property
    def orchestrator(self):
        return self.app.state.orchestrator

    async def start(self):
        logger.info(f"Scheduler mode = {self.mode}")

        if self.mode == "off":
            self.running = False
            return

        if self.mode == "once":
            self.running = True
            self.startup_task = asyncio.create_task(self.run_once(trigger="startup"))
            return

        if self.mode == "loop" and not self.running:
            self.running = True
            self.startup_task = asyncio.create_task(self._startup_then_timers())
            self.watcher = asyncio.create_task(self._wake_watcher())

    async def stop(self):
        self.running = False
        tasks = list(self.timers.values()) + [t for t in (self.watcher, self.startup_task) if t]
        for task in tasks:
            task.cancel()
        self.timers.clear()
        self.watcher = None
        self.startup_task = None
        self.next_run_at = {}

    async def _startup_then_timers(self):
        await self.run_once(trigger="startup")
        self.sync_timers()

    # -------------------------
    # Runs
    # -------------------------

    async def run_once(self, trigger: str = "manual") -> Optional[dict]:
        self.last_error = None
        self.last_run_started_at = to_iso(now_utc())
        logger.info(f"Scheduler executing full cycle trigger={trigger}")

        try:
            result = await self.orchestrator.run_cycle(trigger=trigger)
            self.last_run_stats = result
            logger.info(f"Scheduler cycle complete: {result}")
            return result
        except Exception as e:
            self.last_error = str(e)
            logger.exception("Scheduler cycle failed")
            return None
        finally:
            self.last_run_finished_at = to_iso(now_utc())

    async def wake(self) -> Optional[dict]:
        """Full cycle outside the timer cadence (host woke from sleep)."""
        self.wake_count += 1
        return await self.run_once(trigger="wake")

    async def _source_timer(self, key: str):
        interval_s = self.interval_minutes * 60
        while self.running:
            self.next_run_at[key] = to_iso(now_utc() + timedelta(seconds=interval_s))
            await asyncio.sleep(interval_s)
            try:
                await self.orchestrator.fetch_source(key)
            except Exception as e:
                self.last_error = f"{key}: {e}"
                logger.exception(f"Scheduled fetch failed for {key}")

    def sync_timers(self):
        """Start timers for newly enabled sources and stop the others."""
        if self.mode != "loop" or not self.running:
            return

        enabled = set(self.orchestrator.enabled_source_keys())
        for key in list(self.timers):
            if key not in enabled:
                self.timers.pop(key).cancel()
                self.next_run_at.pop(key, None)
                logger.info(f"Scheduler timer stopped for {key}")

        for key in enabled:
            if key not in self.timers:
                self.timers[key] = asyncio.create_task(self._source_timer(key))
                logger.info(f"Scheduler timer started for {key} every {self.interval_minutes} minutes")

    async def _wake_watcher(self):
        wall = time.time()
        mono = time.monotonic()
        while self.running:
            await asyncio.sleep(WAKE_CHECK_INTERVAL_S)
            new_wall, new_mono = time.time(), time.monotonic()
            drift = (new_wall - wall) - (new_mono - mono)
            wall, mono = new_wall, new_mono
            if drift > WAKE_DRIFT_THRESHOLD_S:
                logger.info(f"Scheduler detected wake from sleep (drift {drift:.0f}s)")
                await self.wake()

    def status(self) -> dict:
        return {
            "mode": self.mode,
            "interval_minutes": self.interval_minutes,
            "running": bool(self.running),
            "timers": sorted(self.timers),
            "last_run_started_at": self.last_run_started_at,
            "last_run_finished_at": self.last_run_finished_at,
            "last_run_stats": self.last_run_stats,
            "last_error": self.last_error,
            "next_run_at": dict(self.next_run_at),
            "wake_count": self.wake_count,
        }
