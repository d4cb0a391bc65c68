"""
Periodic backup job.

Cycles fire on a wall-clock cadence: every `interval_seconds`, shifted by
`offset_seconds` (defaults: hourly at minute 10). Only one cycle runs at a
time; a trigger that fires while a cycle is still running is skipped.
stop() wakes the loop and waits for an in-flight cycle to finish.
"""

import asyncio
import math
from datetime import datetime, timezone
from typing import Callable, Optional

from loguru import logger

from backup.reconciler import BackupReconciler, BackupReport


class BackupScheduler:

    def __init__(
        self,
        reconciler: BackupReconciler,
        interval_seconds: int = 3600,
        offset_seconds: int = 600,
        sweep_orphans: bool = False,
        clock: Callable[[], datetime] = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds
        self.offset_seconds = offset_seconds % interval_seconds
        self.sweep_orphans = sweep_orphans
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.last_report: Optional[BackupReport] = None

        self._stop = asyncio.Event()
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def cycle_in_progress(self) -> bool:
        return self._lock.locked()

    def seconds_until_next_run(self, now: Optional[datetime] = None) -> float:
        ts = (now or self.clock()).timestamp()
        slots = math.floor((ts - self.offset_seconds) / self.interval_seconds) + 1
        next_ts = slots * self.interval_seconds + self.offset_seconds
        return next_ts - ts

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run_loop(), name="backup-scheduler")
        logger.info(
            f"✓ Backup job scheduled every {self.interval_seconds}s "
            f"(next run in {self.seconds_until_next_run():.0f}s)"
        )

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Backup job stopped")

    async def _run_loop(self) -> None:
        while not self._stop.is_set():
            delay = self.seconds_until_next_run()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass
            await self.run_cycle()

    async def run_cycle(self) -> Optional[BackupReport]:
        """Run one backup cycle unless one is already running."""
        if self._lock.locked():
            logger.warning("Backup job still running; skipping this trigger")
            return None

        async with self._lock:
            logger.info("Backup job started")
            report = BackupReport(started_at=self.clock())
            try:
                if self.sweep_orphans:
                    report.retagged = await self.reconciler.retag_orphans()
                report = await self.reconciler.run_once(report)
            except Exception as e:
                logger.exception(f"Backup job error: {e}")
                report.error = str(e)
            self.last_report = report
            logger.info("Backup job finished")
            return report
