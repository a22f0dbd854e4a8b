"""Scheduler for brain maintenance using pure asyncio.

Jobs:
- Decay: once a day at the configured cron hour, tombstone stale learnings
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rho.brain import Brain
    from rho.config import RhoConfig

logger = logging.getLogger(__name__)


def _parse_cron_hour(cron_expr: str) -> int:
    """Extract hour from simple cron expression like '0 4 * * *'."""
    parts = cron_expr.split()
    if len(parts) >= 2:
        try:
            return int(parts[1])
        except ValueError:
            pass
    return 4  # default: 4 AM


class MaintenanceScheduler:
    """Simple asyncio-based scheduler for periodic brain maintenance."""

    def __init__(self, brain: Brain, config: RhoConfig) -> None:
        self._brain = brain
        self._decay_hour = _parse_cron_hour(config.scheduler.decay_cron)
        self._interval = config.scheduler.interval
        self._last_decay_date: str | None = None

    async def start(self, shutdown_event: asyncio.Event) -> None:
        """Run scheduled jobs until shutdown_event is set."""
        logger.info(
            "Scheduler started (interval=%ss, decay@%02d:00)",
            self._interval,
            self._decay_hour,
        )

        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self._interval)
                break  # shutdown requested
            except asyncio.TimeoutError:
                pass  # interval elapsed, run jobs

            await self.run_due_jobs(datetime.now())

        logger.info("Scheduler stopped.")

    async def run_due_jobs(self, now: datetime) -> None:
        """Run the daily decay if ``now`` is in the decay hour and it has not run today."""
        today = now.strftime("%Y-%m-%d")
        if now.hour != self._decay_hour or self._last_decay_date == today:
            return
        self._last_decay_date = today
        await self._decay()

    async def _decay(self) -> None:
        try:
            count = await asyncio.to_thread(self._brain.decay)
        except Exception as e:
            logger.error("Brain decay failed: %s", e)
            return
        logger.info("Daily decay removed %d learnings", count)
