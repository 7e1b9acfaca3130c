"""Background scheduler for daily health recomputation and alert sweeps.

Provides a lightweight APScheduler wrapper with 2 cron jobs (UTC):
- Daily recompute of every Active client at HEALTH_SCAN_HOUR
- Daily alert sweep at ALERT_SWEEP_HOUR, findings logged by category

Exports:
    HealthScheduler: Async scheduler for daily recompute and alert sweeps.
"""

from __future__ import annotations

from collections import Counter

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.app.health.service import AlertService, HealthScoreService

logger = structlog.get_logger(__name__)


class HealthScheduler:
    """Lightweight scheduler for daily score recomputation and alert sweeps.

    Jobs never raise into the scheduler: failures are logged and the next
    run starts fresh.

    Args:
        health_service: Service used for the daily recompute.
        alert_service: Service used for the daily sweep.
        scan_hour: UTC hour of the recompute job.
        sweep_hour: UTC hour of the alert sweep job.
    """

    def __init__(
        self,
        health_service: HealthScoreService,
        alert_service: AlertService,
        *,
        scan_hour: int = 6,
        sweep_hour: int = 7,
    ) -> None:
        self._health_service = health_service
        self._alert_service = alert_service
        self._scan_hour = scan_hour
        self._sweep_hour = sweep_hour
        self._scheduler: AsyncIOScheduler | None = None
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    def start(self) -> bool:
        """Register both jobs and start the scheduler. Idempotent."""
        if self._started:
            return False

        self._scheduler = AsyncIOScheduler(timezone="UTC")

        self._scheduler.add_job(
            self._daily_recompute,
            trigger=CronTrigger(hour=self._scan_hour, minute=0, timezone="UTC"),
            id="health_daily_recompute",
            name="Daily health score recompute for Active clients",
            misfire_grace_time=3600,
            max_instances=1,
            coalesce=True,
        )

        self._scheduler.add_job(
            self._daily_sweep,
            trigger=CronTrigger(hour=self._sweep_hour, minute=0, timezone="UTC"),
            id="alerts_daily_sweep",
            name="Daily operational alert sweep",
            misfire_grace_time=3600,
            max_instances=1,
            coalesce=True,
        )

        self._scheduler.start()
        self._started = True
        logger.info(
            "health_scheduler.started",
            jobs=["daily_recompute", "daily_sweep"],
            schedule_recompute=f"Daily {self._scan_hour:02d}:00 UTC",
            schedule_sweep=f"Daily {self._sweep_hour:02d}:00 UTC",
        )
        return True

    def shutdown(self) -> None:
        if self._scheduler is not None and self._started:
            self._scheduler.shutdown(wait=False)
            logger.info("health_scheduler.stopped")
        self._scheduler = None
        self._started = False

    async def _daily_recompute(self) -> None:
        """Recompute and cache scores for every Active client."""
        logger.info("health_scheduler.recompute_triggered")
        try:
            summary = await self._health_service.compute_all()
        except Exception as exc:
            logger.error(
                "health_scheduler.recompute_failed",
                error=str(exc),
                exc_info=True,
            )
            return

        grades = Counter(r.grade.value for r in summary.results)
        logger.info(
            "health_scheduler.recompute_complete",
            computed=summary.computed,
            failed=summary.failed,
            grades=dict(sorted(grades.items())),
        )

    async def _daily_sweep(self) -> None:
        """Sweep all markets and log finding counts by category."""
        logger.info("health_scheduler.sweep_triggered")
        try:
            sweep = await self._alert_service.sweep()
        except Exception as exc:
            logger.error(
                "health_scheduler.sweep_failed",
                error=str(exc),
                exc_info=True,
            )
            return

        categories = Counter(f.category.value for f in sweep.findings)
        logger.info(
            "health_scheduler.sweep_complete",
            findings=len(sweep.findings),
            by_category=dict(sorted(categories.items())),
            skipped_rules=[r.value for r in sweep.skipped_rules],
        )
