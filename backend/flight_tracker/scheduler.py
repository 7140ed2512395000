"""
APScheduler wiring.

One cron job enqueues a ``check_all`` plus a ``send_email`` job for every
active flight with a notification address. The jobs go through the same
JobService as API triggers, so local mode runs them on the single worker
(the emails after the checks) and remote mode leaves them for the agent.
An optional interval job sweeps stuck jobs back to the queue.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.memory import MemoryJobStore
from sqlalchemy.orm import sessionmaker

from flight_tracker.config import Settings
from flight_tracker.jobs.service import JobService
from flight_tracker.models import JobType
from flight_tracker.services import flights

logger = logging.getLogger(__name__)


def compute_next_run_at(cron: str, tz: str) -> Optional[str]:
    """Next fire time of a crontab expression as ISO 8601, or None when it cannot be parsed."""
    try:
        trigger = CronTrigger.from_crontab(cron, timezone=tz)
        next_fire = trigger.get_next_fire_time(None, datetime.now(timezone.utc))
    except (ValueError, LookupError) as e:
        logger.warning(f"Invalid cron schedule {cron!r} ({tz}): {e}")
        return None
    return next_fire.isoformat() if next_fire else None


class PriceCheckScheduler:
    def __init__(self, settings: Settings, session_factory: sessionmaker, job_service: JobService):
        self.settings = settings
        self.session_factory = session_factory
        self.job_service = job_service
        self.scheduler: Optional[AsyncIOScheduler] = None

    def _build(self) -> AsyncIOScheduler:
        scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            timezone=self.settings.cron_tz,
        )
        scheduler.add_job(
            self.scheduled_price_check,
            trigger=CronTrigger.from_crontab(self.settings.cron_schedule, timezone=self.settings.cron_tz),
            id="price_check",
            name=f"Price check ({self.settings.cron_schedule})",
            replace_existing=True,
            max_instances=1,
        )
        if self.settings.stuck_job_sweep_minutes > 0:
            scheduler.add_job(
                self.sweep_stuck_jobs,
                trigger=IntervalTrigger(minutes=self.settings.stuck_job_sweep_minutes),
                id="stuck_job_sweep",
                name="Stuck job sweep",
                replace_existing=True,
                max_instances=1,
            )
        return scheduler

    def start(self):
        """Start the scheduler (call this from FastAPI startup)."""
        if self.scheduler is not None and self.scheduler.running:
            logger.warning("Scheduler already running")
            return
        self.scheduler = self._build()
        self.scheduler.start()
        logger.info(f"APScheduler started - schedule {self.settings.cron_schedule} ({self.settings.cron_tz})")
        for job in self.scheduler.get_jobs():
            logger.info(f"Next '{job.name}': {job.next_run_time}")

    def stop(self):
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("APScheduler stopped")
        self.scheduler = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    async def scheduled_price_check(self) -> list:
        """Enqueue the periodic check and the alert emails. Returns the created job ids."""
        logger.info("Running scheduled price check")
        payload = {"origin": "scheduler", "requested_at": datetime.utcnow().isoformat()}
        job_ids = []
        try:
            with self.session_factory() as db:
                active = flights.list_active_flights(db)
                check = await self.job_service.create_and_run_job(
                    db, JobType.CHECK_ALL, progress_total=len(active), payload=payload,
                )
                job_ids.append(check.id)

                for flight in active:
                    if not flight.notify_email:
                        continue
                    email = await self.job_service.create_and_run_job(
                        db,
                        JobType.SEND_EMAIL,
                        flight_id=flight.id,
                        progress_total=1,
                        payload={**payload, "flight_id": flight.id},
                    )
                    job_ids.append(email.id)
        except Exception as e:
            logger.error(f"Scheduled price check failed: {e}")
            return job_ids

        logger.info(f"Scheduled price check enqueued {len(job_ids)} job(s)")
        return job_ids

    async def sweep_stuck_jobs(self) -> int:
        with self.session_factory() as db:
            return await self.job_service.reset_stuck_jobs(db, self.settings.stuck_job_threshold_minutes)

    def next_run_at(self) -> Optional[str]:
        return compute_next_run_at(self.settings.cron_schedule, self.settings.cron_tz)

    def get_schedule_info(self) -> dict:
        return {
            "cron": self.settings.cron_schedule,
            "timezone": self.settings.cron_tz,
            "server_time": datetime.now(timezone.utc).isoformat(),
            "next_run_at": self.next_run_at(),
            "running": self.running,
            "execution_mode": self.settings.execution_mode,
        }
