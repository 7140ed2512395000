import logging
from typing import Optional

from sqlalchemy.orm import Session

from flight_tracker.config import Settings
from flight_tracker.jobs.executors import JobExecutor
from flight_tracker.models import Job, JobType
from flight_tracker.services import job_store

logger = logging.getLogger(__name__)


class JobService:
    """Entry point for every trigger: persist the job, then hand it to the executor."""

    def __init__(self, executor: JobExecutor, settings: Settings):
        self.executor = executor
        self.settings = settings

    async def create_and_run_job(
        self,
        db: Session,
        type: JobType | str,
        flight_id: Optional[int] = None,
        progress_total: int = 0,
        window: Optional[int] = None,
        payload: Optional[dict] = None,
    ) -> Job:
        job_type = JobType(type)
        payload = dict(payload or {})
        if job_type == JobType.FLEX_SCAN:
            if window is None:
                window = payload.get("window", self.settings.flex_default_window)
            payload["window"] = int(window)
            progress_total = progress_total or payload["window"] * 2 + 1
        elif window is not None:
            payload["window"] = window

        job = job_store.create_job(
            db,
            job_type,
            flight_id=flight_id,
            progress_total=progress_total,
            payload=payload or None,
        )
        await self.executor.submit(job.id)
        return job

    async def resubmit_queued_jobs(self, db: Session) -> int:
        """
        Hand jobs already queued in the database to a local executor.

        Covers jobs put back by a stuck-job reset and jobs left queued by a
        previous process. In remote mode the agent claims them itself.
        """
        if self.executor.mode != "local":
            return 0
        job_ids = job_store.list_queued_job_ids(db)
        for job_id in job_ids:
            await self.executor.submit(job_id)
        if job_ids:
            logger.info(f"Resubmitted {len(job_ids)} queued job(s) to the local worker")
        return len(job_ids)

    async def reset_stuck_jobs(self, db: Session, threshold_minutes: int) -> int:
        count = job_store.reset_stuck_jobs(db, threshold_minutes)
        if count:
            await self.resubmit_queued_jobs(db)
        return count

    def get_job(self, db: Session, job_id: int) -> Optional[Job]:
        return job_store.get_job(db, job_id)
